"""Request classification: pick one caching strategy per intercepted request."""

import re
from enum import Enum

from .models import Request


class Strategy(Enum):
    """How an intercepted request is answered."""

    PASS_THROUGH = "pass-through"
    NETWORK_FIRST = "network-first"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"
    NETWORK_FIRST_OFFLINE = "network-first-offline"
    CACHE_FIRST = "cache-first"


_STATIC_ASSET_RE = re.compile(r"\.(css|js|png|jpg|jpeg|gif|svg|woff|woff2|ttf|eot|ico)(\?.*)?$")


def is_static_asset(url: str) -> bool:
    """Check if a URL names a static asset (styles, scripts, images, fonts)."""
    return _STATIC_ASSET_RE.search(url) is not None


def classify(request: Request, origin: str) -> Strategy:
    """Select the strategy for a request. First match wins.

    Args:
        request: The intercepted request.
        origin: The site's own origin, e.g. "https://afz.example".

    Returns:
        The strategy to run. PASS_THROUGH means the request is not intercepted.
    """
    if request.method != "GET":
        return Strategy.PASS_THROUGH

    if request.scheme not in ("http", "https"):
        return Strategy.PASS_THROUGH

    if "/api/" in request.path:
        return Strategy.NETWORK_FIRST

    if request.origin != Request(origin).origin:
        return Strategy.STALE_WHILE_REVALIDATE

    if request.accepts_html:
        return Strategy.NETWORK_FIRST_OFFLINE

    if is_static_asset(request.url):
        return Strategy.CACHE_FIRST

    return Strategy.NETWORK_FIRST
