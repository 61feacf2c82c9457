"""Network access for strategies, installation and submission replay."""

import logging
from collections.abc import Callable

import requests

from .models import Request, Response

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "offlinecache/0.1"


class NetworkError(Exception):
    """Raised when a request cannot reach the network at all.

    HTTP error statuses are not network errors; they come back as responses.
    """

    pass


# Anything that turns a Request into a Response or raises NetworkError
Fetcher = Callable[[Request], Response]


class HttpFetcher:
    """Fetch requests over HTTP with a shared ``requests`` session.

    Redirects are followed and the final response is returned. No timeout is
    applied unless one is configured, so a hung server hangs the caller.
    """

    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent

    def __call__(self, request: Request) -> Response:
        return self.fetch(request)

    def fetch(self, request: Request) -> Response:
        """Issue the request and capture the full response.

        Raises:
            NetworkError: If the connection fails, times out or the URL is invalid.
        """
        try:
            resp = self._session.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                data=request.body,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.debug("Network request to %s failed: %s", request.url, e)
            raise NetworkError(f"{request.method} {request.url} failed: {e}") from e

        return Response(
            status=resp.status_code,
            body=resp.content,
            headers=dict(resp.headers),
            status_text=resp.reason or "",
            url=resp.url or request.url,
        )

    def close(self) -> None:
        self._session.close()
