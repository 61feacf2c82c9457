"""Caching strategies run against the current cache generation.

Handles caching strategy:
- Static assets: Cache-first, network only on a miss
- API and default requests: Network-first with cache fallback
- HTML pages: Network-first with cache, then offline document fallback
- Cross-origin (CDN) resources: Stale-while-revalidate
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from urllib.parse import urljoin

from .models import Request, Response
from .network import Fetcher, NetworkError
from .storage import Cache, CacheStorage

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE = "Service Unavailable"

# Fallback bodies. The router path and the error path use different texts.
OFFLINE_PAGE_TEXT = "Offline - Content not available"
OFFLINE_ERROR_TEXT = "Offline"
RESOURCE_OFFLINE_TEXT = "Resource not available offline"

# Background revalidations share a small pool
MAX_REVALIDATION_WORKERS = 4


def offline_response(text: str, content_type: str | None = "text/plain") -> Response:
    """Synthesize a 503 response with a plain-text body."""
    headers = {"Content-Type": content_type} if content_type else {}
    return Response(
        status=503,
        body=text.encode("utf-8"),
        headers=headers,
        status_text=SERVICE_UNAVAILABLE,
    )


class StrategyExecutor:
    """Runs the caching strategies against one named cache store.

    The store is reopened on every call so a store deleted during activation
    is transparently recreated by the next write.
    """

    def __init__(
        self,
        storage: CacheStorage,
        cache_name: str,
        fetcher: Fetcher,
        origin: str,
        offline_url: str,
        max_workers: int = MAX_REVALIDATION_WORKERS,
    ) -> None:
        self._storage = storage
        self._cache_name = cache_name
        self._fetch = fetcher
        self._offline_request = Request(urljoin(origin.rstrip("/") + "/", offline_url))
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="revalidate")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    def _track(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._pending_lock:
                self._pending.discard(f)
            error = f.exception()
            if error is not None:
                logger.warning("Background revalidation failed: %s", error)

        future.add_done_callback(_done)

    @property
    def pending(self) -> int:
        """Number of background revalidations still in flight."""
        with self._pending_lock:
            return len(self._pending)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight background revalidations.

        Returns:
            True if all of them finished within the timeout.
        """
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _cache(self) -> Cache:
        return self._storage.open(self._cache_name)

    def _offline_document(self, cache: Cache) -> Response | None:
        return cache.match(self._offline_request)

    def cache_first(self, request: Request) -> Response:
        """Serve from cache; on a miss fetch and store.

        Raises:
            NetworkError: On a miss when the network is unreachable.
        """
        cache = self._cache()
        cached = cache.match(request)
        if cached is not None:
            return cached

        try:
            response = self._fetch(request)
        except NetworkError as e:
            logger.error("Network request failed: %s", e)
            raise

        if response.ok:
            cache.put(request, response)
        return response

    def network_first(self, request: Request) -> Response:
        """Fetch and store; fall back to the cached copy when offline.

        Raises:
            NetworkError: When offline and nothing is cached for the request.
        """
        try:
            response = self._fetch(request)
        except NetworkError:
            cached = self._cache().match(request)
            if cached is not None:
                return cached
            raise

        if response.ok:
            self._cache().put(request, response)
        return response

    def network_first_offline(self, request: Request) -> Response:
        """Network-first for pages, never failing.

        Offline order: cached page, cached offline document, synthesized 503.
        """
        try:
            response = self._fetch(request)
        except NetworkError:
            cache = self._cache()
            cached = cache.match(request)
            if cached is not None:
                return cached
            return self._offline_document(cache) or offline_response(OFFLINE_PAGE_TEXT)

        if response.ok:
            self._cache().put(request, response)
        return response

    def stale_while_revalidate(self, request: Request) -> Response | None:
        """Serve the cached copy immediately and refresh it in the background.

        Without a cached copy the caller fetches on its own thread, so a full
        revalidation pool never delays it. If that fetch fails, the snapshot
        taken before the fetch (None here) is returned.
        """
        cache = self._cache()
        cached = cache.match(request)

        def revalidate() -> Response | None:
            try:
                response = self._fetch(request)
            except NetworkError as e:
                logger.warning("Background fetch failed: %s", e)
                return cached
            if response.ok:
                self._cache().put(request, response)
            return response

        if cached is None:
            return revalidate()

        self._track(self._pool.submit(revalidate))
        return cached

    def handle_fetch_error(self, request: Request) -> Response:
        """Last-resort answer after a strategy failed."""
        cache = self._cache()
        cached = cache.match(request)
        if cached is not None:
            return cached

        if request.accepts_html:
            return self._offline_document(cache) or offline_response(OFFLINE_ERROR_TEXT, content_type=None)

        return offline_response(RESOURCE_OFFLINE_TEXT)

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=cancel_futures)

