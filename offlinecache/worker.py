"""Event dispatcher: one entry point per worker event.

Lifecycle:
- install: wipe every cache store, then populate the current generation
- activate: wipe every cache store again, claim open pages, ask them to reload
- fetch: classify the request and run exactly one strategy
- sync / push / notification click: replay queued work and route notifications
"""

import logging
from collections.abc import Sequence
from urllib.parse import urljoin

from .clients import Client, ClientRegistry, NotificationCenter
from .models import FORCE_RELOAD, ClientMessage, Notification, Request, Response
from .network import Fetcher, NetworkError
from .push import build_notification, handle_notification_click
from .router import Strategy, classify
from .storage import CacheStorage, StorageError
from .strategies import StrategyExecutor
from .submissions import BackgroundSync, SyncReport

logger = logging.getLogger(__name__)

FORCE_RELOAD_MESSAGE = "Service Worker updated - please reload the page"

# Seconds close() waits for background revalidations
CLOSE_TIMEOUT = 5.0


class InstallError(Exception):
    """Raised when the asset manifest cannot be cached in full."""

    pass


def _delete_all_caches(storage: CacheStorage) -> list[str]:
    """Delete every cache store, each independently of the others."""
    deleted: list[str] = []
    for name in storage.keys():
        logger.info("Deleting cache: %s", name)
        try:
            if storage.delete(name):
                deleted.append(name)
        except StorageError as e:
            logger.error("Failed to delete cache %s: %s", name, e)
    return deleted


class ServiceWorker:
    """Dispatches worker events against a single cache generation.

    Example:
        worker = ServiceWorker(storage, fetcher, "https://afz.example", "afz-advocacy-v1.0.6", manifest)
        worker.install()
        worker.activate()
        response = worker.fetch(Request("https://afz.example/css/site.css"))
        worker.close()
    """

    def __init__(
        self,
        storage: CacheStorage,
        fetcher: Fetcher,
        origin: str,
        generation: str,
        manifest: Sequence[str],
        offline_url: str = "/pages/offline.html",
        clients: ClientRegistry | None = None,
        notifications: NotificationCenter | None = None,
        background_sync: BackgroundSync | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            storage: Cache storage holding every generation's store.
            fetcher: Network access used by strategies and installation.
            origin: The site's own origin; other origins are treated as CDN resources.
            generation: Name of the current cache generation.
            manifest: Root-relative or absolute URLs to cache on install.
            offline_url: Root-relative URL of the offline fallback document.
            clients: Open pages controlled by this worker.
            notifications: Where push notifications are displayed.
            background_sync: Replays queued submissions; sync events are ignored without one.
        """
        self.origin = origin.rstrip("/").lower()
        self.generation = generation
        self.manifest = tuple(manifest)
        self.clients = clients or ClientRegistry()
        self.notifications = notifications or NotificationCenter()
        self._storage = storage
        self._fetch = fetcher
        self._background_sync = background_sync
        self._strategies = StrategyExecutor(storage, generation, fetcher, self.origin, offline_url)
        self.waiting = True

    def _resolve(self, url: str) -> str:
        return urljoin(self.origin + "/", url)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def install(self) -> int:
        """Clear all caches, then cache the full asset manifest.

        Returns:
            Number of entries cached.

        Raises:
            InstallError: If any manifest entry could not be fetched with a 2xx
                status. Nothing from this attempt is kept.
        """
        logger.info("Installing cache generation %s...", self.generation)

        try:
            existing = self._storage.keys()
            logger.info("Clearing existing caches: %s", existing)
            _delete_all_caches(self._storage)

            cache = self._storage.open(self.generation)
            logger.info("Caching %d essential resources", len(self.manifest))
            count = cache.add_all((self._resolve(url) for url in self.manifest), self._fetch)
        except (NetworkError, StorageError) as e:
            logger.error("Installation failed: %s", e)
            raise InstallError(f"Failed to install cache generation {self.generation}: {e}") from e

        logger.info("Installation complete")
        self.waiting = False  # activate immediately, without waiting for old pages
        return count

    def activate(self) -> list[str]:
        """Delete every cache store, claim open pages and ask them to reload.

        Every store is deleted, including the one install just populated;
        strategies repopulate the current generation on first use.

        Returns:
            Names of the deleted stores.
        """
        logger.info("Activating cache generation %s...", self.generation)

        existing = self._storage.keys()
        logger.info("Found caches: %s", existing)
        deleted = _delete_all_caches(self._storage)
        logger.info("All caches cleared")

        self.clients.claim()

        message = ClientMessage(type=FORCE_RELOAD, message=FORCE_RELOAD_MESSAGE)
        for client in self.clients.match_all():
            client.post_message(message)

        return deleted

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    def classify(self, request: Request) -> Strategy:
        return classify(request, self.origin)

    def fetch(self, request: Request) -> Response | None:
        """Answer an intercepted request.

        Returns:
            The response, or None when the request is not intercepted and
            should go to the network untouched.
        """
        strategy = self.classify(request)
        if strategy is Strategy.PASS_THROUGH:
            return None

        logger.debug("%s %s -> %s", request.method, request.url, strategy.value)

        try:
            response = self._run(strategy, request)
        except Exception as e:
            logger.error("Fetch error: %s", e)
            return self._strategies.handle_fetch_error(request)

        if response is None:
            return self._strategies.handle_fetch_error(request)
        return response

    def _run(self, strategy: Strategy, request: Request) -> Response | None:
        if strategy is Strategy.NETWORK_FIRST:
            return self._strategies.network_first(request)
        if strategy is Strategy.STALE_WHILE_REVALIDATE:
            return self._strategies.stale_while_revalidate(request)
        if strategy is Strategy.NETWORK_FIRST_OFFLINE:
            return self._strategies.network_first_offline(request)
        return self._strategies.cache_first(request)

    # -------------------------------------------------------------------------
    # Background sync and notifications
    # -------------------------------------------------------------------------

    def sync(self, tag: str) -> SyncReport:
        """Replay queued submissions for a background sync tag."""
        logger.info("Background sync triggered: %s", tag)
        if self._background_sync is None:
            logger.warning("No submission queue configured, skipping sync %s", tag)
            return SyncReport(tag=tag)
        return self._background_sync.replay(tag)

    def push(self, payload: bytes | str | None = None) -> Notification:
        """Show a notification for a push message."""
        logger.info("Push notification received")
        notification = build_notification(payload)
        self.notifications.show_notification(notification)
        return notification

    def notification_click(self, notification: Notification, action: str | None = None) -> Client | None:
        """Route a click on a notification to an open or new page."""
        logger.info("Notification clicked: %s", notification.tag)
        return handle_notification_click(notification, action, self.clients, self.notifications, self.origin)

    # -------------------------------------------------------------------------
    # Lifetime
    # -------------------------------------------------------------------------

    @property
    def pending(self) -> int:
        """Background revalidations still in flight."""
        return self._strategies.pending

    def drain(self, timeout: float | None = None) -> bool:
        """Block until background revalidations finish. Returns False on timeout."""
        return self._strategies.drain(timeout)

    def close(self, timeout: float | None = CLOSE_TIMEOUT) -> None:
        """Wait up to ``timeout`` seconds for background work, then release the pool.

        Revalidations still running after the timeout are abandoned.
        """
        if self._strategies.drain(timeout):
            self._strategies.shutdown()
            return
        logger.warning("Abandoning %d background revalidation(s) still in flight", self._strategies.pending)
        self._strategies.shutdown(wait=False, cancel_futures=True)
