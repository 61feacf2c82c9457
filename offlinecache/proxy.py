"""Local HTTP proxy that answers site requests through the offline cache."""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional
from urllib.parse import urljoin, urlsplit

from .config import ProxyConfig, SyncConfig
from .database import DatabaseError
from .models import DONATION_SUBMISSION, FORM_SUBMISSION, PendingSubmission, Request, Response
from .network import Fetcher, NetworkError
from .storage import CacheStorage, StorageError
from .submissions import SubmissionQueue
from .worker import ServiceWorker

logger = logging.getLogger(__name__)

STATUS_PATH = "/__offlinecache/status"

# Headers that describe a single hop and must not be forwarded
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
        # Bodies are stored decoded
        "content-encoding",
    }
)


class ProxyError(Exception):
    """Raised when the proxy server fails to start."""

    pass


def _forwardable(headers: Any) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


class ProxyHandler(BaseHTTPRequestHandler):
    """Routes proxied requests through the worker's strategies."""

    # Class-level references set by factory
    worker: Optional[ServiceWorker] = None
    fetcher: Optional[Fetcher] = None
    storage: Optional[CacheStorage] = None
    queue: Optional[SubmissionQueue] = None
    sync_config: SyncConfig = SyncConfig()

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("Proxy %s - %s", self.address_string(), format % args)

    def _target_url(self) -> str:
        """Resolve the request target (absolute proxy form or origin path)."""
        if self.path.startswith(("http://", "https://")):
            return self.path
        return urljoin(self.worker.origin + "/", self.path.lstrip("/"))

    def _read_body(self) -> Optional[bytes]:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else None

    def _build_request(self) -> Request:
        return Request(
            self._target_url(),
            method=self.command,
            headers=_forwardable(self.headers),
            body=self._read_body(),
        )

    def _send(self, response: Response) -> None:
        self.send_response(response.status, response.status_text or None)
        for name, value in _forwardable(response.headers).items():
            self.send_header(name, value)
        length = response.headers.get("Content-Length") if self.command == "HEAD" else None
        self.send_header("Content-Length", length or str(len(response.body)))
        self.send_header("Connection", "close")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self._send(Response(status=code, body=body, headers={"Content-Type": "application/json"}))

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"error": message})

    def _pass_through(self, request: Request) -> None:
        try:
            self._send(self.fetcher(request))
        except NetworkError as e:
            logger.warning("Pass-through request failed: %s", e)
            self._send_error_json(502, "Upstream unavailable")

    def do_GET(self) -> None:
        """Handle GET requests."""
        try:
            if self.path == STATUS_PATH:
                self._handle_status()
                return

            request = self._build_request()
            response = self.worker.fetch(request)
            if response is None:
                self._pass_through(request)
            else:
                self._send(response)
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def do_POST(self) -> None:
        """Handle POST requests, queueing form and donation submissions when offline."""
        try:
            request = self._build_request()
            try:
                self._send(self.fetcher(request))
            except NetworkError as e:
                logger.warning("POST %s failed: %s", request.url, e)
                self._queue_submission(request)
        except Exception as e:
            logger.exception("Error handling POST request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _handle_other(self) -> None:
        try:
            self._pass_through(self._build_request())
        except Exception as e:
            logger.exception("Error handling %s request: %s", self.command, e)
            self._send_error_json(500, "Internal server error")

    do_HEAD = _handle_other
    do_PUT = _handle_other
    do_PATCH = _handle_other
    do_DELETE = _handle_other

    def _queue_submission(self, request: Request) -> None:
        """Store an undeliverable submission for background sync, if it is one."""
        if self.queue is None or request.origin != self.worker.origin:
            self._send_error_json(502, "Upstream unavailable")
            return

        path = urlsplit(request.url).path
        if path == self.sync_config.donation_endpoint:
            try:
                data = json.loads(request.body or b"null")
            except ValueError:
                self._send_error_json(400, "Donation payload must be JSON")
                return
            if not isinstance(data, dict):
                self._send_error_json(400, "Donation payload must be a JSON object")
                return
            record = PendingSubmission(kind=DONATION_SUBMISSION, url=path, data=data)
        elif path in self.sync_config.form_paths:
            record = PendingSubmission(
                kind=FORM_SUBMISSION,
                url=path,
                headers=dict(request.headers),
                body=request.body,
            )
        else:
            self._send_error_json(502, "Upstream unavailable")
            return

        try:
            submission_id = self.queue.enqueue(record)
        except DatabaseError as e:
            logger.error("Failed to queue submission: %s", e)
            self._send_error_json(500, "Could not queue submission")
            return

        logger.info("Queued %s submission %d for background sync", record.kind, submission_id)
        self._send_json(202, {"queued": True, "id": submission_id})

    def _handle_status(self) -> None:
        """Handle GET /__offlinecache/status - cache and queue summary."""
        try:
            names = self.storage.keys()
            entries = {name: len(self.storage.open(name)) for name in names}
            pending = None
            if self.queue is not None:
                pending = {
                    FORM_SUBMISSION: self.queue.count(FORM_SUBMISSION),
                    DONATION_SUBMISSION: self.queue.count(DONATION_SUBMISSION),
                }
        except (StorageError, DatabaseError) as e:
            logger.error("Storage error in %s: %s", STATUS_PATH, e)
            self._send_error_json(500, "Storage error")
            return

        self._send_json(
            200,
            {
                "generation": self.worker.generation,
                "caches": names,
                "entries": entries,
                "pending_submissions": pending,
                "background_revalidations": self.worker.pending,
            },
        )


def _create_handler_class(
    worker: ServiceWorker,
    fetcher: Fetcher,
    storage: CacheStorage,
    queue: Optional[SubmissionQueue] = None,
    sync_config: Optional[SyncConfig] = None,
) -> type:
    """Create a handler class with the worker and its collaborators bound."""

    class BoundProxyHandler(ProxyHandler):
        pass

    BoundProxyHandler.worker = worker
    BoundProxyHandler.fetcher = staticmethod(fetcher)
    BoundProxyHandler.storage = storage
    BoundProxyHandler.queue = queue
    BoundProxyHandler.sync_config = sync_config or SyncConfig()
    return BoundProxyHandler


class ProxyServer:
    """Threaded HTTP server that answers through the offline cache."""

    def __init__(
        self,
        config: ProxyConfig,
        worker: ServiceWorker,
        fetcher: Fetcher,
        storage: CacheStorage,
        queue: Optional[SubmissionQueue] = None,
        sync_config: Optional[SyncConfig] = None,
    ) -> None:
        """Initialize the proxy server.

        Args:
            config: Proxy configuration.
            worker: Worker whose strategies answer GET requests.
            fetcher: Network access for pass-through and POST requests.
            storage: Cache storage, reported by the status endpoint.
            queue: Where offline submissions are queued; None disables queueing.
            sync_config: Which paths count as form and donation submissions.
        """
        self.config = config
        self._handler_class = _create_handler_class(worker, fetcher, storage, queue, sync_config)
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    def start(self) -> None:
        """Start the proxy in a background thread.

        Raises:
            ProxyError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Proxy server is already running")
            return

        try:
            self._server = HTTPServer(("", self.config.port), self._handler_class)
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="offline-proxy",
                daemon=True,
            )
            self._thread.start()

            logger.info("Proxy server started on port %d", self.config.port)

        except OSError as e:
            if e.errno == 98 or e.errno == 48:  # EADDRINUSE (Linux=98, macOS=48)
                raise ProxyError(
                    f"Port {self.config.port} is already in use. "
                    f"Another process may be using this port, or offlinecache is already running."
                )
            elif e.errno == 13:  # EACCES - Permission denied
                raise ProxyError(
                    f"Permission denied for port {self.config.port}. "
                    f"Ports below 1024 require root privileges."
                )
            else:
                raise ProxyError(f"Failed to start proxy server on port {self.config.port}: {e}")

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the proxy server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping proxy server...")
        self._shutdown_event.set()

        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("Proxy server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
