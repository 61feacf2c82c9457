"""Shared fixtures: a scripted network and a worker wired to it."""

import threading

import pytest

from offlinecache.models import Request, Response
from offlinecache.network import NetworkError
from offlinecache.storage import MemoryCacheStorage, normalize_url
from offlinecache.worker import ServiceWorker

ORIGIN = "https://afz.example"
GENERATION = "afz-advocacy-v1.0.6"
OFFLINE_URL = "/pages/offline.html"


class FakeNetwork:
    """Scripted stand-in for the network.

    Unknown URLs answer 404. URLs marked with ``fail`` (or everything, once
    ``offline`` is set) raise NetworkError. URLs marked with ``hang`` block
    until the returned event is set.
    """

    def __init__(self) -> None:
        self.offline = False
        self.calls: list[Request] = []
        self._routes: dict[tuple[str, str], Response] = {}
        self._failures: set[str] = set()
        self._gates: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def respond(self, url: str, body: bytes | str = b"", status: int = 200, headers: dict | None = None, method: str = "GET") -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._routes[(method, normalize_url(url))] = Response(
            status=status,
            body=body,
            headers=headers or {},
            status_text="OK" if status == 200 else "",
            url=url,
        )

    def fail(self, url: str) -> None:
        self._failures.add(normalize_url(url))

    def hang(self, url: str) -> threading.Event:
        gate = threading.Event()
        self._gates[normalize_url(url)] = gate
        return gate

    def calls_to(self, url: str) -> int:
        key = normalize_url(url)
        with self._lock:
            return sum(1 for r in self.calls if normalize_url(r.url) == key)

    def __call__(self, request: Request) -> Response:
        key = normalize_url(request.url)
        with self._lock:
            self.calls.append(request)
        gate = self._gates.get(key)
        if gate is not None:
            gate.wait()
        if self.offline or key in self._failures:
            raise NetworkError(f"{request.method} {request.url} failed: offline")
        return self._routes.get((request.method, key), Response(status=404, status_text="Not Found", url=request.url))


@pytest.fixture
def network() -> FakeNetwork:
    """Create a scripted network with nothing routed."""
    return FakeNetwork()


@pytest.fixture
def storage() -> MemoryCacheStorage:
    """Create an empty in-memory cache storage."""
    return MemoryCacheStorage()


@pytest.fixture
def worker(storage: MemoryCacheStorage, network: FakeNetwork) -> ServiceWorker:
    """Create a worker for the test origin with a two-entry manifest."""
    w = ServiceWorker(
        storage,
        network,
        origin=ORIGIN,
        generation=GENERATION,
        manifest=["/", OFFLINE_URL],
        offline_url=OFFLINE_URL,
    )
    yield w
    w.close()


def page_request(path: str) -> Request:
    """Build a same-origin document request."""
    return Request(f"{ORIGIN}{path}", headers={"Accept": "text/html,application/xhtml+xml"})
