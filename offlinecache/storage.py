"""Named, versioned cache stores.

A CacheStorage is a registry of named Cache stores. Each Cache maps a
normalized request identity (method + URL) to a captured Response. Two
backends are provided: an in-memory one and a SQLite-backed one.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from urllib.parse import urlsplit, urlunsplit

from .database import DatabaseError, db_lock
from .models import DEFAULT_PORTS, Request, Response
from .network import Fetcher

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a cache store operation fails."""

    pass


def normalize_url(url: str) -> str:
    """Normalize a URL for use as a cache key.

    Lowercases scheme and host, drops default ports and the fragment, and
    turns an empty path into "/". The query string is kept as-is.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    netloc = host
    if parts.port is not None and parts.port != DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{parts.port}"
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def request_key(request: Request) -> tuple[str, str]:
    """Return the (method, normalized URL) identity of a request."""
    return request.method, normalize_url(request.url)


def _check_cacheable(request: Request) -> None:
    if request.method != "GET":
        raise StorageError(f"Only GET requests can be cached, got {request.method} {request.url}")


class Cache(ABC):
    """A single named cache store."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def match(self, request: Request) -> Response | None:
        """Return the stored response for this request, or None."""

    @abstractmethod
    def put(self, request: Request, response: Response) -> None:
        """Store (or overwrite) the response for this request."""

    @abstractmethod
    def delete(self, request: Request) -> bool:
        """Remove the entry for this request. Returns True if one existed."""

    @abstractmethod
    def keys(self) -> list[Request]:
        """Return the requests that currently have entries."""

    @abstractmethod
    def _put_many(self, entries: list[tuple[Request, Response]]) -> None:
        """Store all entries atomically."""

    def add_all(self, urls: Iterable[str], fetcher: Fetcher) -> int:
        """Fetch every URL and store all responses, or none of them.

        Every response is fetched before anything is written, so a single
        failing entry leaves the store untouched.

        Returns:
            Number of entries stored.

        Raises:
            NetworkError: If any fetch cannot reach the network.
            StorageError: If any fetch returns a non-2xx status.
        """
        entries: list[tuple[Request, Response]] = []
        for url in urls:
            request = Request(url)
            response = fetcher(request)
            if not response.ok:
                raise StorageError(f"Request for {url} returned status {response.status}")
            entries.append((request, response))

        self._put_many(entries)
        return len(entries)

    def __len__(self) -> int:
        return len(self.keys())


class CacheStorage(ABC):
    """Registry of named cache stores."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return the names of all existing stores, oldest first."""

    @abstractmethod
    def open(self, name: str) -> Cache:
        """Return the named store, creating it if absent."""

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Delete the named store and all its entries. Returns True if it existed."""

    def has(self, name: str) -> bool:
        return name in self.keys()


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================


class MemoryCache(Cache):
    """Dict-backed cache store."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], tuple[Request, Response]] = {}

    def match(self, request: Request) -> Response | None:
        with self._lock:
            entry = self._entries.get(request_key(request))
        return entry[1] if entry else None

    def put(self, request: Request, response: Response) -> None:
        _check_cacheable(request)
        with self._lock:
            self._entries[request_key(request)] = (request, response)

    def delete(self, request: Request) -> bool:
        with self._lock:
            return self._entries.pop(request_key(request), None) is not None

    def keys(self) -> list[Request]:
        with self._lock:
            return [req for req, _ in self._entries.values()]

    def _put_many(self, entries: list[tuple[Request, Response]]) -> None:
        for request, _ in entries:
            _check_cacheable(request)
        with self._lock:
            for request, response in entries:
                self._entries[request_key(request)] = (request, response)


class MemoryCacheStorage(CacheStorage):
    """Cache storage that lives only as long as the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._caches: dict[str, MemoryCache] = {}

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._caches)

    def open(self, name: str) -> MemoryCache:
        with self._lock:
            if name not in self._caches:
                self._caches[name] = MemoryCache(name)
            return self._caches[name]

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._caches.pop(name, None) is not None


# =============================================================================
# SQLITE BACKEND
# =============================================================================


def _row_to_response(row: sqlite3.Row) -> Response:
    return Response(
        status=row["status"],
        body=bytes(row["body"]),
        headers=json.loads(row["headers"]),
        status_text=row["status_text"],
        url=row["response_url"],
    )


class SqliteCache(Cache):
    """Cache store persisted in the ``cache_entries`` table.

    Thread-safe: every statement runs under the global database lock.
    """

    def __init__(self, conn: sqlite3.Connection, name: str) -> None:
        super().__init__(name)
        self._conn = conn

    def _ensure_store(self) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
            (self.name, datetime.now(UTC).isoformat()),
        )

    def _insert(self, request: Request, response: Response) -> None:
        method, url = request_key(request)
        self._conn.execute(
            """
            INSERT OR REPLACE INTO cache_entries
            (cache_name, method, url, status, status_text, headers, body, response_url, stored_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.name,
                method,
                url,
                response.status,
                response.status_text,
                json.dumps(dict(response.headers)),
                response.body,
                response.url,
                datetime.now(UTC).isoformat(),
            ),
        )

    def match(self, request: Request) -> Response | None:
        method, url = request_key(request)
        try:
            with db_lock:
                row = self._conn.execute(
                    """
                    SELECT status, status_text, headers, body, response_url
                    FROM cache_entries
                    WHERE cache_name = ? AND method = ? AND url = ?
                    """,
                    (self.name, method, url),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read cache entry for {url}: {e}")
        return _row_to_response(row) if row else None

    def put(self, request: Request, response: Response) -> None:
        _check_cacheable(request)
        try:
            with db_lock:
                self._ensure_store()
                self._insert(request, response)
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store cache entry for {request.url}: {e}")

    def _put_many(self, entries: list[tuple[Request, Response]]) -> None:
        for request, _ in entries:
            _check_cacheable(request)
        try:
            with db_lock:
                try:
                    self._ensure_store()
                    for request, response in entries:
                        self._insert(request, response)
                    self._conn.commit()
                except sqlite3.Error:
                    self._conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise StorageError(f"Failed to populate cache '{self.name}': {e}")

    def delete(self, request: Request) -> bool:
        method, url = request_key(request)
        try:
            with db_lock:
                cursor = self._conn.execute(
                    "DELETE FROM cache_entries WHERE cache_name = ? AND method = ? AND url = ?",
                    (self.name, method, url),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete cache entry for {url}: {e}")
        return cursor.rowcount > 0

    def keys(self) -> list[Request]:
        try:
            with db_lock:
                rows = self._conn.execute(
                    "SELECT method, url FROM cache_entries WHERE cache_name = ? ORDER BY rowid",
                    (self.name,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list cache '{self.name}': {e}")
        return [Request(row["url"], method=row["method"]) for row in rows]


class SqliteCacheStorage(CacheStorage):
    """Cache storage persisted in SQLite, surviving process restarts."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def keys(self) -> list[str]:
        try:
            with db_lock:
                rows = self._conn.execute("SELECT name FROM caches ORDER BY rowid").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list caches: {e}")
        return [row["name"] for row in rows]

    def open(self, name: str) -> SqliteCache:
        cache = SqliteCache(self._conn, name)
        try:
            with db_lock:
                cache._ensure_store()
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open cache '{name}': {e}")
        return cache

    def delete(self, name: str) -> bool:
        try:
            with db_lock:
                self._conn.execute("DELETE FROM cache_entries WHERE cache_name = ?", (name,))
                cursor = self._conn.execute("DELETE FROM caches WHERE name = ?", (name,))
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete cache '{name}': {e}")
        return cursor.rowcount > 0


def open_storage(backend: str, db_conn: sqlite3.Connection | None = None) -> CacheStorage:
    """Create the configured storage backend.

    Raises:
        DatabaseError: If the SQLite backend is requested without a connection.
    """
    if backend == "memory":
        return MemoryCacheStorage()
    if db_conn is None:
        raise DatabaseError("SQLite cache storage requires a database connection")
    return SqliteCacheStorage(db_conn)
