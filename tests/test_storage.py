"""Tests for the storage module."""

import sqlite3
from pathlib import Path

import pytest

from offlinecache.database import DatabaseError, init_db
from offlinecache.models import Request, Response
from offlinecache.network import NetworkError
from offlinecache.storage import (
    CacheStorage,
    MemoryCacheStorage,
    SqliteCacheStorage,
    StorageError,
    normalize_url,
    open_storage,
)

from conftest import FakeNetwork


@pytest.fixture
def db_conn(tmp_path: Path) -> sqlite3.Connection:
    """Create a database connection with initialized tables."""
    conn = init_db(str(tmp_path / "cache.db"))
    yield conn
    conn.close()


@pytest.fixture(params=["memory", "sqlite"])
def cache_storage(request: pytest.FixtureRequest, db_conn: sqlite3.Connection) -> CacheStorage:
    """Create each storage backend in turn."""
    if request.param == "memory":
        return MemoryCacheStorage()
    return SqliteCacheStorage(db_conn)


class TestNormalizeUrl:
    """Tests for normalize_url function."""

    def test_lowercases_scheme_and_host(self) -> None:
        assert normalize_url("HTTPS://AFZ.Example/Pages/About.html") == "https://afz.example/Pages/About.html"

    def test_drops_default_port(self) -> None:
        assert normalize_url("https://afz.example:443/") == "https://afz.example/"
        assert normalize_url("http://afz.example:80/") == "http://afz.example/"

    def test_keeps_non_default_port(self) -> None:
        assert normalize_url("http://localhost:8090/x") == "http://localhost:8090/x"

    def test_empty_path_becomes_root(self) -> None:
        assert normalize_url("https://afz.example") == "https://afz.example/"

    def test_drops_fragment_keeps_query(self) -> None:
        assert normalize_url("https://afz.example/js/main.js?v=2#top") == "https://afz.example/js/main.js?v=2"


class TestCacheStorage:
    """Tests shared by both cache storage backends."""

    def test_open_creates_store(self, cache_storage: CacheStorage) -> None:
        """Opening a name creates the store."""
        cache_storage.open("afz-advocacy-v1.0.6")
        assert cache_storage.keys() == ["afz-advocacy-v1.0.6"]
        assert cache_storage.has("afz-advocacy-v1.0.6")

    def test_keys_in_creation_order(self, cache_storage: CacheStorage) -> None:
        """Store names are listed oldest first."""
        for name in ("a-v1", "b-v2", "c-v3"):
            cache_storage.open(name)
        assert cache_storage.keys() == ["a-v1", "b-v2", "c-v3"]

    def test_delete_removes_store_and_entries(self, cache_storage: CacheStorage) -> None:
        """Deleting a store drops its entries too."""
        cache = cache_storage.open("old-v1")
        cache.put(Request("https://afz.example/"), Response(status=200, body=b"home"))

        assert cache_storage.delete("old-v1") is True
        assert cache_storage.keys() == []
        assert len(cache_storage.open("old-v1")) == 0

    def test_delete_missing_store(self, cache_storage: CacheStorage) -> None:
        """Deleting an unknown name reports False."""
        assert cache_storage.delete("never-existed") is False

    def test_put_and_match(self, cache_storage: CacheStorage) -> None:
        """A stored response is returned with status, headers and body intact."""
        cache = cache_storage.open("v1")
        request = Request("https://afz.example/css/site.css")
        cache.put(request, Response(status=200, body=b"body{}", headers={"Content-Type": "text/css"}, status_text="OK"))

        cached = cache.match(Request("https://afz.example/css/site.css"))

        assert cached is not None
        assert cached.status == 200
        assert cached.body == b"body{}"
        assert cached.headers["content-type"] == "text/css"
        assert cached.status_text == "OK"

    def test_match_uses_normalized_identity(self, cache_storage: CacheStorage) -> None:
        """Equivalent URLs hit the same entry."""
        cache = cache_storage.open("v1")
        cache.put(Request("https://afz.example"), Response(status=200, body=b"home"))

        assert cache.match(Request("HTTPS://afz.example:443/#main")) is not None

    def test_match_ignores_request_headers(self, cache_storage: CacheStorage) -> None:
        """Identity is URL plus method only."""
        cache = cache_storage.open("v1")
        cache.put(Request("https://afz.example/"), Response(status=200))

        assert cache.match(Request("https://afz.example/", headers={"Accept": "text/html"})) is not None

    def test_match_miss(self, cache_storage: CacheStorage) -> None:
        assert cache_storage.open("v1").match(Request("https://afz.example/nothing")) is None

    def test_put_overwrites(self, cache_storage: CacheStorage) -> None:
        """The last write for a key wins."""
        cache = cache_storage.open("v1")
        request = Request("https://afz.example/")
        cache.put(request, Response(status=200, body=b"old"))
        cache.put(request, Response(status=200, body=b"new"))

        assert cache.match(request).body == b"new"
        assert len(cache) == 1

    def test_put_rejects_non_get(self, cache_storage: CacheStorage) -> None:
        """Only GET requests are ever stored."""
        cache = cache_storage.open("v1")
        with pytest.raises(StorageError):
            cache.put(Request("https://afz.example/api/contact", method="POST"), Response(status=200))

    def test_stores_are_isolated(self, cache_storage: CacheStorage) -> None:
        """Entries belong to exactly one store."""
        request = Request("https://afz.example/")
        cache_storage.open("v1").put(request, Response(status=200, body=b"one"))

        assert cache_storage.open("v2").match(request) is None

    def test_delete_entry(self, cache_storage: CacheStorage) -> None:
        cache = cache_storage.open("v1")
        request = Request("https://afz.example/")
        cache.put(request, Response(status=200))

        assert cache.delete(request) is True
        assert cache.delete(request) is False
        assert cache.match(request) is None

    def test_keys_lists_requests(self, cache_storage: CacheStorage) -> None:
        cache = cache_storage.open("v1")
        cache.put(Request("https://afz.example/a"), Response(status=200))
        cache.put(Request("https://afz.example/b"), Response(status=200))

        assert [r.url for r in cache.keys()] == ["https://afz.example/a", "https://afz.example/b"]


class TestAddAll:
    """Tests for the all-or-nothing bulk populate."""

    def test_stores_every_entry(self, cache_storage: CacheStorage, network: FakeNetwork) -> None:
        """All entries are cached when every fetch succeeds."""
        network.respond("https://afz.example/", "home")
        network.respond("https://afz.example/pages/offline.html", "offline")
        cache = cache_storage.open("v1")

        count = cache.add_all(["https://afz.example/", "https://afz.example/pages/offline.html"], network)

        assert count == 2
        assert len(cache) == 2
        assert cache.match(Request("https://afz.example/pages/offline.html")).text == "offline"

    def test_error_status_stores_nothing(self, cache_storage: CacheStorage, network: FakeNetwork) -> None:
        """A 404 for any entry fails the whole batch."""
        network.respond("https://afz.example/", "home")
        cache = cache_storage.open("v1")

        with pytest.raises(StorageError, match="404"):
            cache.add_all(["https://afz.example/", "https://afz.example/missing.html"], network)

        assert len(cache) == 0

    def test_network_failure_stores_nothing(self, cache_storage: CacheStorage, network: FakeNetwork) -> None:
        """An unreachable entry fails the whole batch."""
        network.respond("https://afz.example/", "home")
        network.fail("https://cdn.example/lib.css")
        cache = cache_storage.open("v1")

        with pytest.raises(NetworkError):
            cache.add_all(["https://afz.example/", "https://cdn.example/lib.css"], network)

        assert len(cache) == 0

    def test_existing_entries_survive_failure(self, cache_storage: CacheStorage, network: FakeNetwork) -> None:
        """A failed batch does not disturb entries already in the store."""
        cache = cache_storage.open("v1")
        cache.put(Request("https://afz.example/kept"), Response(status=200, body=b"kept"))

        with pytest.raises(StorageError):
            cache.add_all(["https://afz.example/missing"], network)

        assert cache.match(Request("https://afz.example/kept")).body == b"kept"


class TestSqlitePersistence:
    """Tests specific to the SQLite backend."""

    def test_entries_survive_reconnect(self, tmp_path: Path) -> None:
        """Entries are durable across connections."""
        db_path = str(tmp_path / "cache.db")
        conn = init_db(db_path)
        SqliteCacheStorage(conn).open("v1").put(Request("https://afz.example/"), Response(status=200, body=b"home"))
        conn.close()

        conn = init_db(db_path)
        storage = SqliteCacheStorage(conn)
        try:
            assert storage.keys() == ["v1"]
            assert storage.open("v1").match(Request("https://afz.example/")).body == b"home"
        finally:
            conn.close()

    def test_put_after_delete_recreates_store(self, db_conn: sqlite3.Connection) -> None:
        """Writing through a handle to a deleted store brings the store back."""
        storage = SqliteCacheStorage(db_conn)
        cache = storage.open("v1")
        storage.delete("v1")

        cache.put(Request("https://afz.example/"), Response(status=200))

        assert storage.keys() == ["v1"]

    def test_closed_connection_raises_storage_error(self, tmp_path: Path) -> None:
        conn = init_db(str(tmp_path / "cache.db"))
        storage = SqliteCacheStorage(conn)
        conn.close()

        with pytest.raises(StorageError):
            storage.keys()


class TestOpenStorage:
    """Tests for open_storage function."""

    def test_memory_backend(self) -> None:
        assert isinstance(open_storage("memory"), MemoryCacheStorage)

    def test_sqlite_backend(self, db_conn: sqlite3.Connection) -> None:
        assert isinstance(open_storage("sqlite", db_conn), SqliteCacheStorage)

    def test_sqlite_requires_connection(self) -> None:
        with pytest.raises(DatabaseError):
            open_storage("sqlite")
