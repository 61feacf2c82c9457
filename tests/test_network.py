"""Tests for the network module."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from offlinecache.models import Request
from offlinecache.network import DEFAULT_USER_AGENT, HttpFetcher, NetworkError


@pytest.fixture
def session() -> MagicMock:
    """Create a mock requests session."""
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


def _mock_response(status: int = 200, content: bytes = b"", headers: dict | None = None, reason: str = "OK", url: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    resp.headers = headers or {}
    resp.reason = reason
    resp.url = url
    return resp


class TestHttpFetcher:
    """Tests for HttpFetcher class."""

    def test_sets_user_agent(self, session: MagicMock) -> None:
        HttpFetcher(session=session)
        assert session.headers["User-Agent"] == DEFAULT_USER_AGENT

    def test_custom_user_agent(self, session: MagicMock) -> None:
        HttpFetcher(user_agent="afz-offline/1.0", session=session)
        assert session.headers["User-Agent"] == "afz-offline/1.0"

    def test_captures_response(self, session: MagicMock) -> None:
        """Status, body, headers, reason and final URL are captured."""
        session.request.return_value = _mock_response(
            status=200,
            content=b"body{}",
            headers={"Content-Type": "text/css"},
            url="https://afz.example/css/site.css",
        )
        fetcher = HttpFetcher(session=session)

        response = fetcher(Request("https://afz.example/css/site.css"))

        assert response.status == 200
        assert response.body == b"body{}"
        assert response.headers["content-type"] == "text/css"
        assert response.status_text == "OK"
        assert response.url == "https://afz.example/css/site.css"

    def test_passes_method_headers_and_body(self, session: MagicMock) -> None:
        session.request.return_value = _mock_response(status=201, reason="Created")
        fetcher = HttpFetcher(timeout=5.0, session=session)

        fetcher.fetch(
            Request(
                "https://afz.example/api/contact",
                method="post",
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                body=b"name=Ada",
            )
        )

        session.request.assert_called_once_with(
            "POST",
            "https://afz.example/api/contact",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data=b"name=Ada",
            timeout=5.0,
        )

    def test_no_timeout_by_default(self, session: MagicMock) -> None:
        session.request.return_value = _mock_response()
        HttpFetcher(session=session)(Request("https://afz.example/"))

        assert session.request.call_args.kwargs["timeout"] is None

    def test_error_status_is_a_response(self, session: MagicMock) -> None:
        """HTTP errors come back as responses, not exceptions."""
        session.request.return_value = _mock_response(status=404, reason="Not Found")

        response = HttpFetcher(session=session)(Request("https://afz.example/missing"))

        assert response.status == 404
        assert response.ok is False

    def test_url_falls_back_to_request_url(self, session: MagicMock) -> None:
        session.request.return_value = _mock_response(url="")
        response = HttpFetcher(session=session)(Request("https://afz.example/"))
        assert response.url == "https://afz.example/"

    @pytest.mark.parametrize(
        "error",
        [
            requests.ConnectionError("connection refused"),
            requests.Timeout("timed out"),
            requests.exceptions.InvalidURL("bad url"),
        ],
    )
    def test_request_exceptions_become_network_errors(self, session: MagicMock, error: Exception) -> None:
        session.request.side_effect = error
        fetcher = HttpFetcher(session=session)

        with pytest.raises(NetworkError, match="GET https://afz.example/"):
            fetcher(Request("https://afz.example/"))

    def test_close_closes_session(self, session: MagicMock) -> None:
        HttpFetcher(session=session).close()
        session.close.assert_called_once()

    @patch("offlinecache.network.requests.Session")
    def test_creates_session_when_none_given(self, mock_session_cls: Mock) -> None:
        mock_session_cls.return_value.headers = {}

        HttpFetcher()

        mock_session_cls.assert_called_once_with()
