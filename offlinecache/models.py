"""Value types for intercepted requests, captured responses and queued work."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

from requests.structures import CaseInsensitiveDict


DEFAULT_PORTS = {"http": 80, "https": 443}


def _headers(value: Mapping[str, str] | None) -> CaseInsensitiveDict:
    return CaseInsensitiveDict(value or {})


@dataclass(frozen=True)
class Request:
    """An intercepted request.

    Attributes:
        url: Absolute URL of the request.
        method: HTTP method, upper-cased on construction.
        headers: Case-insensitive request headers.
        body: Raw request body, or None for bodiless requests.
    """

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    body: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _headers(self.headers))

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def origin(self) -> str:
        """Return ``scheme://host[:port]`` for the request URL, without a default port."""
        parts = urlsplit(self.url)
        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()
        if parts.port is not None and parts.port != DEFAULT_PORTS.get(scheme):
            return f"{scheme}://{host}:{parts.port}"
        return f"{scheme}://{host}"

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def accepts_html(self) -> bool:
        """Whether the Accept header asks for an HTML document."""
        return "text/html" in self.headers.get("Accept", "")


@dataclass(frozen=True)
class Response:
    """A captured response snapshot.

    Attributes:
        status: HTTP status code.
        body: Response body bytes.
        headers: Case-insensitive response headers.
        status_text: HTTP reason phrase (e.g., "OK", "Service Unavailable").
        url: URL the response was fetched from, empty for synthesized responses.
    """

    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    status_text: str = ""
    url: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _headers(self.headers))

    @property
    def ok(self) -> bool:
        """True for 2xx statuses, the only responses that are ever cached."""
        return 200 <= self.status <= 299

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


# Submission kinds, one per background sync tag
FORM_SUBMISSION = "form"
DONATION_SUBMISSION = "donation"
SUBMISSION_KINDS = (FORM_SUBMISSION, DONATION_SUBMISSION)


@dataclass(frozen=True)
class PendingSubmission:
    """A form or donation payload captured while offline.

    Attributes:
        kind: Either "form" or "donation".
        url: Target URL for form replays (donations use the configured endpoint).
        headers: Headers to replay with a form submission.
        body: Raw form body.
        data: Donation payload, serialized as JSON on replay.
        id: Queue identifier, None until the record is enqueued.
        created_at: When the submission was captured.
    """

    kind: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    data: dict[str, Any] | None = None
    id: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.kind not in SUBMISSION_KINDS:
            raise ValueError(f"Unknown submission kind '{self.kind}' (expected one of {SUBMISSION_KINDS})")


@dataclass(frozen=True)
class NotificationAction:
    """A button shown on a notification."""

    action: str
    title: str
    icon: str | None = None


@dataclass(frozen=True)
class Notification:
    """A displayed push notification."""

    title: str
    body: str
    icon: str
    badge: str | None = None
    vibrate: tuple[int, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    actions: tuple[NotificationAction, ...] = ()
    tag: str | None = None


# Message type broadcast to open pages after activation
FORCE_RELOAD = "FORCE_RELOAD"


@dataclass(frozen=True)
class ClientMessage:
    """Structured message posted to a client page."""

    type: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "message": self.message}
