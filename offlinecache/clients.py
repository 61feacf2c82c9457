"""In-process handles for open pages and displayed notifications."""

import itertools
import logging
import threading
from dataclasses import dataclass, field

from .models import ClientMessage, Notification

logger = logging.getLogger(__name__)


@dataclass
class Client:
    """An open page (tab or window).

    Attributes:
        id: Registry-assigned identifier.
        url: URL currently shown by the page.
        type: "window" for top-level pages, "worker" or "sharedworker" otherwise.
        controlled: Whether this worker controls the page.
        focused: Whether the page has focus.
        messages: Messages posted to the page, oldest first.
    """

    id: int
    url: str
    type: str = "window"
    controlled: bool = False
    focused: bool = False
    messages: list[ClientMessage] = field(default_factory=list)

    def post_message(self, message: ClientMessage) -> None:
        self.messages.append(message)


class ClientRegistry:
    """Tracks pages connected to this worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: list[Client] = []
        self._ids = itertools.count(1)

    def connect(self, url: str, type: str = "window", controlled: bool = False) -> Client:
        """Register a newly opened page."""
        with self._lock:
            client = Client(id=next(self._ids), url=url, type=type, controlled=controlled)
            self._clients.append(client)
        return client

    def disconnect(self, client: Client) -> None:
        with self._lock:
            self._clients = [c for c in self._clients if c.id != client.id]

    def match_all(self, type: str | None = None, include_uncontrolled: bool = False) -> list[Client]:
        """Return open pages, optionally filtered by type.

        Only controlled pages are returned unless include_uncontrolled is set.
        """
        with self._lock:
            return [
                c
                for c in self._clients
                if (type is None or c.type == type) and (include_uncontrolled or c.controlled)
            ]

    def claim(self) -> int:
        """Take control of every open page. Returns the number newly claimed."""
        with self._lock:
            claimed = 0
            for client in self._clients:
                if not client.controlled:
                    client.controlled = True
                    claimed += 1
        logger.debug("Claimed %d client(s)", claimed)
        return claimed

    def focus(self, client: Client) -> Client:
        with self._lock:
            for other in self._clients:
                other.focused = other.id == client.id
        return client

    def open_window(self, url: str) -> Client:
        """Open a new controlled, focused page at the given URL."""
        client = self.connect(url, type="window", controlled=True)
        return self.focus(client)


class NotificationCenter:
    """Records notifications shown by the worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._shown: list[Notification] = []

    def show_notification(self, notification: Notification) -> None:
        with self._lock:
            self._shown.append(notification)
        logger.info("Notification shown: %s", notification.title)

    def close(self, notification: Notification) -> None:
        with self._lock:
            if notification in self._shown:
                self._shown.remove(notification)

    @property
    def visible(self) -> list[Notification]:
        with self._lock:
            return list(self._shown)
