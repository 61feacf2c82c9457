"""Push payload parsing and notification click routing."""

import json
import logging
import time
from typing import Any

from .clients import Client, ClientRegistry, NotificationCenter
from .models import Notification, NotificationAction

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "AFZ Advocacy Update"
DEFAULT_BODY = "Stay updated with AFZ advocacy efforts and community events."
DEFAULT_ICON = "/images/pwa-icons/icon-192x192.png"
DEFAULT_BADGE = "/images/pwa-icons/badge-72x72.png"
DEFAULT_VIBRATE = (200, 100, 200)

DEFAULT_ACTIONS = (
    NotificationAction(action="explore", title="Explore App", icon="/images/pwa-icons/explore-icon.png"),
    NotificationAction(action="close", title="Close", icon="/images/pwa-icons/close-icon.png"),
)

CLOSE_ACTION = "close"


def _parse_payload(payload: bytes | str | None) -> dict[str, Any]:
    """Decode a push payload, tolerating anything that is not a JSON object."""
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning("Ignoring malformed push payload: %s", e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring push payload that is not a JSON object")
        return {}
    return data


def build_notification(payload: bytes | str | None, now_ms: int | None = None) -> Notification:
    """Build the notification for a push message.

    Optional payload fields ``title``, ``body`` and ``icon`` replace the
    defaults when truthy; ``data`` is merged over the default data.

    Args:
        payload: Raw push body, or None when the push carried no data.
        now_ms: Arrival time in epoch milliseconds (defaults to now).
    """
    data: dict[str, Any] = {
        "dateOfArrival": now_ms if now_ms is not None else int(time.time() * 1000),
        "primaryKey": "1",
    }
    push_data = _parse_payload(payload)

    extra = push_data.get("data")
    if isinstance(extra, dict):
        data.update(extra)

    return Notification(
        title=push_data.get("title") or DEFAULT_TITLE,
        body=push_data.get("body") or DEFAULT_BODY,
        icon=push_data.get("icon") or DEFAULT_ICON,
        badge=DEFAULT_BADGE,
        vibrate=DEFAULT_VIBRATE,
        data=data,
        actions=DEFAULT_ACTIONS,
    )


def handle_notification_click(
    notification: Notification,
    action: str | None,
    clients: ClientRegistry,
    notifications: NotificationCenter,
    origin: str,
) -> Client | None:
    """Close the notification, then focus an open page or open a new one.

    Returns:
        The focused or opened page, or None for the "close" action.
    """
    notifications.close(notification)

    if action == CLOSE_ACTION:
        return None

    for client in clients.match_all(type="window"):
        if origin in client.url:
            return clients.focus(client)

    return clients.open_window("/")
