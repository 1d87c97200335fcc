"""
Notification seam.

Responses (button clicks, dismissals) come back asynchronously through the
event router, correlated by the notification id.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from closure.observability.logging import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    async def notify(
        self,
        notification_id: str,
        title: str,
        message: str,
        buttons: Sequence[str] = (),
    ) -> None: ...

    async def clear(self, notification_id: str) -> None: ...

    async def set_badge_text(self, text: str) -> None: ...


@dataclass
class OutboundNotification:
    notification_id: str
    title: str
    message: str
    buttons: list[str] = field(default_factory=list)


class OutboxNotifier:
    """
    Notifier that queues notifications for the browser surface to collect.

    Used when the orchestrator runs behind the HTTP API: the extension polls
    the outbox, displays what it finds, and reports clicks back.
    """

    def __init__(self):
        self._outbox: dict[str, OutboundNotification] = {}
        self.badge_text = ""

    async def notify(
        self,
        notification_id: str,
        title: str,
        message: str,
        buttons: Sequence[str] = (),
    ) -> None:
        self._outbox[notification_id] = OutboundNotification(
            notification_id, title, message, list(buttons)
        )
        logger.debug("Queued notification %s", notification_id)

    async def clear(self, notification_id: str) -> None:
        self._outbox.pop(notification_id, None)

    async def set_badge_text(self, text: str) -> None:
        self.badge_text = text

    def drain(self) -> list[OutboundNotification]:
        """Return and forget every queued notification, oldest first."""
        pending = list(self._outbox.values())
        self._outbox.clear()
        return pending
