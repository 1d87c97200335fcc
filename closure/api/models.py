"""Request/response models for the HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRequest(BaseModel):
    """A message from the browser surfaces; extra fields ride along to the handler."""

    model_config = ConfigDict(extra="allow")

    action: str = Field(min_length=1, max_length=64)

    def to_message(self) -> dict[str, Any]:
        return self.model_dump()


class AlarmResponse(BaseModel):
    name: str
    dispatched: bool = True


class NotificationResponse(BaseModel):
    notification_id: str
    handled: bool


class OutboxItem(BaseModel):
    notification_id: str
    title: str
    message: str
    buttons: list[str] = Field(default_factory=list)


class OutboxResponse(BaseModel):
    notifications: list[OutboxItem]
    badge_text: str = ""
