"""
Schemas for inbound chat messages and queued classification work.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

MEDIA_PLACEHOLDER = "[media message]"
URL_PATTERN = re.compile(r"https?://[^\s]+")


class Priority(str, Enum):
    HIGH = "High"
    NORMAL = "Normal"


def contains_url(text: str) -> bool:
    return URL_PATTERN.search(text) is not None


def classify_priority(is_member: bool, has_url: bool) -> Priority:
    """
    Non-members and link-bearing messages are disproportionately spam and are judged first.
    """

    if not is_member or has_url:
        return Priority.HIGH
    return Priority.NORMAL


class WebSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    title: str | None = None
    site_name: str | None = None
    content: str | None = None

    def render(self) -> str:
        lines = []
        if self.title:
            lines.append(f"Title: {self.title}")
        if self.site_name:
            lines.append(f"Site: {self.site_name}")
        if self.content:
            lines.append(f"Content: {self.content}")
        return "\n".join(lines)


class InboundMessage(BaseModel):
    message_id: int
    chat_id: int
    chat_title: str | None = None
    sender_id: int | None = None
    sender_display: str = "Unknown"
    username: str | None = None
    text: str = Field(..., min_length=1)
    is_member: bool = False
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_telegram(cls, message: dict[str, Any], *, is_member: bool) -> "InboundMessage":
        """
        Build from a Bot API `Message` object. Text falls back to the caption, then to a placeholder.
        """

        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        text = (message.get("text") or message.get("caption") or "").strip() or MEDIA_PLACEHOLDER
        sent_at = message.get("date")
        return cls(
            message_id=message["message_id"],
            chat_id=chat["id"],
            chat_title=chat.get("title"),
            sender_id=sender.get("id"),
            sender_display=format_user_display(sender),
            username=sender.get("username"),
            text=text,
            is_member=is_member,
            sent_at=datetime.fromtimestamp(sent_at, tz=timezone.utc) if sent_at else datetime.now(timezone.utc),
        )


def format_user_display(user: dict[str, Any]) -> str:
    if not user:
        return "Unknown"
    if user.get("username"):
        return f"@{user['username']}"
    name = " ".join(part for part in (user.get("first_name"), user.get("last_name")) if part).strip()
    return name or "Unknown"


class WorkItem(BaseModel):
    """
    One message queued for classification.

    Immutable: the queue stamps `enqueued_at`, enrichment and retries produce copies.
    `priority` is always derived from `is_member` and `extracted_urls`.
    """

    model_config = ConfigDict(frozen=True)

    message_id: int
    chat_id: int
    sender_id: int | None = None
    text: str
    extracted_urls: tuple[str, ...] = ()
    is_member: bool = False
    enqueued_at: int = 0
    priority: Priority = Priority.NORMAL
    enrichment: tuple[WebSummary, ...] | None = None

    chat_title: str | None = None
    sender_display: str = "Unknown"
    username: str | None = None
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0

    @model_validator(mode="before")
    @classmethod
    def _derive_priority(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            # Any link in the text counts, even when extraction is capped below it.
            has_url = bool(data.get("extracted_urls")) or contains_url(str(data.get("text") or ""))
            data["priority"] = classify_priority(bool(data.get("is_member", False)), has_url)
        return data

    @property
    def key(self) -> str:
        return f"{self.chat_id}:{self.message_id}"

    @classmethod
    def from_message(cls, message: InboundMessage, urls: list[str]) -> "WorkItem":
        return cls(
            message_id=message.message_id,
            chat_id=message.chat_id,
            sender_id=message.sender_id,
            text=message.text,
            extracted_urls=tuple(urls),
            is_member=message.is_member,
            chat_title=message.chat_title,
            sender_display=message.sender_display,
            username=message.username,
            sent_at=message.sent_at,
        )
