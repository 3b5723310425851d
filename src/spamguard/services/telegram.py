"""Telegram Bot API gateway: message deletion, admin notifications, membership and updates."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from spamguard.errors import ActionFailure

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
NON_MEMBER_STATUSES = {"left", "kicked"}


class PlatformGateway(Protocol):
    async def delete_message(self, chat_id: int, message_id: int) -> bool: ...

    async def notify_admin(self, text: str) -> bool: ...


class TelegramApiError(ActionFailure):
    def __init__(self, method: str, description: str, error_code: int | None = None):
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


class TelegramGateway:
    """Thin Bot API client. Action methods are best effort and return False on failure."""

    def __init__(
        self,
        token: str,
        admin_group_id: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = API_BASE,
    ):
        """
        Args:
            token: Bot API token
            admin_group_id: Chat receiving spam deletion logs (0 or None disables them)
            http_client: Shared HTTP client for connection pooling (optional)
            base_url: Bot API root, overridable for a local Bot API server
        """
        self._token = token
        self._admin_group_id = admin_group_id or None
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")

    @property
    def admin_group_id(self) -> Optional[int]:
        return self._admin_group_id

    async def call(self, method: str, payload: dict[str, Any], *, timeout: float = 30.0) -> Any:
        """
        Invoke a Bot API method and return its `result`.

        Raises:
            TelegramApiError: when Telegram answers `ok: false`
            httpx.HTTPError: on transport failures
        """
        url = f"{self._base_url}/bot{self._token}/{method}"
        if self._http_client is not None:
            response = await self._http_client.post(url, json=payload, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=payload)

        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise TelegramApiError(method, "response was not JSON")
        if not data.get("ok"):
            raise TelegramApiError(method, data.get("description", "unknown error"), data.get("error_code"))
        return data.get("result")

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})
        except (TelegramApiError, httpx.HTTPError) as e:
            logger.error(f"Failed to delete message {message_id} in chat {chat_id}: {e}")
            return False
        return True

    async def notify_admin(self, text: str) -> bool:
        if self._admin_group_id is None:
            return False
        try:
            await self.call(
                "sendMessage",
                {
                    "chat_id": self._admin_group_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
        except (TelegramApiError, httpx.HTTPError) as e:
            logger.warning(f"Failed to send admin notification to {self._admin_group_id}: {e}")
            return False
        return True

    async def is_member(self, chat_id: int, user_id: int) -> bool:
        """Membership lookup; failures count as non-member so the message is judged first."""
        try:
            member = await self.call("getChatMember", {"chat_id": chat_id, "user_id": user_id})
        except (TelegramApiError, httpx.HTTPError) as e:
            logger.warning(f"Membership check failed for user {user_id} in chat {chat_id}: {e}")
            return False
        return (member or {}).get("status") not in NON_MEMBER_STATUSES

    async def get_updates(self, offset: Optional[int], timeout: int = 30) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        return await self.call("getUpdates", payload, timeout=timeout + 15) or []
