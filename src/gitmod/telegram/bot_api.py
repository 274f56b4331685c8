"""
Thin Telegram Bot API client used to carry out moderation decisions.

Every call is one blocking HTTPS round trip made with ``requests`` in a worker
thread. A response with ``ok: false`` or a non-2xx status raises
:class:`TelegramAPIError`; callers decide whether that is fatal.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import requests

from gitmod.util.logger import get_logger

logger = get_logger("telegram_api")

TG_API_BASE = "https://api.telegram.org"

ADMIN_STATUSES = ("creator", "administrator")


class TelegramAPIError(Exception):
    """A Bot API call failed."""

    def __init__(self, method: str, description: str, error_code: int | None = None) -> None:
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


def inline_button(text: str, callback_data: str) -> Dict[str, Any]:
    """Return a one-button inline keyboard."""
    return {"inline_keyboard": [[{"text": text, "callback_data": callback_data}]]}


class TelegramDispatcher:
    """
    Issues restrict/remove/notify/delete/answer calls against the Bot API.

    Args:
        token: Bot token from BotFather.
        timeout: Per-request timeout in seconds.
        session: Optional ``requests.Session`` (tests inject a mock here).
    """

    def __init__(
        self,
        token: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        api_base: str = TG_API_BASE,
    ) -> None:
        self._token = token
        self.timeout = timeout
        self._session = session or requests.Session()
        self._api_base = api_base.rstrip("/")

    def _call_sync(self, method: str, payload: Dict[str, Any], timeout: float | None = None) -> Any:
        url = f"{self._api_base}/bot{self._token}/{method}"
        try:
            response = self._session.post(url, json=payload, timeout=timeout or self.timeout)
        except requests.RequestException as exc:
            raise TelegramAPIError(method, str(exc)) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.ok or not body.get("ok", False):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise TelegramAPIError(method, description, body.get("error_code", response.status_code))
        return body.get("result")

    async def call(self, method: str, payload: Dict[str, Any], timeout: float | None = None) -> Any:
        """Invoke a Bot API method and return its ``result``."""
        return await asyncio.to_thread(self._call_sync, method, payload, timeout)

    # ------------------------------------------------------------------
    # Moderation actions
    # ------------------------------------------------------------------

    async def restrict(self, chat_id: int, user_id: int, allow_posting: bool, until: int = 0) -> None:
        """Mute (``allow_posting=False``) or unmute a member. ``until`` 0 means forever."""
        permissions = {
            "can_send_messages": allow_posting,
            "can_send_media_messages": allow_posting,
        }
        await self.call(
            "restrictChatMember",
            {"chat_id": chat_id, "user_id": user_id, "permissions": permissions, "until_date": until},
        )

    async def remove(self, chat_id: int, user_id: int) -> None:
        """Ban the member from the chat."""
        await self.call("banChatMember", {"chat_id": chat_id, "user_id": user_id})

    async def notify(
        self,
        chat_id: int,
        text: str,
        parse_mode: str | None = "HTML",
        reply_markup: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Send a message and return the sent Message object."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self.call("sendMessage", payload)

    async def delete_event(self, chat_id: int, message_id: int) -> None:
        await self.call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def answer_interaction(self, interaction_id: str, text: str, show_alert: bool = False) -> None:
        await self.call(
            "answerCallbackQuery",
            {"callback_query_id": interaction_id, "text": text, "show_alert": show_alert},
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_member_status(self, chat_id: int, user_id: int) -> str | None:
        try:
            member = await self.call("getChatMember", {"chat_id": chat_id, "user_id": user_id})
        except TelegramAPIError as exc:
            logger.warning("[TELEGRAM] Could not look up member %s in %s: %s", user_id, chat_id, exc)
            return None
        return (member or {}).get("status")

    async def is_admin(self, chat_id: int, user_id: int) -> bool:
        return await self.get_member_status(chat_id, user_id) in ADMIN_STATUSES

    async def get_administrators(self, chat_id: int) -> List[Dict[str, Any]]:
        return await self.call("getChatAdministrators", {"chat_id": chat_id}) or []

    async def get_updates(self, offset: int | None, poll_timeout: int) -> List[Dict[str, Any]]:
        """Long-poll for updates. The HTTP timeout is padded past the poll timeout."""
        payload: Dict[str, Any] = {"timeout": poll_timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        return await self.call("getUpdates", payload, timeout=poll_timeout + self.timeout) or []
