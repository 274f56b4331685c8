"""
Durable registry of pending new-member verifications.

A member who joins is muted and asked to press a button within the timeout.
The pending entry lives in the key-value store, not in memory, so a restart
between join and timeout does not forget it. A periodic sweep removes every
member whose window has passed.

Per (chat, user) the lifecycle is::

    Pending --button pressed in time--> Verified  (unmuted, entry deleted)
    Pending --sweep after expiry------> Expired   (removed, entry deleted)
"""

from __future__ import annotations

import asyncio
import html
import time
from typing import Callable

from gitmod.database.kv_store import KVStore
from gitmod.datatypes.verification_datatypes import (
    VERIFY_KEY_PREFIX,
    SweepReport,
    VerificationEntry,
    VerificationOutcome,
    verification_key,
)
from gitmod.telegram.bot_api import TelegramAPIError, TelegramDispatcher, inline_button
from gitmod.util.logger import get_logger

logger = get_logger("verification_registry")

VERIFY_CALLBACK_PREFIX = "verify|"


class VerificationRegistry:
    """
    Creates, resolves and sweeps pending verifications.

    Args:
        kv_store: Durable store holding the entries.
        dispatcher: Telegram dispatcher used for mute/unmute/remove/notify.
        timeout_seconds: Verification window.
        retention_seconds: How long an entry outlives its expiry in the KV
            store before it is purged even if no sweep ran.
        clock: Source of unix time, injectable for tests.
    """

    def __init__(
        self,
        kv_store: KVStore,
        dispatcher: TelegramDispatcher,
        *,
        timeout_seconds: float = 60.0,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv_store = kv_store
        self.dispatcher = dispatcher
        self.timeout_seconds = timeout_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock

    async def get_entry(self, chat_id: int, user_id: int) -> VerificationEntry | None:
        raw = await self.kv_store.get(verification_key(chat_id, user_id))
        return VerificationEntry.from_dict(raw) if raw else None

    async def _save(self, entry: VerificationEntry) -> None:
        await self.kv_store.put(
            entry.key,
            entry.to_dict(),
            ttl_seconds=self.timeout_seconds + self.retention_seconds,
        )

    async def _restore(self, entry: VerificationEntry, now: float) -> None:
        """Put a claimed entry back with the row lifetime it had left."""
        remaining = entry.expires_at + self.retention_seconds - now
        await self.kv_store.put(entry.key, entry.to_dict(), ttl_seconds=max(remaining, 1.0))

    # ------------------------------------------------------------------
    # Pending
    # ------------------------------------------------------------------

    async def start(self, chat_id: int, user_id: int, first_name: str = "") -> VerificationEntry:
        """Mute a new member, post the verify button and record the pending entry."""
        await self.dispatcher.restrict(chat_id, user_id, allow_posting=False)

        entry = VerificationEntry(chat_id=chat_id, user_id=user_id, expires_at=self._clock() + self.timeout_seconds)

        name = html.escape(first_name or str(user_id))
        text = (
            f'Welcome <a href="tg://user?id={user_id}">{name}</a>! '
            f"Please press the button within {int(self.timeout_seconds)} seconds to verify."
        )
        try:
            sent = await self.dispatcher.notify(
                chat_id,
                text,
                "HTML",
                inline_button("Verify", f"{VERIFY_CALLBACK_PREFIX}{user_id}"),
            )
            entry = VerificationEntry(
                chat_id=entry.chat_id,
                user_id=entry.user_id,
                expires_at=entry.expires_at,
                prompt_message_id=(sent or {}).get("message_id"),
            )
        except TelegramAPIError as exc:
            # The member is already muted; the sweep still removes them on expiry.
            logger.warning("[VERIFY] Could not post the verify prompt for %s in %s: %s", user_id, chat_id, exc)

        await self._save(entry)
        logger.info("[VERIFY] Pending verification for user %s in chat %s until %.0f", user_id, chat_id, entry.expires_at)
        return entry

    # ------------------------------------------------------------------
    # Verified
    # ------------------------------------------------------------------

    async def verify(
        self,
        chat_id: int,
        target_user_id: int,
        clicking_user_id: int,
        interaction_id: str,
        prompt_message_id: int | None = None,
    ) -> VerificationOutcome:
        """Resolve a verify-button press.

        Only the member the button was issued for may press it; anyone else
        gets an alert and nothing changes.
        """
        if clicking_user_id != target_user_id:
            await self._answer(interaction_id, "This button is not for you.", show_alert=True)
            return VerificationOutcome.WRONG_USER

        entry = await self.get_entry(chat_id, target_user_id)
        if entry is None:
            await self._answer(interaction_id, "There is no pending verification for you.", show_alert=True)
            return VerificationOutcome.NOT_PENDING

        if entry.is_expired(self._clock()):
            await self._answer(interaction_id, "Verification time is over.", show_alert=True)
            return VerificationOutcome.EXPIRED

        # A sweep may have claimed the entry between the read and now.
        if not await self.kv_store.delete(entry.key):
            await self._answer(interaction_id, "Verification time is over.", show_alert=True)
            return VerificationOutcome.EXPIRED

        try:
            await self.dispatcher.restrict(chat_id, target_user_id, allow_posting=True)
        except Exception:
            await self._restore(entry, self._clock())
            raise
        logger.info("[VERIFY] User %s verified in chat %s", target_user_id, chat_id)

        await self._answer(interaction_id, "Verified, welcome!")
        message_id = prompt_message_id or entry.prompt_message_id
        if message_id is not None:
            await self._delete_message(chat_id, message_id)
        try:
            await self.dispatcher.notify(chat_id, "🎉 Welcome to the group!")
        except TelegramAPIError as exc:
            logger.warning("[VERIFY] Could not send welcome in %s: %s", chat_id, exc)
        return VerificationOutcome.VERIFIED

    # ------------------------------------------------------------------
    # Expired
    # ------------------------------------------------------------------

    async def sweep(self, now: float | None = None) -> SweepReport:
        """Remove every member whose verification window has passed.

        Safe to run repeatedly, concurrently with verifications and with
        other sweeps: each entry is claimed by deleting it before the member
        is removed, and an entry someone else claimed is skipped. One entry failing never stops the rest of the batch; its
        entry is kept so the next sweep retries it.
        """
        now = self._clock() if now is None else now
        report = SweepReport()

        try:
            keys = await self.kv_store.list(VERIFY_KEY_PREFIX)
        except Exception as exc:
            logger.error("[VERIFY] Sweep could not list pending entries: %s", exc)
            return report

        for key in keys:
            report.checked += 1
            try:
                entry = await self._evict_if_expired(key, now)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("[VERIFY] Sweep failed for %s: %s", key, exc)
                report.failed.append(key)
                continue
            if entry is not None:
                report.evicted.append(entry)

        if report.evicted or report.failed:
            logger.info(
                "[VERIFY] Sweep checked %d entries, evicted %d, failed %d",
                report.checked, report.evicted_count, len(report.failed),
            )
        return report

    async def _evict_if_expired(self, key: str, now: float) -> VerificationEntry | None:
        raw = await self.kv_store.get(key)
        if not raw:
            return None

        try:
            entry = VerificationEntry.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            await self.kv_store.delete(key)
            raise

        if not entry.is_expired(now):
            return None

        # Claim the entry first so overlapping sweeps act on it once.
        if not await self.kv_store.delete(key):
            return None

        try:
            await self.dispatcher.remove(entry.chat_id, entry.user_id)
        except Exception:
            await self._restore(entry, now)
            raise
        logger.info("[VERIFY] Removed unverified user %s from chat %s", entry.user_id, entry.chat_id)

        if entry.prompt_message_id is not None:
            await self._delete_message(entry.chat_id, entry.prompt_message_id)
        try:
            await self.dispatcher.notify(
                entry.chat_id,
                f'User <a href="tg://user?id={entry.user_id}">{entry.user_id}</a> did not verify in time and was removed.',
            )
        except TelegramAPIError as exc:
            logger.warning("[VERIFY] Could not send removal notice in %s: %s", entry.chat_id, exc)
        return entry

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _answer(self, interaction_id: str, text: str, show_alert: bool = False) -> None:
        try:
            await self.dispatcher.answer_interaction(interaction_id, text, show_alert)
        except TelegramAPIError as exc:
            logger.warning("[VERIFY] Could not answer interaction %s: %s", interaction_id, exc)

    async def _delete_message(self, chat_id: int, message_id: int) -> None:
        try:
            await self.dispatcher.delete_event(chat_id, message_id)
        except TelegramAPIError as exc:
            logger.debug("[VERIFY] Could not delete message %s in %s: %s", message_id, chat_id, exc)
