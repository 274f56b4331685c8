"""
The single write path for the moderation document.

Each call to :meth:`ConfigMutationEngine.mutate` runs one cycle:

1. read the document and its revision straight from the store (never from
   the cache, which may be stale);
2. apply exactly one transformation;
3. commit with the revision from step 1, so a concurrent commit in between
   turns into a :class:`ConfigConflict` instead of a lost update;
4. write the committed document through to the cache.

Failures are reported, not retried. A conflict means another change landed
between our read and write, and the admin has to re-issue the command.
"""

from __future__ import annotations

from typing import Any, Protocol

from gitmod.cache.config_cache import ConfigCacheProtocol
from gitmod.datatypes.config_datatypes import ConfigDocument, RevisionToken
from gitmod.datatypes.mutation_datatypes import MutationAction, MutationOutcome, MutationResult
from gitmod.moderation.config_mutations import apply_mutation
from gitmod.store.errors import (
    ConfigConflict,
    ConfigEncodingError,
    ConfigNotFound,
    ConfigTransportError,
)
from gitmod.telegram.bot_api import TelegramAPIError
from gitmod.util.logger import get_logger

logger = get_logger("mutation_engine")


class ConfigStoreProtocol(Protocol):
    async def read(self) -> tuple[ConfigDocument, RevisionToken]: ...

    async def write(self, document: ConfigDocument, revision: RevisionToken, message: str) -> RevisionToken: ...


class ConfigMutationEngine:
    """
    Fetch-mutate-commit-refresh over the remote config store.

    Args:
        store: The remote config store client.
        cache: The cache to refresh after every successful commit.
        dispatcher: Used to kick a user right after they are blocked. Optional.
    """

    def __init__(self, store: ConfigStoreProtocol, cache: ConfigCacheProtocol, dispatcher=None) -> None:
        self.store = store
        self.cache = cache
        self.dispatcher = dispatcher

    async def mutate(self, action: MutationAction, payload: Any, *, chat_id: int | None = None) -> MutationResult:
        """Run one mutation cycle and report its outcome.

        Args:
            action: Which transformation to apply.
            payload: A word, a user ID, a GiveawayDraft, a giveaway ID or a
                JoinRequest, depending on ``action``.
            chat_id: Chat to kick a newly blocked user from.

        Raises:
            ValueError: If the payload is invalid (checked before any I/O).
        """
        # Validate the payload up front so bad input never costs a round trip.
        apply_mutation(ConfigDocument.empty(), action, payload)

        try:
            document, revision = await self.store.read()
        except ConfigNotFound:
            logger.info("[MUTATION] No config document yet, %s starts from empty defaults", action)
            document, revision = ConfigDocument.empty(), None
        except ConfigEncodingError as exc:
            logger.error("[MUTATION] %s aborted, stored document is corrupt: %s", action, exc)
            return MutationResult(action=action, outcome=MutationOutcome.CORRUPT, error=str(exc))
        except ConfigTransportError as exc:
            logger.error("[MUTATION] %s aborted, could not read the document: %s", action, exc)
            return MutationResult(action=action, outcome=MutationOutcome.TRANSPORT_ERROR, error=str(exc))

        new_document, outcome, giveaway = apply_mutation(document, action, payload)

        if new_document is document:
            logger.debug("[MUTATION] %s was a no-op (%s), nothing to commit", action, outcome)
            await self.cache.put(document)
            return MutationResult(action=action, outcome=outcome, document=document, giveaway=giveaway)

        try:
            await self.store.write(new_document, revision, f"Update {action}")
        except ConfigConflict as exc:
            logger.warning("[MUTATION] %s lost a race with another writer: %s", action, exc)
            return MutationResult(action=action, outcome=MutationOutcome.CONFLICT, error=str(exc))
        except ConfigTransportError as exc:
            logger.error("[MUTATION] %s could not be committed: %s", action, exc)
            return MutationResult(action=action, outcome=MutationOutcome.TRANSPORT_ERROR, error=str(exc))

        await self.cache.put(new_document)
        logger.info("[MUTATION] %s committed (%s)", action, outcome)

        if action is MutationAction.BLOCK_USER and outcome is MutationOutcome.ADDED:
            await self._kick_blocked(chat_id, int(payload))

        return MutationResult(
            action=action,
            outcome=outcome,
            document=new_document,
            committed=True,
            giveaway=giveaway,
        )

    async def _kick_blocked(self, chat_id: int | None, user_id: int) -> None:
        if self.dispatcher is None or chat_id is None:
            return
        try:
            await self.dispatcher.remove(chat_id, user_id)
        except TelegramAPIError as exc:
            logger.warning("[MUTATION] Blocked user %s but could not kick them from %s: %s", user_id, chat_id, exc)
