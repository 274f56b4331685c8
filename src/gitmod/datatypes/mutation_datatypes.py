"""
Mutation actions and results for the moderation document.

This module defines the MutationAction and MutationOutcome enums and the
MutationResult dataclass returned by the mutation engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gitmod.datatypes.config_datatypes import ConfigDocument, Giveaway


class MutationAction(Enum):
    """Enumeration of the supported document mutations."""

    ADD_WORD = "add_word"
    DELETE_WORD = "del_word"
    BLOCK_USER = "block_user"
    UNBLOCK_USER = "unblock_user"
    CREATE_GIVEAWAY = "create_lottery"
    DELETE_GIVEAWAY = "delete_lottery"
    JOIN_GIVEAWAY = "join_lottery"

    def __str__(self) -> str:
        return self.value


class MutationOutcome(Enum):
    """What a mutation did, or why it failed."""

    ADDED = "added"
    ALREADY_EXISTS = "already_exists"
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    CREATED = "created"
    JOINED = "joined"
    CONFLICT = "conflict"
    TRANSPORT_ERROR = "transport_error"
    CORRUPT = "corrupt"

    def __str__(self) -> str:
        return self.value

    @property
    def is_failure(self) -> bool:
        return self in (MutationOutcome.CONFLICT, MutationOutcome.TRANSPORT_ERROR, MutationOutcome.CORRUPT)


@dataclass(slots=True)
class MutationResult:
    """Result of one fetch-mutate-commit cycle.

    Attributes:
        action: The mutation that was attempted.
        outcome: Outcome reported to the caller for user-facing messaging.
        document: The committed document (or the fresh unchanged one for a
            no-op); None when the mutation failed.
        committed: True when a new revision was written to the store.
        giveaway: The giveaway created or joined, when applicable.
        error: Failure description when ``outcome.is_failure``.
    """

    action: MutationAction
    outcome: MutationOutcome
    document: ConfigDocument | None = None
    committed: bool = False
    giveaway: Giveaway | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return not self.outcome.is_failure
