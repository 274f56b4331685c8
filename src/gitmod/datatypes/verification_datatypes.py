"""
Data structures for pending new-member verifications.

Timestamps are unix seconds so comparisons are trivial and there is no
string parsing or timezone conversion needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

VERIFY_KEY_PREFIX = "verify:"


def verification_key(chat_id: int, user_id: int) -> str:
    """Return the KV key holding the entry for ``(chat_id, user_id)``."""
    return f"{VERIFY_KEY_PREFIX}{chat_id}:{user_id}"


@dataclass(frozen=True, slots=True)
class VerificationEntry:
    """A member who joined and has not pressed the verify button yet."""

    chat_id: int
    user_id: int
    expires_at: float
    prompt_message_id: int | None = None

    @property
    def key(self) -> str:
        return verification_key(self.chat_id, self.user_id)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "user_id": self.user_id,
            "expires_at": self.expires_at,
            "prompt_message_id": self.prompt_message_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationEntry":
        prompt_message_id = data.get("prompt_message_id")
        return cls(
            chat_id=int(data["chat_id"]),
            user_id=int(data["user_id"]),
            expires_at=float(data["expires_at"]),
            prompt_message_id=int(prompt_message_id) if prompt_message_id is not None else None,
        )


class VerificationOutcome(Enum):
    """Result of a verify-button press."""

    VERIFIED = "verified"
    WRONG_USER = "wrong_user"
    NOT_PENDING = "not_pending"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class SweepReport:
    """Summary of one sweep pass."""

    checked: int = 0
    evicted: List[VerificationEntry] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def evicted_count(self) -> int:
        return len(self.evicted)
