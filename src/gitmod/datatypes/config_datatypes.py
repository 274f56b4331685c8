"""
Data structures for the GitHub-hosted moderation document.

The document is the single source of truth for banned words, blocked users
and running giveaways. Instances are immutable: every change produces a new
:class:`ConfigDocument`, so a copy handed out by the cache can never be
altered underneath its readers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Opaque version identifier (GitHub blob sha). None means "no file yet".
RevisionToken = Optional[str]


def _unique(values: Iterable) -> Tuple:
    seen: Dict[Any, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


@dataclass(frozen=True, slots=True)
class Giveaway:
    """A single giveaway.

    Attributes:
        id: Millisecond timestamp string, unique within the document.
        prize: Free-form prize description.
        creator: Telegram user ID of the admin who created it.
        participants: User IDs in join order, without duplicates.
    """

    id: str
    prize: str
    creator: int
    participants: Tuple[int, ...] = ()

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participants

    def with_participant(self, user_id: int) -> "Giveaway":
        """Return a copy with ``user_id`` appended (unchanged if already present)."""
        if self.has_participant(user_id):
            return self
        return replace(self, participants=self.participants + (user_id,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prize": self.prize,
            "creator": self.creator,
            "participants": list(self.participants),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Giveaway":
        if not isinstance(data, dict):
            raise ValueError(f"giveaway entry must be an object, got {type(data).__name__}")
        participants = data.get("participants") or []
        return cls(
            id=str(data["id"]),
            prize=str(data.get("prize", "")),
            creator=int(data.get("creator", 0)),
            participants=_unique(int(p) for p in participants),
        )


@dataclass(frozen=True, slots=True)
class ConfigDocument:
    """The moderation document.

    ``bad_words`` and ``blocked_users`` are sets by meaning. They are kept as
    tuples in first-seen order so that a committed document serializes the
    same way it was read and GitHub diffs only show the actual change.
    """

    bad_words: Tuple[str, ...] = ()
    blocked_users: Tuple[int, ...] = ()
    lotteries: Tuple[Giveaway, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "bad_words", _unique(self.bad_words))
        object.__setattr__(self, "blocked_users", _unique(self.blocked_users))
        object.__setattr__(self, "lotteries", tuple(self.lotteries))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigDocument):
            return NotImplemented
        return (
            set(self.bad_words) == set(other.bad_words)
            and set(self.blocked_users) == set(other.blocked_users)
            and self.lotteries == other.lotteries
        )

    def __hash__(self) -> int:
        return hash((frozenset(self.bad_words), frozenset(self.blocked_users), self.lotteries))

    @classmethod
    def empty(cls) -> "ConfigDocument":
        return cls()

    # --------------------------
    # Lookups
    # --------------------------
    def is_blocked(self, user_id: int) -> bool:
        return user_id in self.blocked_users

    def find_bad_word(self, text: str) -> str | None:
        """Return the first banned word contained in ``text`` (case-sensitive)."""
        if not text:
            return None
        for word in self.bad_words:
            if word and word in text:
                return word
        return None

    def find_giveaway(self, giveaway_id: str) -> Giveaway | None:
        for giveaway in self.lotteries:
            if giveaway.id == str(giveaway_id):
                return giveaway
        return None

    # --------------------------
    # Serialization
    # --------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "bad_words": list(self.bad_words),
            "blocked_users": list(self.blocked_users),
            "lotteries": [giveaway.to_dict() for giveaway in self.lotteries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigDocument":
        """Build a document from its JSON shape. Absent arrays are treated as empty.

        Raises:
            ValueError: If the payload is not an object or a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"config document must be an object, got {type(data).__name__}")

        bad_words = _as_list(data, "bad_words")
        blocked_users = _as_list(data, "blocked_users")
        lotteries = _as_list(data, "lotteries")

        return cls(
            bad_words=tuple(str(word) for word in bad_words),
            blocked_users=tuple(int(user_id) for user_id in blocked_users),
            lotteries=tuple(Giveaway.from_dict(entry) for entry in lotteries),
        )


def _as_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be an array, got {type(value).__name__}")
    return value


@dataclass(frozen=True, slots=True)
class GiveawayDraft:
    """Arguments for creating a giveaway; participants always start empty."""

    id: str
    prize: str
    creator: int

    def to_giveaway(self) -> Giveaway:
        return Giveaway(id=self.id, prize=self.prize, creator=self.creator)


@dataclass(frozen=True, slots=True)
class JoinRequest:
    """A user asking to enter a giveaway."""

    giveaway_id: str
    user_id: int


@dataclass(slots=True)
class CachedConfig:
    """A document together with the unix time it was fetched or written."""

    document: ConfigDocument
    fetched_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.fetched_at < ttl_seconds
