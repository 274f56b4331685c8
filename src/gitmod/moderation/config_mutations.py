"""Pure transformations of the moderation document, one per MutationAction."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Tuple

from gitmod.datatypes.config_datatypes import ConfigDocument, Giveaway, GiveawayDraft, JoinRequest
from gitmod.datatypes.mutation_datatypes import MutationAction, MutationOutcome

MutationStep = Tuple[ConfigDocument, MutationOutcome, Giveaway | None]
Transform = Callable[[ConfigDocument, Any], MutationStep]


def normalize_word(word: str) -> str:
    """Strip surrounding whitespace; an empty word is rejected."""
    word = (word or "").strip()
    if not word:
        raise ValueError("a banned word cannot be empty")
    return word


def add_word(document: ConfigDocument, word: str) -> MutationStep:
    word = normalize_word(word)
    if word in document.bad_words:
        return document, MutationOutcome.ALREADY_EXISTS, None
    return replace(document, bad_words=document.bad_words + (word,)), MutationOutcome.ADDED, None


def delete_word(document: ConfigDocument, word: str) -> MutationStep:
    word = normalize_word(word)
    if word not in document.bad_words:
        return document, MutationOutcome.NOT_FOUND, None
    remaining = tuple(w for w in document.bad_words if w != word)
    return replace(document, bad_words=remaining), MutationOutcome.REMOVED, None


def block_user(document: ConfigDocument, user_id: int) -> MutationStep:
    user_id = int(user_id)
    if document.is_blocked(user_id):
        return document, MutationOutcome.ALREADY_EXISTS, None
    return replace(document, blocked_users=document.blocked_users + (user_id,)), MutationOutcome.ADDED, None


def unblock_user(document: ConfigDocument, user_id: int) -> MutationStep:
    user_id = int(user_id)
    if not document.is_blocked(user_id):
        return document, MutationOutcome.NOT_FOUND, None
    remaining = tuple(u for u in document.blocked_users if u != user_id)
    return replace(document, blocked_users=remaining), MutationOutcome.REMOVED, None


def create_giveaway(document: ConfigDocument, draft: GiveawayDraft) -> MutationStep:
    giveaway = draft.to_giveaway()
    return replace(document, lotteries=document.lotteries + (giveaway,)), MutationOutcome.CREATED, giveaway


def delete_giveaway(document: ConfigDocument, giveaway_id: str) -> MutationStep:
    giveaway = document.find_giveaway(giveaway_id)
    if giveaway is None:
        return document, MutationOutcome.NOT_FOUND, None
    remaining = tuple(g for g in document.lotteries if g.id != giveaway.id)
    return replace(document, lotteries=remaining), MutationOutcome.REMOVED, giveaway


def join_giveaway(document: ConfigDocument, request: JoinRequest) -> MutationStep:
    giveaway = document.find_giveaway(request.giveaway_id)
    if giveaway is None:
        return document, MutationOutcome.NOT_FOUND, None
    if giveaway.has_participant(request.user_id):
        return document, MutationOutcome.ALREADY_EXISTS, giveaway

    joined = giveaway.with_participant(request.user_id)
    lotteries = tuple(joined if g.id == giveaway.id else g for g in document.lotteries)
    return replace(document, lotteries=lotteries), MutationOutcome.JOINED, joined


TRANSFORMS: Dict[MutationAction, Transform] = {
    MutationAction.ADD_WORD: add_word,
    MutationAction.DELETE_WORD: delete_word,
    MutationAction.BLOCK_USER: block_user,
    MutationAction.UNBLOCK_USER: unblock_user,
    MutationAction.CREATE_GIVEAWAY: create_giveaway,
    MutationAction.DELETE_GIVEAWAY: delete_giveaway,
    MutationAction.JOIN_GIVEAWAY: join_giveaway,
}


def apply_mutation(
    document: ConfigDocument, action: MutationAction, payload: Any
) -> MutationStep:
    """Apply one named transformation and return ``(new_document, outcome, giveaway)``.

    ``new_document`` is ``document`` itself when nothing changed.

    Raises:
        ValueError: On an unknown action or an invalid payload.
    """
    transform = TRANSFORMS.get(action)
    if transform is None:
        raise ValueError(f"unsupported mutation: {action}")
    return transform(document, payload)
