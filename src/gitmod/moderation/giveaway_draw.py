"""Winner selection for giveaways."""

from __future__ import annotations

import random
import time

from gitmod.datatypes.config_datatypes import ConfigDocument, Giveaway


class EmptyGiveawayError(Exception):
    """Raised when drawing a giveaway nobody has joined."""

    def __init__(self, giveaway: Giveaway) -> None:
        super().__init__(f"giveaway {giveaway.id} has no participants")
        self.giveaway = giveaway


def new_giveaway_id(clock=time.time) -> str:
    """Millisecond timestamp string used as a giveaway ID."""
    return str(int(clock() * 1000))


def select_giveaway(document: ConfigDocument, giveaway_id: str | None) -> Giveaway | None:
    """Pick the giveaway to draw: the named one, or the only one when no ID is given."""
    if giveaway_id:
        return document.find_giveaway(giveaway_id)
    if len(document.lotteries) == 1:
        return document.lotteries[0]
    return None


def draw_winner(giveaway: Giveaway, rng: random.Random | None = None) -> int:
    """Return a participant chosen uniformly at random.

    Raises:
        EmptyGiveawayError: If there are no participants.
    """
    if not giveaway.participants:
        raise EmptyGiveawayError(giveaway)
    return (rng or random).choice(giveaway.participants)
