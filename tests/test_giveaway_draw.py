"""Tests for giveaway selection and winner drawing."""

import random
from collections import Counter

import pytest

from conftest import FakeClock
from gitmod.datatypes.config_datatypes import ConfigDocument, Giveaway
from gitmod.moderation.giveaway_draw import EmptyGiveawayError, draw_winner, new_giveaway_id, select_giveaway


def _giveaway(gid: str, participants=()) -> Giveaway:
    return Giveaway(id=gid, prize="Book", creator=1, participants=tuple(participants))


def test_new_giveaway_id_is_millisecond_timestamp():
    assert new_giveaway_id(FakeClock(1_700_000_000.123)) == "1700000000123"


def test_select_by_id():
    doc = ConfigDocument(lotteries=(_giveaway("1"), _giveaway("2")))
    assert select_giveaway(doc, "2").id == "2"
    assert select_giveaway(doc, "3") is None


def test_select_without_id_needs_exactly_one_giveaway():
    assert select_giveaway(ConfigDocument(lotteries=(_giveaway("1"),)), None).id == "1"
    assert select_giveaway(ConfigDocument(lotteries=(_giveaway("1"), _giveaway("2"))), None) is None
    assert select_giveaway(ConfigDocument.empty(), None) is None


def test_draw_winner_returns_a_participant():
    giveaway = _giveaway("1", [42, 43, 44])
    assert draw_winner(giveaway, random.Random(7)) in {42, 43, 44}


def test_draw_winner_is_roughly_uniform():
    giveaway = _giveaway("1", [1, 2, 3])
    rng = random.Random(2024)
    counts = Counter(draw_winner(giveaway, rng) for _ in range(3000))
    assert set(counts) == {1, 2, 3}
    assert all(800 < count < 1200 for count in counts.values())


def test_draw_winner_on_empty_giveaway_raises():
    giveaway = _giveaway("1")
    with pytest.raises(EmptyGiveawayError) as excinfo:
        draw_winner(giveaway)
    assert excinfo.value.giveaway is giveaway
