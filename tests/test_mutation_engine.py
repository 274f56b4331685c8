"""Tests for the fetch-mutate-commit mutation engine."""

import asyncio
import random

import pytest

from conftest import FakeConfigStore
from gitmod.cache.config_cache import ConfigCache
from gitmod.datatypes.config_datatypes import ConfigDocument, Giveaway, GiveawayDraft, JoinRequest
from gitmod.datatypes.mutation_datatypes import MutationAction, MutationOutcome
from gitmod.moderation.mutation_engine import ConfigMutationEngine
from gitmod.store.errors import ConfigEncodingError, ConfigTransportError
from gitmod.telegram.bot_api import TelegramAPIError


def _engine(store, clock, dispatcher=None):
    cache = ConfigCache(ttl_seconds=60, clock=clock)
    return ConfigMutationEngine(store, cache, dispatcher), cache


@pytest.mark.asyncio
async def test_add_word_commits_with_fetched_revision_and_refreshes_cache(clock):
    store = FakeConfigStore(ConfigDocument(bad_words=("old",)))
    engine, cache = _engine(store, clock)

    result = await engine.mutate(MutationAction.ADD_WORD, "广告")

    assert result.succeeded and result.committed
    assert result.outcome is MutationOutcome.ADDED
    assert store.writes[0][1] == "sha-0"
    assert store.writes[0][2] == "Update add_word"
    assert set(store.document.bad_words) == {"old", "广告"}
    assert cache.entry.document == store.document


@pytest.mark.asyncio
async def test_mutation_never_uses_cached_copy_as_base(clock):
    store = FakeConfigStore(ConfigDocument(bad_words=("remote",)))
    engine, cache = _engine(store, clock)
    await cache.put(ConfigDocument(bad_words=("stale-local",)))

    await engine.mutate(MutationAction.ADD_WORD, "new")

    assert set(store.document.bad_words) == {"remote", "new"}
    assert store.reads == 1


@pytest.mark.asyncio
async def test_noop_mutations_skip_the_commit(clock):
    store = FakeConfigStore(ConfigDocument(bad_words=("dup",), blocked_users=(5,)))
    engine, cache = _engine(store, clock)

    added = await engine.mutate(MutationAction.ADD_WORD, "dup")
    removed = await engine.mutate(MutationAction.DELETE_WORD, "absent")
    blocked = await engine.mutate(MutationAction.BLOCK_USER, 5)
    unblocked = await engine.mutate(MutationAction.UNBLOCK_USER, 6)

    assert added.outcome is MutationOutcome.ALREADY_EXISTS
    assert removed.outcome is MutationOutcome.NOT_FOUND
    assert blocked.outcome is MutationOutcome.ALREADY_EXISTS
    assert unblocked.outcome is MutationOutcome.NOT_FOUND
    assert all(r.succeeded and not r.committed for r in (added, removed, blocked, unblocked))
    assert store.writes == []
    assert cache.entry.document == store.document


@pytest.mark.asyncio
async def test_word_sequence_matches_in_memory_set_semantics(clock):
    rng = random.Random(1234)
    words = ["a", "b", "c", "广告", "🎰"]
    store = FakeConfigStore(ConfigDocument.empty())
    engine, _ = _engine(store, clock)
    expected: set[str] = set()

    for _ in range(40):
        word = rng.choice(words)
        if rng.random() < 0.6:
            await engine.mutate(MutationAction.ADD_WORD, word)
            expected.add(word)
        else:
            await engine.mutate(MutationAction.DELETE_WORD, word)
            expected.discard(word)

        assert set(store.document.bad_words) == expected
        assert len(store.document.bad_words) == len(expected)


@pytest.mark.asyncio
async def test_concurrent_mutations_one_commits_other_conflicts(clock):
    store = FakeConfigStore(ConfigDocument.empty())
    store.read_barrier = asyncio.Barrier(2)
    engine, cache = _engine(store, clock)

    first, second = await asyncio.gather(
        engine.mutate(MutationAction.ADD_WORD, "alpha"),
        engine.mutate(MutationAction.ADD_WORD, "beta"),
    )

    outcomes = {first.outcome, second.outcome}
    assert outcomes == {MutationOutcome.ADDED, MutationOutcome.CONFLICT}
    winner, loser = (first, second) if first.committed else (second, first)
    assert not loser.succeeded
    assert loser.error
    assert len(store.writes) == 1
    # The loser's word is absent; the winner's survived.
    loser_word = "beta" if winner is first else "alpha"
    winner_word = "alpha" if winner is first else "beta"
    assert store.document.bad_words == (winner_word,)
    assert loser_word not in store.document.bad_words
    assert cache.entry.document == store.document


@pytest.mark.asyncio
async def test_missing_document_starts_from_empty_and_creates_file(clock):
    store = FakeConfigStore(None)
    engine, _ = _engine(store, clock)

    result = await engine.mutate(MutationAction.BLOCK_USER, 77)

    assert result.outcome is MutationOutcome.ADDED
    assert store.writes[0][1] is None
    assert store.document.blocked_users == (77,)


@pytest.mark.asyncio
async def test_transport_error_on_write_reports_failure_and_keeps_cache(clock):
    store = FakeConfigStore(ConfigDocument.empty())
    store.write_error = ConfigTransportError("502")
    engine, cache = _engine(store, clock)

    result = await engine.mutate(MutationAction.ADD_WORD, "x")

    assert result.outcome is MutationOutcome.TRANSPORT_ERROR
    assert not result.succeeded
    assert cache.entry is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, outcome",
    [
        (ConfigTransportError("timeout"), MutationOutcome.TRANSPORT_ERROR),
        (ConfigEncodingError("bad json"), MutationOutcome.CORRUPT),
    ],
)
async def test_read_failures_are_reported_distinctly(clock, error, outcome):
    store = FakeConfigStore(ConfigDocument.empty())
    store.read_error = error
    engine, _ = _engine(store, clock)

    result = await engine.mutate(MutationAction.ADD_WORD, "x")

    assert result.outcome is outcome
    assert store.writes == []


@pytest.mark.asyncio
async def test_empty_word_is_rejected_before_any_io(clock):
    store = FakeConfigStore(ConfigDocument.empty())
    engine, _ = _engine(store, clock)

    with pytest.raises(ValueError):
        await engine.mutate(MutationAction.ADD_WORD, "   ")

    assert store.reads == 0


@pytest.mark.asyncio
async def test_block_user_kicks_after_commit(clock, dispatcher):
    store = FakeConfigStore(ConfigDocument.empty())
    engine, _ = _engine(store, clock, dispatcher)

    await engine.mutate(MutationAction.BLOCK_USER, 31, chat_id=-100)
    await engine.mutate(MutationAction.BLOCK_USER, 31, chat_id=-100)

    dispatcher.remove.assert_awaited_once_with(-100, 31)


@pytest.mark.asyncio
async def test_block_user_kick_failure_does_not_fail_mutation(clock, dispatcher):
    store = FakeConfigStore(ConfigDocument.empty())
    dispatcher.remove.side_effect = TelegramAPIError("banChatMember", "not enough rights")
    engine, _ = _engine(store, clock, dispatcher)

    result = await engine.mutate(MutationAction.BLOCK_USER, 31, chat_id=-100)

    assert result.succeeded and result.committed


@pytest.mark.asyncio
async def test_giveaway_lifecycle(clock):
    store = FakeConfigStore(ConfigDocument.empty())
    engine, _ = _engine(store, clock)

    created = await engine.mutate(MutationAction.CREATE_GIVEAWAY, GiveawayDraft(id="1", prize="Book", creator=9))
    assert created.outcome is MutationOutcome.CREATED
    assert created.giveaway == Giveaway(id="1", prize="Book", creator=9, participants=())

    joined = await engine.mutate(MutationAction.JOIN_GIVEAWAY, JoinRequest("1", 42))
    assert joined.outcome is MutationOutcome.JOINED
    assert store.document.find_giveaway("1").participants == (42,)

    again = await engine.mutate(MutationAction.JOIN_GIVEAWAY, JoinRequest("1", 42))
    assert again.outcome is MutationOutcome.ALREADY_EXISTS
    assert store.document.find_giveaway("1").participants == (42,)

    deleted = await engine.mutate(MutationAction.DELETE_GIVEAWAY, "1")
    assert deleted.outcome is MutationOutcome.REMOVED
    late_join = await engine.mutate(MutationAction.JOIN_GIVEAWAY, JoinRequest("1", 43))
    assert late_join.outcome is MutationOutcome.NOT_FOUND
    assert store.document.lotteries == ()


@pytest.mark.asyncio
async def test_create_giveaway_is_not_idempotent(clock):
    store = FakeConfigStore(ConfigDocument.empty())
    engine, _ = _engine(store, clock)
    draft = GiveawayDraft(id="1", prize="Book", creator=9)

    await engine.mutate(MutationAction.CREATE_GIVEAWAY, draft)
    await engine.mutate(MutationAction.CREATE_GIVEAWAY, draft)

    assert len(store.document.lotteries) == 2
