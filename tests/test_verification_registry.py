"""Tests for the durable verification registry and its sweep."""

import asyncio

import pytest
import pytest_asyncio

from conftest import FakeClock, make_dispatcher
from gitmod.database.kv_store import KVStore
from gitmod.datatypes.verification_datatypes import VerificationOutcome, verification_key
from gitmod.telegram.bot_api import TelegramAPIError
from gitmod.verification.verification_registry import VERIFY_CALLBACK_PREFIX, VerificationRegistry

CHAT = -1001
USER = 42


@pytest.fixture()
def clock():
    return FakeClock()


@pytest_asyncio.fixture()
async def kv(tmp_path, clock):
    store = KVStore(clock=clock)
    await store.open(tmp_path / "kv.db")
    yield store
    await store.close()


@pytest.fixture()
def dispatcher():
    return make_dispatcher()


@pytest.fixture()
def registry(kv, dispatcher, clock):
    return VerificationRegistry(kv, dispatcher, timeout_seconds=60, retention_seconds=3600, clock=clock)


@pytest.mark.asyncio
async def test_start_mutes_prompts_and_records_entry(registry, dispatcher, clock):
    entry = await registry.start(CHAT, USER, "<Ann>")

    dispatcher.restrict.assert_awaited_once_with(CHAT, USER, allow_posting=False)
    chat_id, text, parse_mode, markup = dispatcher.notify.await_args.args
    assert chat_id == CHAT
    assert "&lt;Ann&gt;" in text
    assert markup["inline_keyboard"][0][0]["callback_data"] == f"{VERIFY_CALLBACK_PREFIX}{USER}"

    assert entry.expires_at == clock.now + 60
    assert entry.prompt_message_id == 500
    assert await registry.get_entry(CHAT, USER) == entry


@pytest.mark.asyncio
async def test_start_records_entry_even_if_prompt_fails(registry, dispatcher):
    dispatcher.notify.side_effect = TelegramAPIError("sendMessage", "chat not found")

    entry = await registry.start(CHAT, USER)

    assert entry.prompt_message_id is None
    assert await registry.get_entry(CHAT, USER) is not None


@pytest.mark.asyncio
async def test_sweep_before_expiry_leaves_entry_untouched(registry, dispatcher, clock):
    await registry.start(CHAT, USER)
    clock.advance(59)

    report = await registry.sweep()

    assert report.checked == 1
    assert report.evicted_count == 0
    dispatcher.remove.assert_not_awaited()
    assert await registry.get_entry(CHAT, USER) is not None


@pytest.mark.asyncio
async def test_sweep_after_expiry_removes_exactly_once(registry, dispatcher, clock):
    await registry.start(CHAT, USER)

    clock.advance(61)
    first = await registry.sweep()
    clock.advance(1)
    second = await registry.sweep()

    assert first.evicted_count == 1
    assert second.checked == 0
    dispatcher.remove.assert_awaited_once_with(CHAT, USER)
    dispatcher.delete_event.assert_awaited_once_with(CHAT, 500)
    assert await registry.get_entry(CHAT, USER) is None


@pytest.mark.asyncio
async def test_entry_survives_a_new_registry_instance(tmp_path, clock):
    path = tmp_path / "kv.db"
    first_kv = KVStore(clock=clock)
    await first_kv.open(path)
    await VerificationRegistry(first_kv, make_dispatcher(), clock=clock).start(CHAT, USER)
    await first_kv.close()

    second_kv = KVStore(clock=clock)
    await second_kv.open(path)
    dispatcher = make_dispatcher()
    try:
        clock.advance(61)
        report = await VerificationRegistry(second_kv, dispatcher, clock=clock).sweep()
    finally:
        await second_kv.close()

    assert report.evicted_count == 1
    dispatcher.remove.assert_awaited_once_with(CHAT, USER)


@pytest.mark.asyncio
async def test_sweep_continues_past_a_failing_removal(registry, dispatcher, clock):
    for user in (1, 2, 3):
        await registry.start(CHAT, user)
    clock.advance(61)

    async def remove(chat_id, user_id):
        if user_id == 2:
            raise TelegramAPIError("banChatMember", "not enough rights")

    dispatcher.remove.side_effect = remove

    report = await registry.sweep()

    assert report.checked == 3
    assert sorted(e.user_id for e in report.evicted) == [1, 3]
    assert report.failed == [verification_key(CHAT, 2)]
    # The failed entry is kept for the next sweep.
    assert await registry.get_entry(CHAT, 2) is not None
    assert await registry.get_entry(CHAT, 1) is None

    dispatcher.remove.side_effect = None
    retry = await registry.sweep()
    assert [e.user_id for e in retry.evicted] == [2]


@pytest.mark.asyncio
async def test_sweep_drops_undecodable_entries(registry, kv, dispatcher):
    await kv.put(verification_key(CHAT, USER), {"chat_id": CHAT})

    report = await registry.sweep()

    assert report.failed == [verification_key(CHAT, USER)]
    assert await kv.get(verification_key(CHAT, USER)) is None
    dispatcher.remove.assert_not_awaited()


@pytest.mark.asyncio
async def test_verify_by_target_unmutes_and_clears(registry, dispatcher, clock):
    await registry.start(CHAT, USER)
    clock.advance(30)

    outcome = await registry.verify(CHAT, USER, USER, "cb-1")

    assert outcome is VerificationOutcome.VERIFIED
    dispatcher.restrict.assert_awaited_with(CHAT, USER, allow_posting=True)
    dispatcher.delete_event.assert_awaited_once_with(CHAT, 500)
    assert await registry.get_entry(CHAT, USER) is None

    clock.advance(60)
    report = await registry.sweep()
    assert report.checked == 0
    dispatcher.remove.assert_not_awaited()


@pytest.mark.asyncio
async def test_verify_by_other_user_is_refused(registry, dispatcher):
    await registry.start(CHAT, USER)
    dispatcher.restrict.reset_mock()

    outcome = await registry.verify(CHAT, USER, 99, "cb-2")

    assert outcome is VerificationOutcome.WRONG_USER
    dispatcher.answer_interaction.assert_awaited_once_with("cb-2", "This button is not for you.", True)
    dispatcher.restrict.assert_not_awaited()
    assert await registry.get_entry(CHAT, USER) is not None


@pytest.mark.asyncio
async def test_verify_without_pending_entry(registry, dispatcher):
    outcome = await registry.verify(CHAT, USER, USER, "cb-3")

    assert outcome is VerificationOutcome.NOT_PENDING
    dispatcher.restrict.assert_not_awaited()


@pytest.mark.asyncio
async def test_late_click_is_rejected_and_left_for_the_sweep(registry, dispatcher, clock):
    await registry.start(CHAT, USER)
    dispatcher.restrict.reset_mock()
    clock.advance(60)

    outcome = await registry.verify(CHAT, USER, USER, "cb-4")

    assert outcome is VerificationOutcome.EXPIRED
    dispatcher.restrict.assert_not_awaited()
    report = await registry.sweep()
    assert report.evicted_count == 1


@pytest.mark.asyncio
async def test_sweep_returns_empty_report_when_listing_fails(dispatcher, clock):
    class BrokenKV:
        async def list(self, prefix):
            raise RuntimeError("database is locked")

    registry = VerificationRegistry(BrokenKV(), dispatcher, clock=clock)
    report = await registry.sweep()

    assert report.checked == 0
    assert report.failed == []


@pytest.mark.asyncio
async def test_overlapping_sweeps_remove_each_member_once(registry, dispatcher, clock):
    await registry.start(CHAT, USER)
    dispatcher.notify.reset_mock()
    clock.advance(61)

    first, second = await asyncio.gather(registry.sweep(), registry.sweep())

    assert first.evicted_count + second.evicted_count == 1
    dispatcher.remove.assert_awaited_once_with(CHAT, USER)
    assert dispatcher.notify.await_count == 1
    assert await registry.get_entry(CHAT, USER) is None


@pytest.mark.asyncio
async def test_failed_removal_restores_entry_with_remaining_lifetime(registry, kv, dispatcher, clock):
    await registry.start(CHAT, USER)
    clock.advance(61)
    dispatcher.remove.side_effect = TelegramAPIError("banChatMember", "not enough rights")

    report = await registry.sweep()

    assert report.failed == [verification_key(CHAT, USER)]
    assert await registry.get_entry(CHAT, USER) is not None
    # The row still disappears when its original lifetime runs out.
    clock.advance(3600 - 1)
    assert await registry.get_entry(CHAT, USER) is None


@pytest.mark.asyncio
async def test_verify_after_sweep_claimed_entry_is_expired(registry, kv, dispatcher, clock):
    await registry.start(CHAT, USER)
    dispatcher.restrict.reset_mock()
    original_delete = kv.delete

    async def delete_claimed_elsewhere(key):
        await original_delete(key)
        return False

    kv.delete = delete_claimed_elsewhere

    outcome = await registry.verify(CHAT, USER, USER, "cb-5")

    assert outcome is VerificationOutcome.EXPIRED
    dispatcher.restrict.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_unmute_keeps_entry_pending(registry, dispatcher, clock):
    await registry.start(CHAT, USER)
    dispatcher.restrict.side_effect = TelegramAPIError("restrictChatMember", "not enough rights")

    with pytest.raises(TelegramAPIError):
        await registry.verify(CHAT, USER, USER, "cb-6")

    assert await registry.get_entry(CHAT, USER) is not None
