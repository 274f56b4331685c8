"""Tests for the SQLite-backed key-value store."""

import pytest
import pytest_asyncio

from conftest import FakeClock
from gitmod.database.kv_store import KVStore


@pytest_asyncio.fixture()
async def kv(tmp_path):
    store = KVStore(clock=FakeClock())
    await store.open(tmp_path / "kv.db")
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_put_get_roundtrip_preserves_unicode(kv):
    await kv.put("k", {"words": ["广告"], "n": 1})
    assert await kv.get("k") == {"words": ["广告"], "n": 1}


@pytest.mark.asyncio
async def test_get_missing_returns_none(kv):
    assert await kv.get("absent") is None


@pytest.mark.asyncio
async def test_put_overwrites(kv):
    await kv.put("k", 1)
    await kv.put("k", 2)
    assert await kv.get("k") == 2


@pytest.mark.asyncio
async def test_delete_reports_whether_row_existed(kv):
    await kv.put("k", 1)
    assert await kv.delete("k") is True
    assert await kv.delete("k") is False
    assert await kv.get("k") is None


@pytest.mark.asyncio
async def test_list_filters_by_prefix_and_sorts(kv):
    for key in ("verify:2:1", "config:document", "verify:1:9", "verify:1:1"):
        await kv.put(key, {})
    assert await kv.list("verify:") == ["verify:1:1", "verify:1:9", "verify:2:1"]
    assert await kv.list() == ["config:document", "verify:1:1", "verify:1:9", "verify:2:1"]


@pytest.mark.asyncio
async def test_prefix_with_like_wildcards_is_literal(kv):
    await kv.put("a_b", 1)
    await kv.put("axb", 2)
    assert await kv.list("a_") == ["a_b"]


@pytest.mark.asyncio
async def test_expired_rows_are_invisible_then_purged(kv):
    clock = kv._clock
    await kv.put("short", 1, ttl_seconds=10)
    await kv.put("forever", 2)

    clock.advance(9)
    assert await kv.get("short") == 1

    clock.advance(1)
    assert await kv.get("short") is None
    assert await kv.list() == ["forever"]

    assert await kv.purge_expired() == 1
    assert await kv.purge_expired() == 0
    assert await kv.get("forever") == 2


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path):
    path = tmp_path / "nested" / "kv.db"
    first = KVStore()
    await first.open(path)
    await first.put("verify:1:2", {"expires_at": 5.0})
    await first.close()

    second = KVStore()
    await second.open(path)
    try:
        assert await second.get("verify:1:2") == {"expires_at": 5.0}
    finally:
        await second.close()


def test_connection_before_open_raises():
    with pytest.raises(RuntimeError):
        KVStore().connection


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(kv):
    with pytest.raises(ValueError):
        async with kv.transaction() as conn:
            await conn.execute("INSERT INTO kv_store (key, value) VALUES ('x', '1')")
            raise ValueError("boom")
    assert await kv.get("x") is None
