"""
Read-through cache for the moderation document.

Every inbound update needs the banned words and blocked users, but GitHub
should not be asked more than once per TTL window. Two interchangeable
implementations exist:

- :class:`ConfigCache` keeps ``(document, fetched_at)`` in process memory and
  is shared by every request handled by the same process.
- :class:`KVConfigCache` keeps the same pair in the durable key-value store
  for deployments where no process outlives a single request.

Both fail open: when the loader cannot reach the store the last known
document is served (even if stale), and with nothing cached at all an empty
document is returned so moderation keeps running.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Protocol

from gitmod.database.kv_store import KVStore
from gitmod.datatypes.config_datatypes import CachedConfig, ConfigDocument
from gitmod.store.errors import ConfigNotFound, ConfigStoreError
from gitmod.util.logger import get_logger

logger = get_logger("config_cache")

DEFAULT_TTL_SECONDS = 60.0
CACHE_KEY = "config:document"

Loader = Callable[[], Awaitable[ConfigDocument]]


class ConfigCacheProtocol(Protocol):
    async def get(self, loader: Loader) -> ConfigDocument: ...

    async def put(self, document: ConfigDocument) -> None: ...


async def _load(loader: Loader) -> ConfigDocument:
    """Run the loader, mapping "no document yet" to the empty document."""
    try:
        return await loader()
    except ConfigNotFound:
        logger.info("[CONFIG CACHE] No config document in the store yet, using empty defaults")
        return ConfigDocument.empty()


class ConfigCache:
    """
    In-process TTL cache with write-through.

    Loads are single-flight: concurrent ``get`` calls that find the entry
    stale wait on one loader call instead of each hitting the store.

    Args:
        ttl_seconds: How long a loaded document is served without reloading.
        clock: Source of unix time, injectable for tests.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: CachedConfig | None = None
        self._lock = asyncio.Lock()

    @property
    def entry(self) -> CachedConfig | None:
        return self._entry

    def _fresh(self) -> ConfigDocument | None:
        if self._entry is not None and self._entry.is_fresh(self._clock(), self.ttl_seconds):
            return self._entry.document
        return None

    async def get(self, loader: Loader) -> ConfigDocument:
        """Return the cached document, reloading it through ``loader`` when stale."""
        document = self._fresh()
        if document is not None:
            return document

        async with self._lock:
            # Another task may have refreshed the entry while we waited.
            document = self._fresh()
            if document is not None:
                return document

            try:
                document = await _load(loader)
            except ConfigStoreError as exc:
                if self._entry is not None:
                    logger.warning("[CONFIG CACHE] Reload failed, serving stale document: %s", exc)
                    return self._entry.document
                logger.warning("[CONFIG CACHE] Reload failed and nothing cached, using empty defaults: %s", exc)
                return ConfigDocument.empty()

            self._entry = CachedConfig(document=document, fetched_at=self._clock())
            logger.debug("[CONFIG CACHE] Loaded fresh document")
            return document

    async def put(self, document: ConfigDocument) -> None:
        """Replace the cached document and reset its freshness (write-through)."""
        self._entry = CachedConfig(document=document, fetched_at=self._clock())
        logger.debug("[CONFIG CACHE] Write-through refresh")


class KVConfigCache:
    """
    Same contract as :class:`ConfigCache`, with the entry kept in a :class:`KVStore`.

    The row itself never expires in the KV store; freshness is judged from
    the stored ``fetched_at`` so a stale copy stays available as a fallback.
    """

    def __init__(
        self,
        kv_store: KVStore,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        key: str = CACHE_KEY,
    ) -> None:
        self.kv_store = kv_store
        self.ttl_seconds = ttl_seconds
        self.key = key
        self._clock = clock

    async def _read_entry(self) -> CachedConfig | None:
        try:
            raw = await self.kv_store.get(self.key)
        except Exception as exc:
            logger.warning("[CONFIG CACHE] KV read failed: %s", exc)
            return None
        if not raw:
            return None
        try:
            return CachedConfig(
                document=ConfigDocument.from_dict(raw["document"]),
                fetched_at=float(raw["fetched_at"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("[CONFIG CACHE] Discarding undecodable KV cache entry: %s", exc)
            return None

    async def get(self, loader: Loader) -> ConfigDocument:
        entry = await self._read_entry()
        if entry is not None and entry.is_fresh(self._clock(), self.ttl_seconds):
            return entry.document

        try:
            document = await _load(loader)
        except ConfigStoreError as exc:
            if entry is not None:
                logger.warning("[CONFIG CACHE] Reload failed, serving stale document: %s", exc)
                return entry.document
            logger.warning("[CONFIG CACHE] Reload failed and nothing cached, using empty defaults: %s", exc)
            return ConfigDocument.empty()

        await self.put(document)
        return document

    async def put(self, document: ConfigDocument) -> None:
        try:
            await self.kv_store.put(
                self.key,
                {"document": document.to_dict(), "fetched_at": self._clock()},
            )
        except Exception as exc:
            # The commit already happened; readers will reload after the TTL.
            logger.error("[CONFIG CACHE] KV write-through failed: %s", exc)
