"""Periodic trigger for the verification sweep.

Runs ``VerificationRegistry.sweep`` on a fixed interval inside the bot
process. Deployments without a long-lived process use the ``gitmod-sweep``
console script from cron instead; both call the same sweep.
"""

from __future__ import annotations

import asyncio

from gitmod.database.kv_store import KVStore
from gitmod.verification.verification_registry import VerificationRegistry
from gitmod.util.logger import get_logger

logger = get_logger("sweep_scheduler")


class SweepScheduler:
    """
    Background task that sweeps expired verifications every ``interval`` seconds.

    Args:
        registry: The registry to sweep.
        interval: Seconds between sweeps.
        kv_store: When given, expired KV rows are purged after each sweep.
    """

    def __init__(self, registry: VerificationRegistry, interval: float, kv_store: KVStore | None = None) -> None:
        self._registry = registry
        self._interval = interval
        self._kv_store = kv_store
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """One sweep plus housekeeping. Errors are logged, never raised."""
        try:
            await self._registry.sweep()
            if self._kv_store is not None:
                await self._kv_store.purge_expired()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[SWEEP] Unexpected error during sweep: %s", exc)

    async def _run_loop(self) -> None:
        """Infinite loop: sweep, sleep, repeat."""
        logger.info("[SWEEP] Starting periodic verification sweep (interval=%.1fs)", self._interval)
        try:
            while True:
                await self.run_once()
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            logger.info("[SWEEP] Periodic sweep cancelled")
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.running:
            logger.warning("[SWEEP] Sweep task already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="gitmod-verification-sweep")

    async def shutdown(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[SWEEP] Scheduler shutdown complete")
