"""
gitmod Telegram Moderation Bot
==============================

A Telegram bot that enforces banned words, a user blocklist and new-member
verification, and runs simple giveaways. Its rules live in a JSON document
in a GitHub repository so they can be reviewed and edited like code.
"""

import os
import sys
from pathlib import Path

def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. GITMOD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("GITMOD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]

BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

from gitmod.ai.spam_classifier import SpamClassifier
from gitmod.bot.update_handler import UpdateHandler
from gitmod.cache.config_cache import ConfigCache, KVConfigCache
from gitmod.configuration.app_configuration import AppConfig, app_config
from gitmod.database.kv_store import KVStore
from gitmod.moderation.mutation_engine import ConfigMutationEngine
from gitmod.scheduler.sweep_scheduler import SweepScheduler
from gitmod.store.remote_config_store import GitHubConfigStore
from gitmod.telegram.bot_api import TelegramAPIError, TelegramDispatcher
from gitmod.verification.verification_registry import VerificationRegistry
from gitmod.util.logger import get_logger, handle_exception


logger = get_logger("main")


@dataclass
class Components:
    """Everything the bot wires together at startup."""

    kv_store: KVStore
    dispatcher: TelegramDispatcher
    store: GitHubConfigStore
    registry: VerificationRegistry
    handler: UpdateHandler
    scheduler: SweepScheduler


def load_environment() -> Tuple[str, str]:
    """Load environment variables and return ``(telegram_token, github_token)``.

    Raises
    ------
    SystemExit
        If a required token or the GitHub repository location is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    tg_token = os.getenv("TG_TOKEN")
    gh_token = os.getenv("GITHUB_TOKEN")
    missing = [name for name, value in (("TG_TOKEN", tg_token), ("GITHUB_TOKEN", gh_token)) if not value]
    if missing:
        logger.critical("Missing environment variables: %s. Bot cannot start.", ", ".join(missing))
        sys.exit(1)
    if not app_config.github.is_configured:
        logger.critical("GitHub owner/repo not configured (config/app_config.yml or GITHUB_OWNER/GITHUB_REPO).")
        sys.exit(1)
    return tg_token, gh_token


async def build_components(config: AppConfig, tg_token: str, gh_token: str) -> Components:
    """Open the KV store and construct every collaborator from configuration."""
    kv_store = KVStore()
    await kv_store.open(config.kv_store_path)

    dispatcher = TelegramDispatcher(tg_token, timeout=config.http_timeout)
    github = config.github
    store = GitHubConfigStore(
        github.owner, github.repo, github.path, gh_token,
        branch=github.branch, timeout=config.http_timeout,
    )

    if config.cache_backend == "kv":
        cache = KVConfigCache(kv_store, ttl_seconds=config.config_cache_ttl)
    else:
        cache = ConfigCache(ttl_seconds=config.config_cache_ttl)

    engine = ConfigMutationEngine(store, cache, dispatcher)
    registry = VerificationRegistry(
        kv_store,
        dispatcher,
        timeout_seconds=config.verification_timeout,
        retention_seconds=config.verification_retention,
    )
    handler = UpdateHandler(
        store,
        cache,
        engine,
        registry,
        dispatcher,
        SpamClassifier(config.ai_settings),
        bad_word_mute_seconds=config.bad_word_mute_seconds,
    )
    scheduler = SweepScheduler(registry, config.sweep_interval, kv_store)
    return Components(kv_store, dispatcher, store, registry, handler, scheduler)


async def poll_updates(components: Components, poll_timeout: int) -> None:
    """Long-poll Telegram and hand every update to the handler, in order."""
    offset: int | None = None
    logger.info("Polling Telegram for updates…")
    while True:
        try:
            updates = await components.dispatcher.get_updates(offset, poll_timeout)
        except TelegramAPIError as exc:
            logger.warning("getUpdates failed, retrying in 5s: %s", exc)
            await asyncio.sleep(5)
            continue

        for update in updates:
            offset = update["update_id"] + 1
            await components.handler.handle(update)


async def run_bot() -> int:
    """Run the bot until cancelled. Returns the process exit code."""
    tg_token, gh_token = load_environment()
    components = await build_components(app_config, tg_token, gh_token)
    components.scheduler.start()
    try:
        await poll_updates(components, app_config.poll_timeout)
    except asyncio.CancelledError:
        logger.info("Bot task cancelled; shutting down.")
    finally:
        await components.scheduler.shutdown()
        await components.kv_store.close()
    return 0


async def run_sweep_once() -> int:
    """Run a single verification sweep, for an external periodic trigger."""
    tg_token, gh_token = load_environment()
    components = await build_components(app_config, tg_token, gh_token)
    try:
        report = await components.registry.sweep()
        await components.kv_store.purge_expired()
        logger.info("Sweep finished: %d checked, %d evicted, %d failed",
                    report.checked, report.evicted_count, len(report.failed))
        return 1 if report.failed else 0
    finally:
        await components.kv_store.close()


def main() -> int:
    """Synchronous entry point used by the ``gitmod`` console script."""
    sys.excepthook = handle_exception
    try:
        return asyncio.run(run_bot())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0


def sweep_once() -> int:
    """Synchronous entry point used by the ``gitmod-sweep`` console script."""
    return asyncio.run(run_sweep_once())


if __name__ == "__main__":
    sys.exit(main())
