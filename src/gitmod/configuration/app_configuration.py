from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import fcntl
import os
from typing import Any, Dict
import yaml

from gitmod.configuration.ai_settings import AISettings
from gitmod.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()


@dataclass(frozen=True, slots=True)
class GitHubSettings:
    """Location of the moderation document inside a GitHub repository."""

    owner: str
    repo: str
    path: str = "config.json"
    branch: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.owner and self.repo)


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches contents of ``./config/app_config.yml`` and exposes typed
    properties for the cache, verification and GitHub settings. Uses fcntl
    file locks for safe concurrent access across processes. Secrets are never
    read from the YAML file; they come from the environment.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                if not isinstance(data, dict):
                    logger.warning("[APP CONFIGURATION] Config %s is not a mapping, ignoring it.", self.config_path)
                    return {}
                return data
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    def _section(self, key: str) -> Dict[str, Any]:
        value = self._data.get(key, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping (do not mutate)."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def github(self) -> GitHubSettings:
        """Return where the moderation document lives.

        ``GITHUB_OWNER`` and ``GITHUB_REPO`` environment variables take
        precedence over the YAML values.
        """
        section = self._section("github")
        branch = section.get("branch")
        return GitHubSettings(
            owner=os.getenv("GITHUB_OWNER") or str(section.get("owner", "") or ""),
            repo=os.getenv("GITHUB_REPO") or str(section.get("repo", "") or ""),
            path=str(section.get("path") or "config.json"),
            branch=str(branch) if branch else None,
        )

    @property
    def config_cache_ttl(self) -> float:
        """Seconds a fetched moderation document stays fresh. Default 60."""
        return float(self._section("config_cache").get("ttl_seconds", 60.0))

    @property
    def cache_backend(self) -> str:
        """``memory`` for an in-process cache, ``kv`` for the durable store."""
        backend = str(self._section("config_cache").get("backend", "memory")).lower()
        if backend not in ("memory", "kv"):
            logger.warning("[APP CONFIGURATION] Unknown cache backend %r, using 'memory'.", backend)
            return "memory"
        return backend

    @property
    def verification_timeout(self) -> float:
        """Seconds a new member has to press the verify button. Default 60."""
        return float(self._section("verification").get("timeout_seconds", 60.0))

    @property
    def verification_retention(self) -> float:
        """Extra seconds a pending entry survives in the KV store past its expiry."""
        return float(self._section("verification").get("retention_seconds", 3600.0))

    @property
    def sweep_interval(self) -> float:
        """Seconds between verification sweeps when the bot runs its own trigger."""
        return float(self._section("verification").get("sweep_interval_seconds", 15.0))

    @property
    def bad_word_mute_seconds(self) -> int:
        """How long a member is muted after posting a banned word. Default one day."""
        return int(self._section("moderation").get("bad_word_mute_seconds", 86400))

    @property
    def http_timeout(self) -> float:
        return float(self._section("http").get("timeout_seconds", 10.0))

    @property
    def poll_timeout(self) -> int:
        """Long-poll timeout passed to Telegram getUpdates."""
        return int(self._section("telegram").get("poll_timeout_seconds", 30))

    @property
    def kv_store_path(self) -> Path:
        return Path(str(self._section("kv_store").get("path", "./data/kv.db"))).resolve()

    @property
    def ai_settings(self) -> AISettings:
        """Return the spam classifier settings wrapped in an AISettings helper."""
        return AISettings(self._section("ai_settings"))


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
