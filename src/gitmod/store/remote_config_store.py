"""
Client for the moderation document stored in a GitHub repository.

Reads return the decoded document together with its blob ``sha``; writes
must hand that ``sha`` back. GitHub refuses a write whose ``sha`` no longer
matches the file, which is how concurrent writers are detected instead of
silently overwriting each other.

HTTP calls use ``requests`` and block the calling thread, so the public
coroutines run them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Tuple

import requests

from gitmod.datatypes.config_datatypes import ConfigDocument, RevisionToken
from gitmod.store.config_codec import decode_document, encode_document
from gitmod.store.errors import (
    ConfigConflict,
    ConfigEncodingError,
    ConfigNotFound,
    ConfigTransportError,
)
from gitmod.util.logger import get_logger

logger = get_logger("remote_config_store")

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "gitmod-bot"

# 409: sha mismatch on update. 422: sha missing/invalid, e.g. the file was
# created by someone else after we read "not found".
CONFLICT_STATUSES = (409, 422)


class GitHubConfigStore:
    """Read and conditionally write a single JSON file through the GitHub contents API.

    Args:
        owner: Repository owner (user or organisation).
        repo: Repository name.
        path: File path inside the repository.
        token: Personal access token with ``contents:write``.
        branch: Optional branch; the default branch when omitted.
        timeout: Per-request timeout in seconds.
        session: Optional ``requests.Session`` (tests inject a mock here).
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        path: str,
        token: str,
        *,
        branch: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        api_url: str = GITHUB_API_URL,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.path = path.lstrip("/")
        self.branch = branch
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()
        self._api_url = api_url.rstrip("/")

    @property
    def url(self) -> str:
        return f"{self._api_url}/repos/{self.owner}/{self.repo}/contents/{self.path}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }

    # ------------------------------------------------------------------
    # Blocking implementation
    # ------------------------------------------------------------------

    def read_sync(self) -> Tuple[ConfigDocument, RevisionToken]:
        """Fetch and decode the document. See :meth:`read`."""
        params = {"ref": self.branch} if self.branch else None
        try:
            response = self._session.get(self.url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ConfigTransportError(f"GitHub read failed: {exc}") from exc

        if response.status_code == 404:
            raise ConfigNotFound(f"{self.owner}/{self.repo}:{self.path} does not exist")
        if not response.ok:
            raise ConfigTransportError(
                f"GitHub read returned HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise ConfigTransportError(f"GitHub read returned a non-JSON body: {exc}") from exc

        if not isinstance(payload, dict) or "content" not in payload or "sha" not in payload:
            raise ConfigEncodingError("GitHub response is missing 'content' or 'sha'")

        document = decode_document(payload["content"])
        logger.debug("[CONFIG STORE] Read %s at sha %s", self.path, payload["sha"])
        return document, str(payload["sha"])

    def write_sync(self, document: ConfigDocument, revision: RevisionToken, message: str) -> RevisionToken:
        """Commit the document. See :meth:`write`."""
        body: Dict[str, Any] = {"message": message, "content": encode_document(document)}
        if revision is not None:
            body["sha"] = revision
        if self.branch:
            body["branch"] = self.branch

        try:
            response = self._session.put(self.url, headers=self._headers(), json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ConfigTransportError(f"GitHub write failed: {exc}") from exc

        if response.status_code in CONFLICT_STATUSES:
            raise ConfigConflict(
                f"GitHub rejected the write to {self.path}: revision {revision} is out of date"
            )
        if not response.ok:
            raise ConfigTransportError(
                f"GitHub write returned HTTP {response.status_code}", status_code=response.status_code
            )

        new_revision: RevisionToken = None
        try:
            new_revision = response.json().get("content", {}).get("sha")
        except (ValueError, AttributeError):
            logger.warning("[CONFIG STORE] Write succeeded but the response carried no sha")

        logger.info("[CONFIG STORE] Committed %s (%s) -> sha %s", self.path, message, new_revision)
        return new_revision

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def read(self) -> Tuple[ConfigDocument, RevisionToken]:
        """Return the current document and its revision token.

        Raises:
            ConfigNotFound: The file does not exist.
            ConfigTransportError: Network, auth or unexpected HTTP failure.
            ConfigEncodingError: The file exists but cannot be decoded.
        """
        return await asyncio.to_thread(self.read_sync)

    async def write(self, document: ConfigDocument, revision: RevisionToken, message: str) -> RevisionToken:
        """Commit ``document`` on top of ``revision`` and return the new revision.

        A ``revision`` of None creates the file.

        Raises:
            ConfigConflict: ``revision`` is stale.
            ConfigTransportError: Network, auth or unexpected HTTP failure.
        """
        return await asyncio.to_thread(self.write_sync, document, revision, message)
