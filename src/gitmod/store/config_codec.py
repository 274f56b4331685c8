"""
Transport encoding for the moderation document.

The GitHub contents API only carries base64 text, so the JSON document is
UTF-8 encoded first and then base64 encoded. Decoding reverses both steps,
which keeps non-ASCII banned words (CJK, emoji) intact byte for byte.
"""

from __future__ import annotations

import base64
import binascii
import json

from gitmod.datatypes.config_datatypes import ConfigDocument
from gitmod.store.errors import ConfigEncodingError


def serialize_document(document: ConfigDocument) -> str:
    """Render the document as pretty-printed JSON text."""
    return json.dumps(document.to_dict(), ensure_ascii=False, indent=2)


def encode_document(document: ConfigDocument) -> str:
    """Return the base64 transport form of ``document``."""
    raw = serialize_document(document).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_document(content: str) -> ConfigDocument:
    """Parse the base64 transport form back into a document.

    GitHub wraps base64 payloads at 60 columns; embedded newlines are ignored.

    Raises:
        ConfigEncodingError: If any decoding step fails or the JSON has the wrong shape.
    """
    if not isinstance(content, str):
        raise ConfigEncodingError(f"expected base64 text, got {type(content).__name__}")

    compact = "".join(content.split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigEncodingError(f"content is not valid base64: {exc}") from exc

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigEncodingError(f"content is not valid UTF-8: {exc}") from exc

    # An empty file is treated as an empty document.
    if not text.strip():
        return ConfigDocument.empty()

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigEncodingError(f"content is not valid JSON: {exc}") from exc

    try:
        return ConfigDocument.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigEncodingError(f"content has an unexpected shape: {exc}") from exc
