from typing import Any, Dict

class AISettings:
    """Helper exposing typed accessors for the spam classifier configuration.

    Only a small explicit API is provided (`get`, `as_dict`, and convenience
    properties); the full mapping protocol is not implemented.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        """Return the underlying mapping."""
        return self.data

    @property
    def enabled(self) -> bool:
        return bool(self.data.get("enabled", False))

    @property
    def base_url(self) -> str | None:
        val = self.data.get("base_url")
        return str(val) if val else None

    @property
    def model_id(self) -> str | None:
        val = self.data.get("model_id")
        return str(val) if val else None

    @property
    def min_length(self) -> int:
        """Messages at or below this many characters are never classified."""
        return int(self.data.get("min_length", 5))

    @property
    def request_timeout(self) -> float:
        return float(self.data.get("request_timeout", 10.0))
