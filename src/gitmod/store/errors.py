"""Errors raised by the remote configuration store."""


class ConfigStoreError(Exception):
    """Base class for every failure talking to the configuration store."""


class ConfigNotFound(ConfigStoreError):
    """The store holds no document yet. Callers start from empty defaults."""


class ConfigConflict(ConfigStoreError):
    """The revision token supplied on write is stale; another writer committed first."""


class ConfigTransportError(ConfigStoreError):
    """Network, authentication or unexpected HTTP failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigEncodingError(ConfigStoreError):
    """The stored document is not valid base64, UTF-8 or JSON of the expected shape."""
