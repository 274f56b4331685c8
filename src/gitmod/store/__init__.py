"""
Remote configuration store.

- **remote_config_store.py**: GitHub contents API client with optimistic
  concurrency on write.
- **config_codec.py**: UTF-8 JSON plus base64 transport encoding.
- **errors.py**: ConfigNotFound, ConfigConflict, ConfigTransportError,
  ConfigEncodingError.
"""
