"""
Configuration management for gitmod.

- **app_configuration.py**: YAML configuration loader guarded by fcntl locks.
  Exposes the GitHub document location, cache TTL and backend, verification
  timeout and sweep interval, mute duration and KV store path. Falls back to
  defaults on a missing or malformed file.

- **ai_settings.py**: Typed accessors for the spam classifier settings.
"""
