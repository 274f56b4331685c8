"""
Config cache.

- **config_cache.py**: In-process and KV-backed TTL caches for the moderation
  document, both with write-through and fail-open reads.
"""
