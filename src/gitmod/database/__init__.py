"""
Durable storage for gitmod.

- **kv_store.py**: SQLite-backed key-value store (single aiosqlite connection,
  WAL mode, serialised writes, per-key expiry) used by the verification
  registry and the durable config cache.
"""
