"""
New-member verification.

- **verification_registry.py**: Pending entries in the KV store, button
  resolution, and the idempotent expiry sweep.
"""
