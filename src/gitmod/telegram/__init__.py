"""
Telegram Bot API access.

- **bot_api.py**: Restrict, remove, notify, delete and answer calls plus the
  admin lookups and long-polling used by the runner.
"""
