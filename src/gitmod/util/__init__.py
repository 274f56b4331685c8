"""
Utility helpers for gitmod.

- **logger.py**: Centralized logging configuration with colored console output
  through prompt_toolkit, per-session rotating log files, and suppression of
  noisy HTTP client loggers.
"""
