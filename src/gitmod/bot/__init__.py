"""
Update routing for gitmod.

- **update_handler.py**: Dispatches messages and button presses to commands,
  the verification registry and the automatic defenses.
"""
