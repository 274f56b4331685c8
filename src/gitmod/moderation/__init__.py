"""
Changes to the moderation document.

- **config_mutations.py**: Pure add/remove/create/join transformations.
- **mutation_engine.py**: Fetch, mutate, conditional commit, cache refresh.
- **giveaway_draw.py**: Giveaway selection and uniform winner draw.
"""
