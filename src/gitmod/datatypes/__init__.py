"""
Data structures shared across gitmod.

- **config_datatypes.py**: ConfigDocument, Giveaway, CachedConfig and the
  payloads used to create or join giveaways.
- **mutation_datatypes.py**: MutationAction, MutationOutcome, MutationResult.
- **verification_datatypes.py**: VerificationEntry, VerificationOutcome, SweepReport.
"""
