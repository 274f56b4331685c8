"""
Scheduled tasks.

- **sweep_scheduler.py**: In-process periodic trigger for the verification
  sweep, with graceful cancellation and shutdown.
"""
