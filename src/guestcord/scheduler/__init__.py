"""
Timed execution of guest access grants.

- **timer_registry.py**: Lock-guarded map from grant id to its armed warning
  and expiry tasks; the duplicate-scheduling guard lives here.

- **guest_scheduler.py**: Turns a grant's absolute ``warning_at`` /
  ``expires_at`` into asyncio timers, expires overdue grants immediately,
  skips warnings whose window passed and re-arms failed expiries for retry.

- **guest_action_queue.py**: Per-guild asyncio queues and workers that run
  the warnings and expiries produced by fired timers.

- **bootstrap_recovery.py**: Re-arms every persisted grant when the bot
  starts, restoring timers lost with the previous process.
"""
