"""
Background Scheduler — periodic conversation store maintenance.

Jobs:
  - Conversation sweep (every SWEEP_INTERVAL_HOURS, default 1 hour)
"""

from __future__ import annotations

from extensions import ServiceManager


def sweep_conversations(app) -> int:
    """Evict idle and over-cap conversations. Returns the removed count."""
    removed = ServiceManager.get_store().sweep()
    app.logger.info("Conversation sweep removed %d records (%d active)",
                    removed, len(ServiceManager.get_store()))
    return removed


def init_scheduler(app):
    """Start the background scheduler. Returns the scheduler instance."""
    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler(daemon=True)

    # A sweep never overlaps a still-running one
    scheduler.add_job(
        func=sweep_conversations,
        args=[app],
        trigger="interval",
        hours=app.config.get("SWEEP_INTERVAL_HOURS", 1),
        id="conversation_sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    app.logger.info("Scheduler started (conversation sweep)")
    return scheduler
