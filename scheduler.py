"""
Homeward background scheduler

Runs the expiry sweep on an interval: active sessions past their window
and pending escrow intents past their TTL are expired. Reads already expire
lazily, so the sweep only keeps stored statuses and daily counters fresh.

Only starts when ENABLE_SCHEDULER=true so one instance owns the sweep.
"""

import logging

logger = logging.getLogger(__name__)


def sweep_expired(app):
    """Expire overdue sessions and intents once. Safe to run repeatedly."""
    with app.app_context():
        services = app.extensions['homeward']
        result = services.sweep_expired()
        if result['sessions_expired'] or result['intents_expired']:
            logger.info(
                "Scheduler: expired %d sessions and %d escrow intents",
                result['sessions_expired'], result['intents_expired'],
            )
        return result


def init_scheduler(app):
    """Initialize and start the background scheduler.

    Only runs if ENABLE_SCHEDULER is true in the app config.
    """
    if not app.config.get("ENABLE_SCHEDULER"):
        logger.info("Scheduler disabled (set ENABLE_SCHEDULER=true to enable)")
        return None

    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        sweep_expired,
        "interval",
        seconds=app.config.get("SWEEP_INTERVAL_SECONDS", 60),
        args=[app],
        id="homeward_sweep_expired",
        name="Expire stale homeward sessions and escrow intents",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Background scheduler started (sweep every %ss)",
                app.config.get("SWEEP_INTERVAL_SECONDS", 60))
    app.extensions['homeward_scheduler'] = scheduler
    return scheduler
