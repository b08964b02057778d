"""
Scheduled Tasks Module
Background housekeeping jobs (emergency broadcast expiry sweep)
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

logger = logging.getLogger(__name__)
scheduler = None


def sweep_emergency_task(app):
    """
    Deactivate expired emergency broadcasts
    Reads apply lazy expiry themselves; this keeps stored state tidy
    """
    with app.app_context():
        from models import db
        from utils.emergency import sweep_expired_broadcasts

        try:
            count = sweep_expired_broadcasts()
            logger.debug(f"Emergency sweep completed: {count} expired")

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error in emergency sweep task: {e}")


def init_scheduler(app):
    """
    Initialize and start the background scheduler

    Args:
        app: Flask application instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    if not app.config.get('EMERGENCY_SWEEP_ENABLED'):
        logger.info("Emergency sweep disabled; scheduler not started")
        return

    try:
        scheduler = BackgroundScheduler(timezone='UTC')

        minutes = app.config.get('EMERGENCY_SWEEP_MINUTES', 5)
        scheduler.add_job(
            func=sweep_emergency_task,
            trigger=IntervalTrigger(minutes=minutes),
            args=[app],
            id='emergency_sweep',
            name='Emergency broadcast expiry sweep',
            replace_existing=True
        )
        logger.info(f"Emergency sweep started - every {minutes} minutes")

        scheduler.start()
        logger.info("Scheduler started successfully")

    except Exception as e:
        logger.error(f"Failed to initialize scheduler: {e}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully"""
    global scheduler

    if scheduler is not None:
        try:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")
        scheduler = None
