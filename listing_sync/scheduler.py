# listing_sync/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from . import config
from .cache import CacheStore
from .services import run_sync
from .sync_state import reset_stale_sync
from .utils import logger

scheduler = BackgroundScheduler()

def run_watchdog():
    cleared = reset_stale_sync(CacheStore(), config.SYNC_MAX_DURATION_SECONDS)
    if any(cleared.values()):
        logger.warning("Watchdog cleared stale sync flags: %s", cleared)

def start_scheduler():
    if scheduler.running:
        return scheduler
    scheduler.add_job(run_sync, 'interval', minutes=config.SYNC_INTERVAL_MINUTES,
                      id="listing-sync", max_instances=1, coalesce=True)
    scheduler.add_job(run_watchdog, 'interval', minutes=1, id="sync-watchdog", max_instances=1)
    scheduler.start()
    logger.info("Scheduler started (sync every %d min)", config.SYNC_INTERVAL_MINUTES)
    return scheduler

def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
