# provenance/tasks.py
import logging
import time
from apscheduler.schedulers.background import BackgroundScheduler

from provenance.settings import Settings

log = logging.getLogger("tasks")

DAY_SECONDS = 24 * 3600


def check_product_expiry(registry, warning_days: int, now: int | None = None):
    """
    Report approved, unsold products that have expired or expire soon.
    Expiry is business data: nothing is revoked or mutated here.
    """
    log.info("Running expiry check...")
    now = int(time.time()) if now is None else now
    horizon = now + warning_days * DAY_SECONDS
    expired, expiring = [], []
    for p in registry.expiring_products(before=horizon):
        if p.expiry_date <= now:
            log.warning("Product %s (batch %s) expired at %s, custodian %s",
                        p.id, p.batch_id, p.expiry_date, p.current_custodian)
            expired.append(p.id)
        else:
            log.info("Product %s (batch %s) will expire soon: %s", p.id, p.batch_id, p.expiry_date)
            expiring.append(p.id)
    return {"expired": expired, "expiring": expiring}


def build_scheduler(registry, settings: Settings) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        check_product_expiry,
        "interval",
        minutes=settings.EXPIRY_CHECK_MINUTES,
        args=[registry, settings.EXPIRY_WARNING_DAYS],
    )
    return scheduler
