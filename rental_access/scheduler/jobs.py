"""Periodic jobs."""
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from prometheus_client import Counter

from rental_access.config import settings
from rental_access.services.expiry_reconciler import ExpiryReconciler

logger = logging.getLogger(__name__)

EXPIRY_SWEEP_JOB_ID = "expiry_sweep_job"

expiry_sweep_counter = Counter(
    "rental_expiry_sweep_rentals_total", "Rentals handled by the expiry sweep", ["status"]
)


async def expiry_sweep_job(reconciler: ExpiryReconciler) -> None:
    """Deactivate every rental past its deadline."""
    try:
        report = await reconciler.run_once()
    except Exception:
        # Next tick retries
        logger.exception("Expiry sweep failed")
        return
    expiry_sweep_counter.labels(status="expired").inc(report.processed)
    expiry_sweep_counter.labels(status="failed").inc(report.failed)


def setup_scheduler(
    scheduler: AsyncIOScheduler,
    reconciler: ExpiryReconciler,
    interval_seconds: int = settings.expiry_sweep_interval_seconds,
) -> None:
    """Register all periodic jobs. Called once at application start."""
    scheduler.add_job(
        expiry_sweep_job,
        trigger="interval",
        seconds=interval_seconds,
        kwargs={"reconciler": reconciler},
        id=EXPIRY_SWEEP_JOB_ID,
        next_run_time=datetime.now(timezone.utc),
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=60,
    )
