"""Expiry reconciler: turns active-but-expired rentals into history."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_access.domain.models import ReconcileReport, Rental
from rental_access.infrastructure.access_points import AccessPointProvisioner
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.utils import utcnow

logger = logging.getLogger(__name__)

EVENT_EXPIRED = "rental_expired"
EVENT_RETURNED = "rental_returned"


class ExpiryReconciler:
    """Periodic sweep over rentals whose deadline has passed.

    Each row is torn down in two steps: the access point is revoked
    first, then the row is deactivated. A crash between the two leaves
    an active row without an access point, which the next sweep
    finishes. Both steps are idempotent, so overlapping sweeps converge.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        provisioner: AccessPointProvisioner,
    ):
        self.session_factory = session_factory
        self.provisioner = provisioner

    async def expire_rental(
        self,
        rental: Rental,
        returned_at: Optional[datetime] = None,
        event_type: str = EVENT_EXPIRED,
    ) -> bool:
        """Revoke then deactivate one rental. False if it was already inactive."""
        if rental.access_token:
            await self.provisioner.revoke(rental.access_token)

        async with self.session_factory() as session, session.begin():
            repo = PostgresRentalRepository(session)
            deactivated = await repo.deactivate(rental.rental_id, returned_at=returned_at)
            if deactivated:
                await repo.log_event(
                    rental.rental_id,
                    event_type,
                    {"user_id": str(rental.user_id), "film_id": rental.film_id},
                )
        return deactivated

    async def run_once(self, now: Optional[datetime] = None) -> ReconcileReport:
        """One sweep. Failures are logged and left for the next run."""
        now = now or utcnow()

        async with self.session_factory() as session:
            stale = await PostgresRentalRepository(session).list_stale(now)

        report = ReconcileReport()
        for rental in stale:
            try:
                if await self.expire_rental(rental):
                    report.processed += 1
            except Exception as e:
                logger.error(f"Failed to expire rental {rental.rental_id}: {e}")
                report.failed += 1

        logger.info(
            f"Expiry sweep done: {report.processed} expired, {report.failed} failed"
        )
        return report
