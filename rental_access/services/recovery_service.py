"""Startup recovery pass."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_access.config import settings
from rental_access.domain.models import RecoveryReport
from rental_access.infrastructure.access_points import AccessPointProvisioner
from rental_access.infrastructure.ledger import REASON_REFUND, PostgresCreditLedger
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.utils import utcnow

logger = logging.getLogger(__name__)


class RecoveryService:
    """Repairs what an interrupted admission may have left behind.

    Runs once per process start. Refunds rental debits whose rental
    row was never written, and removes access points that belong to no
    active rental. Access points younger than the grace period are left
    alone since their admission may still be in flight.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        provisioner: AccessPointProvisioner,
        grace_seconds: int = settings.orphan_access_point_grace_seconds,
    ):
        self.session_factory = session_factory
        self.provisioner = provisioner
        self.grace = timedelta(seconds=grace_seconds)

    async def run(self, now: Optional[datetime] = None) -> RecoveryReport:
        now = now or utcnow()
        report = RecoveryReport(
            refunded_debits=await self.refund_orphaned_debits(),
            purged_access_points=await self.purge_orphan_access_points(now),
        )
        logger.info(
            f"Recovery done: {report.refunded_debits} debit(s) refunded, "
            f"{report.purged_access_points} access point(s) purged"
        )
        return report

    async def refund_orphaned_debits(self) -> int:
        """Refund each orphan in its own transaction.

        A concurrent pass on another replica may refund the same debit
        first; the unique refund index then rejects the second credit.
        """
        async with self.session_factory() as session:
            orphans = await PostgresCreditLedger(session).find_orphaned_rental_debits()

        refunded = 0
        for entry in orphans:
            try:
                async with self.session_factory() as session, session.begin():
                    await PostgresCreditLedger(session).credit(
                        entry.user_id, -entry.amount, REASON_REFUND, entry.rental_id
                    )
            except IntegrityError:
                logger.info(f"Debit of rental {entry.rental_id} already refunded")
                continue

            refunded += 1
            logger.critical(
                f"Refunded {-entry.amount} credit(s) to {entry.user_id} "
                f"for rental {entry.rental_id} that was never recorded"
            )
        return refunded

    async def purge_orphan_access_points(self, now: datetime) -> int:
        on_disk = await self.provisioner.list_tokens()
        if not on_disk:
            return 0

        async with self.session_factory() as session:
            live_tokens = await PostgresRentalRepository(session).list_active_tokens()

        purged = 0
        for token, created_at in on_disk.items():
            if token in live_tokens or now - created_at < self.grace:
                continue
            await self.provisioner.revoke(token)
            purged += 1

        if purged:
            logger.warning(f"Purged {purged} orphan access point(s)")
        return purged
