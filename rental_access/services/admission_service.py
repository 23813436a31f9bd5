"""Admission control: the entry point for starting a rental."""
import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_access.domain.exceptions import (
    AdmissionFailedException,
    AlreadyRentedException,
    DomainException,
    FilmNotFoundException,
    InsufficientCreditsException,
    NotAvailableException,
)
from rental_access.domain.models import AdmissionResult, Rental, RentalSnapshot
from rental_access.domain.tiers import rental_cost, rental_duration, tier_for_film
from rental_access.infrastructure.access_points import (
    AccessPointProvisioner,
    new_access_token,
)
from rental_access.infrastructure.clients import CatalogClient
from rental_access.infrastructure.ledger import REASON_RENTAL, PostgresCreditLedger
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.services.expiry_reconciler import ExpiryReconciler
from rental_access.services.snapshots import build_snapshot
from rental_access.utils import utcnow

logger = logging.getLogger(__name__)

EVENT_STARTED = "rental_started"


class AdmissionService:
    """Grants time-boxed, single-holder rentals."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        catalog_client: CatalogClient,
        provisioner: AccessPointProvisioner,
        reconciler: ExpiryReconciler,
    ):
        self.session_factory = session_factory
        self.catalog_client = catalog_client
        self.provisioner = provisioner
        self.reconciler = reconciler

    async def request_rental(self, user_id: UUID, film_id: int) -> RentalSnapshot:
        """Rent a film, returning the holder's snapshot."""
        result = await self.admit(user_id, film_id)
        return result.rental

    async def admit(self, user_id: UUID, film_id: int) -> AdmissionResult:
        """Rent a film.

        Checks run in order: availability, current holder, balance. Then
        the access point is provisioned and, in one transaction, credits
        are debited and the rental row inserted. If that transaction
        fails the access point is revoked before the error surfaces.
        A second request from the holder returns the existing rental,
        also when it raced the first one.
        """
        logger.info(f"Rental requested for film {film_id} by user {user_id}")

        try:
            film = await self.catalog_client.get_film(film_id)
        except FilmNotFoundException:
            raise NotAvailableException(film_id)
        if not film.available:
            raise NotAvailableException(film_id)

        now = utcnow()

        async with self.session_factory() as session:
            existing = await PostgresRentalRepository(session).get_active_for_film(film_id)

        if existing is not None and existing.is_expired(now):
            # The sweep has not reached this row yet
            await self.reconciler.expire_rental(existing)
            existing = None

        if existing is not None:
            return await self._existing_rental(existing, user_id, film_id)

        tier = tier_for_film(film, now.date())
        cost = rental_cost(tier)

        async with self.session_factory() as session:
            balance = await PostgresCreditLedger(session).get_balance(user_id)
        if balance < cost:
            # A concurrent request may have spent the credits on this very film
            return await self._resolve_insufficient(user_id, film_id, cost, balance)

        token = new_access_token()
        rental = Rental(
            user_id=user_id,
            film_id=film_id,
            access_token=token,
            tier=tier,
            rented_at=now,
            expires_at=now + rental_duration(tier),
        )

        await self.provisioner.grant(token, film.assets, rental.expires_at)

        try:
            async with self.session_factory() as session, session.begin():
                ledger = PostgresCreditLedger(session)
                repo = PostgresRentalRepository(session)

                if not await ledger.debit(user_id, cost, REASON_RENTAL, rental.rental_id):
                    available = await ledger.get_balance(user_id)
                    raise InsufficientCreditsException(str(user_id), cost, available)

                created = await repo.create(rental)
                await repo.log_event(
                    created.rental_id,
                    EVENT_STARTED,
                    {"user_id": str(user_id), "film_id": film_id, "tier": tier.value, "cost": cost},
                )
        except IntegrityError:
            # Lost the race for the film; the transaction is rolled back
            logger.warning(f"Concurrent admission detected for film {film_id}")
            await self._compensate(token, user_id, film_id)
            return await self._resolve_conflict(user_id, film_id)
        except InsufficientCreditsException as e:
            await self._compensate(token, user_id, film_id)
            return await self._resolve_insufficient(user_id, film_id, cost, e.available)
        except DomainException:
            await self._compensate(token, user_id, film_id)
            raise
        except Exception as e:
            logger.critical(
                f"Admission of film {film_id} for user {user_id} failed after provisioning: {e}"
            )
            await self._compensate(token, user_id, film_id)
            raise AdmissionFailedException(str(user_id), film_id) from e

        logger.info(
            f"Rental {created.rental_id} started: film {film_id}, tier {tier.value}, cost {cost}"
        )
        snapshot = await build_snapshot(created, self.provisioner, now)
        return AdmissionResult(rental=snapshot, created=True)

    async def _existing_rental(
        self, existing: Rental, user_id: UUID, film_id: int
    ) -> AdmissionResult:
        if existing.user_id != user_id:
            raise AlreadyRentedException(film_id)
        logger.info(f"User {user_id} already holds rental {existing.rental_id}")
        snapshot = await build_snapshot(existing, self.provisioner)
        return AdmissionResult(rental=snapshot, created=False)

    async def _resolve_insufficient(
        self, user_id: UUID, film_id: int, cost: int, available: int
    ) -> AdmissionResult:
        async with self.session_factory() as session:
            holder = await PostgresRentalRepository(session).get_active_for_film(film_id)

        if holder is not None and not holder.is_expired(utcnow()):
            return await self._existing_rental(holder, user_id, film_id)
        raise InsufficientCreditsException(str(user_id), cost, available)

    async def _resolve_conflict(self, user_id: UUID, film_id: int) -> AdmissionResult:
        async with self.session_factory() as session:
            winner = await PostgresRentalRepository(session).get_active_for_film(film_id)

        if winner is None:
            logger.critical(f"Admission conflict on film {film_id} without an active holder")
            raise AdmissionFailedException(str(user_id), film_id)
        return await self._existing_rental(winner, user_id, film_id)

    async def _compensate(self, token: str, user_id: UUID, film_id: int) -> None:
        try:
            await self.provisioner.revoke(token)
        except Exception as e:
            # Purged by the startup recovery pass
            logger.critical(
                f"Failed to revoke access point of aborted rental (film {film_id}, user {user_id}): {e}"
            )
