"""Rental state machine and holder-facing queries."""
import logging
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_access.config import settings
from rental_access.domain.exceptions import (
    AccessPointNotFoundException,
    AlreadyClaimedException,
    AlreadyExtendedException,
    AlreadySetException,
    FilmNotFoundException,
    ForbiddenException,
    InsufficientCreditsException,
    NoDownloadableAssetException,
    NotActiveException,
    NotEligibleException,
    RentalNotFoundException,
)
from rental_access.domain.models import (
    DownloadSource,
    FilmRentalStatus,
    MediaAsset,
    Rental,
    RentalSnapshot,
    RewindClaimResponse,
    ViewingMode,
)
from rental_access.infrastructure.access_points import AccessPointProvisioner
from rental_access.infrastructure.clients import CatalogClient
from rental_access.infrastructure.ledger import (
    REASON_EXTENSION,
    REASON_REWIND,
    PostgresCreditLedger,
)
from rental_access.infrastructure.repositories import RentalRepository
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.services.expiry_reconciler import EVENT_RETURNED, ExpiryReconciler
from rental_access.services.snapshots import build_snapshot
from rental_access.utils import sanitize_filename, utcnow

logger = logging.getLogger(__name__)

# Take-away downloads prefer the primary audio track
_DOWNLOAD_PREFERENCE = (
    (MediaAsset.PRIMARY_AUDIO, "PRIMARY"),
    (MediaAsset.ALT_AUDIO, "ALT"),
)


class RentalService:
    """Holder-initiated transitions of an admitted rental.

    Every one-shot field is written with a conditional update, so a
    concurrent duplicate call loses at the storage layer instead of
    applying twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        provisioner: AccessPointProvisioner,
        catalog_client: CatalogClient,
        reconciler: ExpiryReconciler,
    ):
        self.session_factory = session_factory
        self.provisioner = provisioner
        self.catalog_client = catalog_client
        self.reconciler = reconciler

    async def _load_owned(
        self, repo: RentalRepository, rental_id: UUID, user_id: UUID
    ) -> Rental:
        rental = await repo.get_by_id(rental_id)
        if rental is None:
            raise RentalNotFoundException(str(rental_id))
        if rental.user_id != user_id:
            raise ForbiddenException(str(rental_id), str(user_id))
        return rental

    def _require_live(self, rental: Rental) -> None:
        if not rental.is_live(utcnow()):
            raise NotActiveException(str(rental.rental_id))

    async def set_viewing_mode(
        self, rental_id: UUID, user_id: UUID, mode: ViewingMode
    ) -> RentalSnapshot:
        """Choose in-store or take-away viewing, once."""
        async with self.session_factory() as session, session.begin():
            repo = PostgresRentalRepository(session)
            rental = await self._load_owned(repo, rental_id, user_id)
            self._require_live(rental)
            if rental.viewing_mode != ViewingMode.UNSET:
                raise AlreadySetException(str(rental_id))

            if not await repo.set_viewing_mode(rental_id, mode):
                current = await repo.get_by_id(rental_id)
                if not current.is_active:
                    raise NotActiveException(str(rental_id))
                raise AlreadySetException(str(rental_id))

            await repo.log_event(rental_id, "viewing_mode_set", {"mode": mode.value})
            rental = await repo.get_by_id(rental_id)

        logger.info(f"Rental {rental_id} viewing mode set to {mode.value}")
        return await build_snapshot(rental, self.provisioner)

    async def record_progress(
        self, rental_id: UUID, user_id: UUID, percent: float
    ) -> RentalSnapshot:
        """Store watch progress. Lower values than the stored one are ignored."""
        value = max(0, min(100, round(percent)))
        threshold = settings.rewind_progress_threshold

        async with self.session_factory() as session, session.begin():
            repo = PostgresRentalRepository(session)
            rental = await self._load_owned(repo, rental_id, user_id)
            self._require_live(rental)

            if await repo.raise_progress(rental_id, value):
                if value >= threshold:
                    await repo.mark_watch_completed(rental_id, threshold, utcnow())
                rental = await repo.get_by_id(rental_id)

        return await build_snapshot(rental, self.provisioner)

    async def claim_rewind_reward(self, rental_id: UUID, user_id: UUID) -> RewindClaimResponse:
        """Credit the holder once for having watched the film to the threshold."""
        threshold = settings.rewind_progress_threshold
        reward = settings.rewind_reward_credits

        async with self.session_factory() as session, session.begin():
            repo = PostgresRentalRepository(session)
            ledger = PostgresCreditLedger(session)

            rental = await self._load_owned(repo, rental_id, user_id)
            if not rental.is_active:
                raise NotActiveException(str(rental_id))
            if rental.rewind_claimed:
                raise AlreadyClaimedException(str(rental_id))
            if rental.watch_progress_percent < threshold:
                raise NotEligibleException(str(rental_id), threshold)

            if not await repo.mark_rewind_claimed(rental_id, threshold):
                raise AlreadyClaimedException(str(rental_id))

            balance = await ledger.credit(user_id, reward, REASON_REWIND, rental_id)
            await repo.log_event(rental_id, "rewind_claimed", {"credits": reward})
            rental = await repo.get_by_id(rental_id)

        logger.info(f"Rewind reward of rental {rental_id} credited to {user_id}")
        snapshot = await build_snapshot(rental, self.provisioner)
        return RewindClaimResponse(rental=snapshot, balance=balance)

    async def request_return(self, rental_id: UUID, user_id: UUID) -> RentalSnapshot:
        """Flag the rental as done early. The rental stays active."""
        async with self.session_factory() as session, session.begin():
            repo = PostgresRentalRepository(session)
            rental = await self._load_owned(repo, rental_id, user_id)
            self._require_live(rental)

            if not await repo.mark_return_requested(rental_id):
                raise NotActiveException(str(rental_id))
            await repo.log_event(
                rental_id,
                "return_requested",
                {"user_id": str(user_id), "film_id": rental.film_id},
            )
            rental = await repo.get_by_id(rental_id)

        # Operators watch for this line
        logger.warning(f"Return requested for rental {rental_id} (film {rental.film_id})")
        return await build_snapshot(rental, self.provisioner)

    async def return_rental(self, rental_id: UUID, user_id: UUID) -> RentalSnapshot:
        """Early return: the expiry teardown, run now."""
        async with self.session_factory() as session:
            repo = PostgresRentalRepository(session)
            rental = await self._load_owned(repo, rental_id, user_id)
        self._require_live(rental)

        now = utcnow()
        if not await self.reconciler.expire_rental(
            rental, returned_at=now, event_type=EVENT_RETURNED
        ):
            raise NotActiveException(str(rental_id))

        async with self.session_factory() as session:
            rental = await PostgresRentalRepository(session).get_by_id(rental_id)

        logger.info(f"Rental {rental_id} returned early")
        return await build_snapshot(rental, self.provisioner, now)

    async def extend_rental(self, rental_id: UUID, user_id: UUID) -> RentalSnapshot:
        """Push the deadline once, for a fee."""
        cost = settings.extension_cost

        async with self.session_factory() as session, session.begin():
            repo = PostgresRentalRepository(session)
            ledger = PostgresCreditLedger(session)

            rental = await self._load_owned(repo, rental_id, user_id)
            self._require_live(rental)
            if rental.extension_used:
                raise AlreadyExtendedException(str(rental_id))

            new_expires_at = rental.expires_at + timedelta(hours=settings.extension_hours)
            if not await repo.extend(rental_id, new_expires_at):
                raise AlreadyExtendedException(str(rental_id))
            if not await ledger.debit(user_id, cost, REASON_EXTENSION, rental_id):
                available = await ledger.get_balance(user_id)
                raise InsufficientCreditsException(str(user_id), cost, available)

            await repo.log_event(
                rental_id,
                "rental_extended",
                {"expires_at": new_expires_at.isoformat(), "cost": cost},
            )
            rental = await repo.get_by_id(rental_id)

        logger.info(f"Rental {rental_id} extended until {rental.expires_at}")
        return await build_snapshot(rental, self.provisioner)

    async def get_download_source(self, rental_id: UUID, user_id: UUID) -> DownloadSource:
        """Real file for a take-away download, reached through the access point."""
        async with self.session_factory() as session:
            rental = await self._load_owned(PostgresRentalRepository(session), rental_id, user_id)
        self._require_live(rental)

        for asset, label in _DOWNLOAD_PREFERENCE:
            try:
                path = await self.provisioner.resolve(rental.access_token, asset)
            except AccessPointNotFoundException:
                continue

            try:
                film = await self.catalog_client.get_film(rental.film_id)
                title = film.title
            except FilmNotFoundException:
                title = ""
            return DownloadSource(path=path, filename=f"{sanitize_filename(title)}-{label}.mp4")

        raise NoDownloadableAssetException(str(rental_id))

    async def get_film_rental_status(
        self, film_id: int, user_id: Optional[UUID] = None
    ) -> FilmRentalStatus:
        now = utcnow()
        async with self.session_factory() as session:
            rental = await PostgresRentalRepository(session).get_active_for_film(film_id)

        if rental is None or not rental.is_live(now):
            return FilmRentalStatus(film_id=film_id, is_rented=False)

        if user_id is None or rental.user_id != user_id:
            return FilmRentalStatus(film_id=film_id, is_rented=True)

        return FilmRentalStatus(
            film_id=film_id,
            is_rented=True,
            rented_by_current_user=True,
            rental=await build_snapshot(rental, self.provisioner, now),
        )

    async def list_active_rentals(self, user_id: UUID) -> List[RentalSnapshot]:
        now = utcnow()
        async with self.session_factory() as session:
            rentals = await PostgresRentalRepository(session).list_active_by_user(user_id, now)
        return [await build_snapshot(rental, self.provisioner, now) for rental in rentals]

    async def get_rental_history(self, user_id: UUID) -> List[RentalSnapshot]:
        now = utcnow()
        async with self.session_factory() as session:
            rentals = await PostgresRentalRepository(session).list_by_user(user_id)
        return [await build_snapshot(rental, self.provisioner, now) for rental in rentals]
