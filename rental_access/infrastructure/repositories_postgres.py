"""PostgreSQL repository implementation."""
import logging
from datetime import datetime
from typing import List, Optional, Set
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rental_access.domain.models import Rental, ViewingMode
from rental_access.infrastructure.models import RentalEventModel, RentalModel
from rental_access.infrastructure.repositories import RentalRepository

logger = logging.getLogger(__name__)


class PostgresRentalRepository(RentalRepository):
    """PostgreSQL implementation of rental repository.

    Never commits: the caller owns the transaction, so several calls
    compose into one unit of work.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, model: RentalModel) -> Rental:
        """Convert SQLAlchemy model to domain model."""
        return Rental.model_validate(model)

    def _to_model(self, rental: Rental) -> RentalModel:
        """Convert domain model to SQLAlchemy model."""
        return RentalModel(
            rental_id=rental.rental_id,
            user_id=rental.user_id,
            film_id=rental.film_id,
            access_token=rental.access_token,
            tier=rental.tier,
            rented_at=rental.rented_at,
            expires_at=rental.expires_at,
            is_active=rental.is_active,
            viewing_mode=rental.viewing_mode,
            watch_progress_percent=rental.watch_progress_percent,
            watch_completed_at=rental.watch_completed_at,
            rewind_claimed=rental.rewind_claimed,
            return_requested=rental.return_requested,
            extension_used=rental.extension_used,
            returned_at=rental.returned_at,
        )

    async def _update(self, rental_id: UUID, *criteria, **values) -> bool:
        stmt = (
            update(RentalModel)
            .where(RentalModel.rental_id == rental_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def create(self, rental: Rental) -> Rental:
        """Insert a new rental row. Raises IntegrityError if the film is already held."""
        model = self._to_model(rental)
        self.session.add(model)
        await self.session.flush()
        logger.info(f"Created rental {rental.rental_id} for film {rental.film_id}")
        return self._to_domain(model)

    async def get_by_id(self, rental_id: UUID) -> Optional[Rental]:
        """Get rental by ID."""
        stmt = (
            select(RentalModel)
            .where(RentalModel.rental_id == rental_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._to_domain(model)

    async def get_active_for_film(self, film_id: int) -> Optional[Rental]:
        stmt = (
            select(RentalModel)
            .where(RentalModel.film_id == film_id, RentalModel.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def list_active_by_user(self, user_id: UUID, now: datetime) -> List[Rental]:
        stmt = (
            select(RentalModel)
            .where(
                RentalModel.user_id == user_id,
                RentalModel.is_active.is_(True),
                RentalModel.expires_at > now,
            )
            .order_by(RentalModel.rented_at.desc())
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_by_user(self, user_id: UUID) -> List[Rental]:
        stmt = (
            select(RentalModel)
            .where(RentalModel.user_id == user_id)
            .order_by(RentalModel.rented_at.desc())
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_stale(self, now: datetime) -> List[Rental]:
        stmt = (
            select(RentalModel)
            .where(RentalModel.is_active.is_(True), RentalModel.expires_at <= now)
            .order_by(RentalModel.expires_at)
        )
        result = await self.session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_active_tokens(self) -> Set[str]:
        stmt = select(RentalModel.access_token).where(
            RentalModel.is_active.is_(True),
            RentalModel.access_token.is_not(None),
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def set_viewing_mode(self, rental_id: UUID, mode: ViewingMode) -> bool:
        return await self._update(
            rental_id,
            RentalModel.viewing_mode == ViewingMode.UNSET,
            RentalModel.is_active.is_(True),
            viewing_mode=mode,
        )

    async def raise_progress(self, rental_id: UUID, percent: int) -> bool:
        return await self._update(
            rental_id,
            RentalModel.watch_progress_percent < percent,
            watch_progress_percent=percent,
        )

    async def mark_watch_completed(self, rental_id: UUID, threshold: int, now: datetime) -> bool:
        return await self._update(
            rental_id,
            RentalModel.watch_completed_at.is_(None),
            RentalModel.watch_progress_percent >= threshold,
            watch_completed_at=now,
        )

    async def mark_rewind_claimed(self, rental_id: UUID, threshold: int) -> bool:
        return await self._update(
            rental_id,
            RentalModel.rewind_claimed.is_(False),
            RentalModel.is_active.is_(True),
            RentalModel.watch_progress_percent >= threshold,
            rewind_claimed=True,
        )

    async def mark_return_requested(self, rental_id: UUID) -> bool:
        return await self._update(
            rental_id,
            RentalModel.is_active.is_(True),
            return_requested=True,
        )

    async def extend(self, rental_id: UUID, new_expires_at: datetime) -> bool:
        return await self._update(
            rental_id,
            RentalModel.extension_used.is_(False),
            RentalModel.is_active.is_(True),
            expires_at=new_expires_at,
            extension_used=True,
        )

    async def deactivate(self, rental_id: UUID, returned_at: Optional[datetime] = None) -> bool:
        values = {"is_active": False, "access_token": None}
        if returned_at is not None:
            values["returned_at"] = returned_at
        deactivated = await self._update(rental_id, RentalModel.is_active.is_(True), **values)
        if deactivated:
            logger.info(f"Deactivated rental {rental_id}")
        return deactivated

    async def log_event(self, rental_id: UUID, event_type: str, payload: dict) -> None:
        """Log audit event."""
        event = RentalEventModel(rental_id=rental_id, type=event_type, payload=payload)
        self.session.add(event)
        await self.session.flush()

        logger.debug(f"Logged audit event {event_type} for rental {rental_id}")
