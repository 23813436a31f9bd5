"""Shared helpers for service tests."""
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_access.domain.models import MediaAssets, Rental, RentalTier
from rental_access.infrastructure.access_points import (
    SymlinkAccessPointProvisioner,
    new_access_token,
)
from rental_access.infrastructure.ledger import PostgresCreditLedger
from rental_access.infrastructure.models import RentalEventModel
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.utils import utcnow

FILM_ID = 42
SECRET = "test-secret"
BASE_URL = "https://stream.test"


async def fund(factory: async_sessionmaker, user_id: UUID, balance: int) -> None:
    """Open a credit account."""
    async with factory() as session, session.begin():
        await PostgresCreditLedger(session).open_account(user_id, balance)


async def balance_of(factory: async_sessionmaker, user_id: UUID) -> int:
    async with factory() as session:
        return await PostgresCreditLedger(session).get_balance(user_id)


async def load_rental(factory: async_sessionmaker, rental_id: UUID) -> Optional[Rental]:
    async with factory() as session:
        return await PostgresRentalRepository(session).get_by_id(rental_id)


async def event_types(factory: async_sessionmaker, rental_id: UUID) -> list:
    async with factory() as session:
        result = await session.execute(
            select(RentalEventModel.type)
            .where(RentalEventModel.rental_id == rental_id)
            .order_by(RentalEventModel.ts)
        )
        return list(result.scalars().all())


async def insert_rental(
    factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    assets: MediaAssets,
    user_id: UUID,
    film_id: int = FILM_ID,
    expires_in: timedelta = timedelta(hours=72),
    **fields,
) -> Rental:
    """Write an active rental with a real access point, bypassing admission."""
    now = utcnow()
    token = new_access_token()
    rental = Rental(
        user_id=user_id,
        film_id=film_id,
        access_token=token,
        tier=RentalTier.STANDARD,
        rented_at=now - timedelta(hours=1),
        expires_at=now + expires_in,
        **fields,
    )
    await provisioner.grant(token, assets, rental.expires_at)
    async with factory() as session, session.begin():
        return await PostgresRentalRepository(session).create(rental)
