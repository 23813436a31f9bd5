"""Pytest configuration and fixtures.

Services run against SQLite in-memory and a real symlink provisioner
rooted in a temporary directory; the catalog is mocked.
"""
from pathlib import Path
from unittest.mock import AsyncMock
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rental_access.domain.models import FilmInfo, MediaAssets
from rental_access.infrastructure import models  # noqa: F401
from rental_access.infrastructure.access_points import SymlinkAccessPointProvisioner
from rental_access.infrastructure.clients import CatalogClient
from rental_access.infrastructure.database import Base
from rental_access.infrastructure.ledger import PostgresCreditLedger
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.services.admission_service import AdmissionService
from rental_access.services.expiry_reconciler import ExpiryReconciler
from rental_access.services.recovery_service import RecoveryService
from rental_access.services.rental_service import RentalService
from rental_access.utils import utcnow

from tests.helpers import BASE_URL, FILM_ID, SECRET


@pytest.fixture
async def session_factory():
    """Session factory over SQLite in-memory."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def async_session(session_factory: async_sessionmaker):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def repository(async_session: AsyncSession) -> PostgresRentalRepository:
    return PostgresRentalRepository(async_session)


@pytest.fixture
def ledger(async_session: AsyncSession) -> PostgresCreditLedger:
    return PostgresCreditLedger(async_session)


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    """Media volume with one film carrying all three assets."""
    root = tmp_path / "media"
    film_dir = root / "films" / str(FILM_ID)
    film_dir.mkdir(parents=True)
    (film_dir / "main.mp4").write_bytes(b"primary")
    (film_dir / "original.mp4").write_bytes(b"alternate")
    (film_dir / "main.vtt").write_text("WEBVTT\n")
    return root


@pytest.fixture
def provisioner(tmp_path: Path, media_root: Path) -> SymlinkAccessPointProvisioner:
    return SymlinkAccessPointProvisioner(
        root=str(tmp_path / "access"),
        media_root=str(media_root),
        base_url=BASE_URL,
        signing_secret=SECRET,
    )


@pytest.fixture
def full_assets() -> MediaAssets:
    return MediaAssets(
        primary_audio=f"films/{FILM_ID}/main.mp4",
        alt_audio=f"films/{FILM_ID}/original.mp4",
        subtitle=f"films/{FILM_ID}/main.vtt",
    )


@pytest.fixture
def primary_only_assets() -> MediaAssets:
    return MediaAssets(primary_audio=f"films/{FILM_ID}/main.mp4")


@pytest.fixture
def standard_film(primary_only_assets: MediaAssets) -> FilmInfo:
    """Available, neither new nor old enough to be a classic."""
    return FilmInfo(
        film_id=FILM_ID,
        title="Le Fabuleux Destin d'Amélie Poulain",
        available=True,
        is_new_release=False,
        release_year=utcnow().year - 5,
        assets=primary_only_assets,
    )


@pytest.fixture
def mock_catalog_client(standard_film: FilmInfo) -> AsyncMock:
    client = AsyncMock(spec=CatalogClient)
    client.get_film = AsyncMock(return_value=standard_film)
    return client


@pytest.fixture
def reconciler(
    session_factory: async_sessionmaker, provisioner: SymlinkAccessPointProvisioner
) -> ExpiryReconciler:
    return ExpiryReconciler(session_factory, provisioner)


@pytest.fixture
def admission_service(
    session_factory: async_sessionmaker,
    mock_catalog_client: AsyncMock,
    provisioner: SymlinkAccessPointProvisioner,
    reconciler: ExpiryReconciler,
) -> AdmissionService:
    return AdmissionService(
        session_factory=session_factory,
        catalog_client=mock_catalog_client,
        provisioner=provisioner,
        reconciler=reconciler,
    )


@pytest.fixture
def rental_service(
    session_factory: async_sessionmaker,
    mock_catalog_client: AsyncMock,
    provisioner: SymlinkAccessPointProvisioner,
    reconciler: ExpiryReconciler,
) -> RentalService:
    return RentalService(
        session_factory=session_factory,
        provisioner=provisioner,
        catalog_client=mock_catalog_client,
        reconciler=reconciler,
    )


@pytest.fixture
def recovery_service(
    session_factory: async_sessionmaker, provisioner: SymlinkAccessPointProvisioner
) -> RecoveryService:
    return RecoveryService(session_factory, provisioner, grace_seconds=600)


@pytest.fixture
def user_id() -> UUID:
    return UUID("550e8400-e29b-41d4-a716-446655440000")


@pytest.fixture
def other_user_id() -> UUID:
    return UUID("123e4567-e89b-12d3-a456-426614174000")
