"""Tests for RentalService: the post-admission state machine."""
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

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
from rental_access.domain.models import MediaAsset, MediaAssets, Rental, ViewingMode
from rental_access.infrastructure.access_points import SymlinkAccessPointProvisioner
from rental_access.infrastructure.repositories_postgres import PostgresRentalRepository
from rental_access.services.rental_service import RentalService

from tests.helpers import balance_of, event_types, fund, insert_rental, load_rental


@pytest.fixture
async def rental(
    session_factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    full_assets: MediaAssets,
    user_id: UUID,
) -> Rental:
    """Live rental with all three assets."""
    return await insert_rental(session_factory, provisioner, full_assets, user_id)


@pytest.fixture
async def expired_rental(
    session_factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    full_assets: MediaAssets,
    user_id: UUID,
) -> Rental:
    """Past its deadline, not yet swept."""
    return await insert_rental(
        session_factory, provisioner, full_assets, user_id, expires_in=timedelta(minutes=-1)
    )


# ---------- viewing mode ----------


@pytest.mark.asyncio
async def test_set_viewing_mode_is_one_shot(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    # Act
    snapshot = await rental_service.set_viewing_mode(rental.rental_id, user_id, ViewingMode.IN_STORE)
    with pytest.raises(AlreadySetException):
        await rental_service.set_viewing_mode(rental.rental_id, user_id, ViewingMode.TAKE_AWAY)

    # Assert
    assert snapshot.viewing_mode == ViewingMode.IN_STORE
    stored = await load_rental(session_factory, rental.rental_id)
    assert stored.viewing_mode == ViewingMode.IN_STORE
    assert await event_types(session_factory, rental.rental_id) == ["viewing_mode_set"]


@pytest.mark.asyncio
async def test_set_viewing_mode_by_other_user_is_forbidden(
    rental_service: RentalService,
    rental: Rental,
    other_user_id: UUID,
) -> None:
    with pytest.raises(ForbiddenException):
        await rental_service.set_viewing_mode(rental.rental_id, other_user_id, ViewingMode.IN_STORE)


@pytest.mark.asyncio
async def test_set_viewing_mode_on_expired_rental(
    rental_service: RentalService,
    expired_rental: Rental,
    user_id: UUID,
) -> None:
    with pytest.raises(NotActiveException):
        await rental_service.set_viewing_mode(expired_rental.rental_id, user_id, ViewingMode.IN_STORE)


@pytest.mark.asyncio
async def test_unknown_rental(rental_service: RentalService, user_id: UUID) -> None:
    with pytest.raises(RentalNotFoundException):
        await rental_service.set_viewing_mode(uuid4(), user_id, ViewingMode.IN_STORE)


# ---------- progress ----------


@pytest.mark.asyncio
async def test_progress_never_regresses(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    await rental_service.record_progress(rental.rental_id, user_id, 40)
    snapshot = await rental_service.record_progress(rental.rental_id, user_id, 30)

    assert snapshot.watch_progress_percent == 40
    stored = await load_rental(session_factory, rental.rental_id)
    assert stored.watch_progress_percent == 40
    assert stored.watch_completed_at is None


@pytest.mark.asyncio
async def test_progress_is_clamped_and_stamps_completion(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    snapshot = await rental_service.record_progress(rental.rental_id, user_id, 150.4)

    assert snapshot.watch_progress_percent == 100
    assert snapshot.is_active
    stored = await load_rental(session_factory, rental.rental_id)
    assert stored.watch_completed_at is not None


@pytest.mark.asyncio
async def test_progress_completion_stamp_is_kept(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    await rental_service.record_progress(rental.rental_id, user_id, 81)
    first = (await load_rental(session_factory, rental.rental_id)).watch_completed_at

    await rental_service.record_progress(rental.rental_id, user_id, 95)

    assert (await load_rental(session_factory, rental.rental_id)).watch_completed_at == first


@pytest.mark.asyncio
async def test_progress_on_expired_rental(
    rental_service: RentalService,
    expired_rental: Rental,
    user_id: UUID,
) -> None:
    with pytest.raises(NotActiveException):
        await rental_service.record_progress(expired_rental.rental_id, user_id, 50)


# ---------- rewind reward ----------


@pytest.mark.asyncio
async def test_rewind_requires_threshold(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    await rental_service.record_progress(rental.rental_id, user_id, 79)

    with pytest.raises(NotEligibleException):
        await rental_service.claim_rewind_reward(rental.rental_id, user_id)

    assert await balance_of(session_factory, user_id) == 0


@pytest.mark.asyncio
async def test_rewind_credits_exactly_once(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    # Arrange
    await fund(session_factory, user_id, 2)
    await rental_service.record_progress(rental.rental_id, user_id, 85)

    # Act
    response = await rental_service.claim_rewind_reward(rental.rental_id, user_id)
    with pytest.raises(AlreadyClaimedException):
        await rental_service.claim_rewind_reward(rental.rental_id, user_id)

    # Assert
    assert response.balance == 3
    assert response.rental.rewind_claimed
    assert await balance_of(session_factory, user_id) == 3


@pytest.mark.asyncio
async def test_rewind_concurrent_claim_credits_once(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    monkeypatch: pytest.MonkeyPatch,
    rental: Rental,
    user_id: UUID,
) -> None:
    """The second claim read the row before the first one marked it."""
    # Arrange
    await fund(session_factory, user_id, 2)
    await rental_service.record_progress(rental.rental_id, user_id, 85)
    unclaimed = await load_rental(session_factory, rental.rental_id)
    await rental_service.claim_rewind_reward(rental.rental_id, user_id)

    original = PostgresRentalRepository.get_by_id
    calls = []

    async def stale_first_read(self, rental_id):
        calls.append(rental_id)
        if len(calls) == 1:
            return unclaimed
        return await original(self, rental_id)

    monkeypatch.setattr(PostgresRentalRepository, "get_by_id", stale_first_read)

    # Act / Assert
    with pytest.raises(AlreadyClaimedException):
        await rental_service.claim_rewind_reward(rental.rental_id, user_id)

    assert await balance_of(session_factory, user_id) == 3
    assert (await event_types(session_factory, rental.rental_id)).count("rewind_claimed") == 1


@pytest.mark.asyncio
async def test_rewind_opens_account_when_missing(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    await rental_service.record_progress(rental.rental_id, user_id, 100)

    response = await rental_service.claim_rewind_reward(rental.rental_id, user_id)

    assert response.balance == 1
    assert await balance_of(session_factory, user_id) == 1


@pytest.mark.asyncio
async def test_rewind_by_other_user_is_forbidden(
    rental_service: RentalService,
    rental: Rental,
    other_user_id: UUID,
) -> None:
    with pytest.raises(ForbiddenException):
        await rental_service.claim_rewind_reward(rental.rental_id, other_user_id)


# ---------- return ----------


@pytest.mark.asyncio
async def test_request_return_keeps_rental_active(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    snapshot = await rental_service.request_return(rental.rental_id, user_id)

    assert snapshot.return_requested
    assert snapshot.is_active
    assert snapshot.streaming_urls
    assert await event_types(session_factory, rental.rental_id) == ["return_requested"]


@pytest.mark.asyncio
async def test_return_rental_tears_down_access(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    rental: Rental,
    user_id: UUID,
) -> None:
    # Act
    snapshot = await rental_service.return_rental(rental.rental_id, user_id)

    # Assert
    assert not snapshot.is_active
    assert snapshot.streaming_urls == {}
    assert snapshot.time_remaining_minutes == 0
    stored = await load_rental(session_factory, rental.rental_id)
    assert stored.access_token is None
    assert stored.returned_at is not None
    with pytest.raises(AccessPointNotFoundException):
        await provisioner.resolve(rental.access_token, MediaAsset.PRIMARY_AUDIO)
    assert await event_types(session_factory, rental.rental_id) == ["rental_returned"]

    with pytest.raises(NotActiveException):
        await rental_service.return_rental(rental.rental_id, user_id)


# ---------- extension ----------


@pytest.mark.asyncio
async def test_extend_rental_once(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    # Arrange
    await fund(session_factory, user_id, 2)

    # Act
    snapshot = await rental_service.extend_rental(rental.rental_id, user_id)
    with pytest.raises(AlreadyExtendedException):
        await rental_service.extend_rental(rental.rental_id, user_id)

    # Assert
    assert snapshot.extension_used
    assert snapshot.expires_at == rental.expires_at + timedelta(hours=48)
    assert await balance_of(session_factory, user_id) == 1


@pytest.mark.asyncio
async def test_extend_without_credits_changes_nothing(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    rental: Rental,
    user_id: UUID,
) -> None:
    with pytest.raises(InsufficientCreditsException):
        await rental_service.extend_rental(rental.rental_id, user_id)

    stored = await load_rental(session_factory, rental.rental_id)
    assert not stored.extension_used
    assert stored.expires_at == rental.expires_at


# ---------- download ----------


@pytest.mark.asyncio
async def test_download_prefers_primary_audio(
    rental_service: RentalService,
    provisioner: SymlinkAccessPointProvisioner,
    full_assets: MediaAssets,
    rental: Rental,
    user_id: UUID,
) -> None:
    source = await rental_service.get_download_source(rental.rental_id, user_id)

    assert source.path == await provisioner.resolve(rental.access_token, MediaAsset.PRIMARY_AUDIO)
    assert source.filename == "Le_Fabuleux_Destin_d_Amelie_Poulain-PRIMARY.mp4"


@pytest.mark.asyncio
async def test_download_falls_back_to_alternate_audio(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    user_id: UUID,
) -> None:
    alt_only = MediaAssets(alt_audio="films/42/original.mp4", subtitle="films/42/main.vtt")
    rental = await insert_rental(session_factory, provisioner, alt_only, user_id)

    source = await rental_service.get_download_source(rental.rental_id, user_id)

    assert source.filename.endswith("-ALT.mp4")


@pytest.mark.asyncio
async def test_download_without_video(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    user_id: UUID,
) -> None:
    subtitles_only = MediaAssets(subtitle="films/42/main.vtt")
    rental = await insert_rental(session_factory, provisioner, subtitles_only, user_id)

    with pytest.raises(NoDownloadableAssetException):
        await rental_service.get_download_source(rental.rental_id, user_id)


@pytest.mark.asyncio
async def test_download_name_when_catalog_forgot_the_film(
    rental_service: RentalService,
    mock_catalog_client: AsyncMock,
    rental: Rental,
    user_id: UUID,
) -> None:
    mock_catalog_client.get_film = AsyncMock(side_effect=FilmNotFoundException(rental.film_id))

    source = await rental_service.get_download_source(rental.rental_id, user_id)

    assert source.filename == "film-PRIMARY.mp4"


# ---------- queries ----------


@pytest.mark.asyncio
async def test_film_status_depends_on_caller(
    rental_service: RentalService,
    rental: Rental,
    user_id: UUID,
    other_user_id: UUID,
) -> None:
    own = await rental_service.get_film_rental_status(rental.film_id, user_id)
    foreign = await rental_service.get_film_rental_status(rental.film_id, other_user_id)
    anonymous = await rental_service.get_film_rental_status(rental.film_id)

    assert own.is_rented and own.rented_by_current_user
    assert own.rental.rental_id == rental.rental_id
    assert len(own.rental.streaming_urls) == 3
    assert own.rental.time_remaining_minutes > 0
    assert foreign.is_rented and not foreign.rented_by_current_user
    assert foreign.rental is None
    assert anonymous.is_rented and anonymous.rental is None


@pytest.mark.asyncio
async def test_film_status_ignores_expired_holder(
    rental_service: RentalService,
    expired_rental: Rental,
    user_id: UUID,
) -> None:
    status = await rental_service.get_film_rental_status(expired_rental.film_id, user_id)

    assert not status.is_rented


@pytest.mark.asyncio
async def test_active_list_and_history(
    rental_service: RentalService,
    session_factory: async_sessionmaker,
    provisioner: SymlinkAccessPointProvisioner,
    primary_only_assets: MediaAssets,
    rental: Rental,
    user_id: UUID,
) -> None:
    # Arrange
    await rental_service.return_rental(rental.rental_id, user_id)
    current = await insert_rental(session_factory, provisioner, primary_only_assets, user_id)

    # Act
    active = await rental_service.list_active_rentals(user_id)
    history = await rental_service.get_rental_history(user_id)

    # Assert
    assert [r.rental_id for r in active] == [current.rental_id]
    assert {r.rental_id for r in history} == {rental.rental_id, current.rental_id}
