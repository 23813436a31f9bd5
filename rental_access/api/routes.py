"""API routes."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import Counter, Histogram
from starlette.responses import FileResponse

from rental_access.domain.exceptions import DomainException
from rental_access.domain.models import (
    FilmRentalStatus,
    RecordProgressRequest,
    RentalListResponse,
    RentalSnapshot,
    RequestRentalRequest,
    RewindClaimResponse,
    SetViewingModeRequest,
)
from rental_access.services.admission_service import AdmissionService
from rental_access.services.rental_service import RentalService

from .dependencies import (
    get_admission_service,
    get_optional_user_id,
    get_rental_service,
    get_user_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/rentals", tags=["rentals"])

# Prometheus metrics
rental_operation_counter = Counter(
    "rental_operation_total", "Rental operations by outcome", ["operation", "status"]
)
rental_admission_duration = Histogram(
    "rental_admission_duration_seconds", "Time spent admitting rentals"
)

_STATUS_BY_CODE = {
    "FILM_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "RENTAL_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ACCESS_POINT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_AVAILABLE": status.HTTP_409_CONFLICT,
    "ALREADY_RENTED": status.HTTP_409_CONFLICT,
    "NOT_ACTIVE": status.HTTP_409_CONFLICT,
    "ALREADY_SET": status.HTTP_409_CONFLICT,
    "ALREADY_CLAIMED": status.HTTP_409_CONFLICT,
    "ALREADY_EXTENDED": status.HTTP_409_CONFLICT,
    "INSUFFICIENT_CREDITS": status.HTTP_402_PAYMENT_REQUIRED,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "NOT_ELIGIBLE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NO_DOWNLOADABLE_ASSET": status.HTTP_404_NOT_FOUND,
    "PROVISION_FAILURE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "CATALOG_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "ADMISSION_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _domain_error(operation: str, e: DomainException) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(e.code, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error(f"{operation} failed: {e}")
    else:
        logger.warning(f"{operation} rejected: {e}")
    rental_operation_counter.labels(operation=operation, status=e.code.lower()).inc()
    return HTTPException(
        status_code=status_code,
        detail={"code": e.code, "message": e.message},
    )


def _internal_error(operation: str, e: Exception) -> HTTPException:
    logger.exception(f"Unexpected error in {operation}: {e}")
    rental_operation_counter.labels(operation=operation, status="internal_error").inc()
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "INTERNAL_ERROR", "message": "Internal server error"},
    )


def _success(operation: str) -> None:
    rental_operation_counter.labels(operation=operation, status="success").inc()


@router.post("", response_model=RentalSnapshot, status_code=status.HTTP_201_CREATED)
async def request_rental(
    request: RequestRentalRequest,
    response: Response,
    user_id: UUID = Depends(get_user_id),
    service: AdmissionService = Depends(get_admission_service),
) -> RentalSnapshot:
    """Rent a film. Repeating the request while the rental is live returns it again."""
    try:
        with rental_admission_duration.time():
            result = await service.admit(user_id, request.film_id)
        _success("request_rental")
    except DomainException as e:
        raise _domain_error("request_rental", e)
    except Exception as e:
        raise _internal_error("request_rental", e)

    if not result.created:
        response.status_code = status.HTTP_200_OK
    return result.rental


@router.get("", response_model=RentalListResponse)
async def list_active_rentals(
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalListResponse:
    """Caller's active rentals."""
    try:
        rentals = await service.list_active_rentals(user_id)
        return RentalListResponse(rentals=rentals)
    except Exception as e:
        raise _internal_error("list_active_rentals", e)


@router.get("/history", response_model=RentalListResponse)
async def get_rental_history(
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalListResponse:
    """Every rental of the caller, newest first."""
    try:
        rentals = await service.get_rental_history(user_id)
        return RentalListResponse(rentals=rentals)
    except Exception as e:
        raise _internal_error("get_rental_history", e)


@router.get("/films/{film_id}", response_model=FilmRentalStatus)
async def get_film_rental_status(
    film_id: int,
    user_id: Optional[UUID] = Depends(get_optional_user_id),
    service: RentalService = Depends(get_rental_service),
) -> FilmRentalStatus:
    """Whether a film is rented. Rental details only for its holder."""
    try:
        return await service.get_film_rental_status(film_id, user_id)
    except Exception as e:
        raise _internal_error("get_film_rental_status", e)


@router.patch("/{rental_id}/viewing-mode", response_model=RentalSnapshot)
async def set_viewing_mode(
    rental_id: UUID,
    request: SetViewingModeRequest,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalSnapshot:
    try:
        rental = await service.set_viewing_mode(rental_id, user_id, request.mode)
        _success("set_viewing_mode")
        return rental
    except DomainException as e:
        raise _domain_error("set_viewing_mode", e)
    except Exception as e:
        raise _internal_error("set_viewing_mode", e)


@router.patch("/{rental_id}/progress", response_model=RentalSnapshot)
async def record_progress(
    rental_id: UUID,
    request: RecordProgressRequest,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalSnapshot:
    try:
        return await service.record_progress(rental_id, user_id, request.percent)
    except DomainException as e:
        raise _domain_error("record_progress", e)
    except Exception as e:
        raise _internal_error("record_progress", e)


@router.post("/{rental_id}/rewind", response_model=RewindClaimResponse)
async def claim_rewind_reward(
    rental_id: UUID,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RewindClaimResponse:
    """Claim the one-time credit for a watched film."""
    try:
        response = await service.claim_rewind_reward(rental_id, user_id)
        _success("claim_rewind_reward")
        return response
    except DomainException as e:
        raise _domain_error("claim_rewind_reward", e)
    except Exception as e:
        raise _internal_error("claim_rewind_reward", e)


@router.post("/{rental_id}/request-return", response_model=RentalSnapshot)
async def request_return(
    rental_id: UUID,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalSnapshot:
    try:
        rental = await service.request_return(rental_id, user_id)
        _success("request_return")
        return rental
    except DomainException as e:
        raise _domain_error("request_return", e)
    except Exception as e:
        raise _internal_error("request_return", e)


@router.post("/{rental_id}/return", response_model=RentalSnapshot)
async def return_rental(
    rental_id: UUID,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalSnapshot:
    """Return early. Access ends immediately."""
    try:
        rental = await service.return_rental(rental_id, user_id)
        _success("return_rental")
        return rental
    except DomainException as e:
        raise _domain_error("return_rental", e)
    except Exception as e:
        raise _internal_error("return_rental", e)


@router.patch("/{rental_id}/extend", response_model=RentalSnapshot)
async def extend_rental(
    rental_id: UUID,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> RentalSnapshot:
    try:
        rental = await service.extend_rental(rental_id, user_id)
        _success("extend_rental")
        return rental
    except DomainException as e:
        raise _domain_error("extend_rental", e)
    except Exception as e:
        raise _internal_error("extend_rental", e)


@router.get("/{rental_id}/download")
async def download_rental(
    rental_id: UUID,
    user_id: UUID = Depends(get_user_id),
    service: RentalService = Depends(get_rental_service),
) -> FileResponse:
    """Full file for take-away viewing."""
    try:
        source = await service.get_download_source(rental_id, user_id)
        _success("download_rental")
    except DomainException as e:
        raise _domain_error("download_rental", e)
    except Exception as e:
        raise _internal_error("download_rental", e)

    return FileResponse(source.path, media_type="video/mp4", filename=source.filename)
