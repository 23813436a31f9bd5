"""API dependencies with dependency injection."""
from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException

from rental_access.infrastructure.access_points import SymlinkAccessPointProvisioner
from rental_access.infrastructure.clients import CatalogClient
from rental_access.infrastructure.database import get_session_factory
from rental_access.services.admission_service import AdmissionService
from rental_access.services.expiry_reconciler import ExpiryReconciler
from rental_access.services.recovery_service import RecoveryService
from rental_access.services.rental_service import RentalService

# Singleton instances
_catalog_client: Optional[CatalogClient] = None
_provisioner: Optional[SymlinkAccessPointProvisioner] = None
_reconciler: Optional[ExpiryReconciler] = None


def get_catalog_client() -> CatalogClient:
    """Get CatalogClient singleton."""
    global _catalog_client
    if _catalog_client is None:
        _catalog_client = CatalogClient()
    return _catalog_client


def get_provisioner() -> SymlinkAccessPointProvisioner:
    """Get access point provisioner singleton."""
    global _provisioner
    if _provisioner is None:
        _provisioner = SymlinkAccessPointProvisioner()
    return _provisioner


def get_reconciler() -> ExpiryReconciler:
    """Get ExpiryReconciler singleton."""
    global _reconciler
    if _reconciler is None:
        _reconciler = ExpiryReconciler(get_session_factory(), get_provisioner())
    return _reconciler


def get_recovery_service() -> RecoveryService:
    return RecoveryService(get_session_factory(), get_provisioner())


def get_admission_service() -> AdmissionService:
    """Get AdmissionService with dependencies."""
    return AdmissionService(
        session_factory=get_session_factory(),
        catalog_client=get_catalog_client(),
        provisioner=get_provisioner(),
        reconciler=get_reconciler(),
    )


def get_rental_service() -> RentalService:
    """Get RentalService with dependencies."""
    return RentalService(
        session_factory=get_session_factory(),
        provisioner=get_provisioner(),
        catalog_client=get_catalog_client(),
        reconciler=get_reconciler(),
    )


async def close_clients() -> None:
    global _catalog_client
    if _catalog_client is not None:
        await _catalog_client.close()
        _catalog_client = None


def get_user_id(authorization: str = Header(None)) -> UUID:
    if not authorization:
        raise HTTPException(
            status_code=401, detail="Missing Authorization header"
        )

    try:
        return UUID(authorization)
    except ValueError:
        raise HTTPException(
            status_code=401, detail="Invalid Authorization header"
        )


def get_optional_user_id(authorization: str = Header(None)) -> Optional[UUID]:
    """Anonymous callers may read film status."""
    if not authorization:
        return None
    return get_user_id(authorization)
