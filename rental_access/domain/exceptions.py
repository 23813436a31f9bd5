"""Domain exceptions for Rental Access Service."""


class DomainException(Exception):
    """Base domain exception."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class FilmNotFoundException(DomainException):
    """Film unknown to the catalog."""

    def __init__(self, film_id: int) -> None:
        super().__init__(
            message=f"Film {film_id} not found",
            code="FILM_NOT_FOUND",
        )


class NotAvailableException(DomainException):
    """Title not currently offerable."""

    def __init__(self, film_id: int) -> None:
        super().__init__(
            message=f"Film {film_id} is not available for rent",
            code="NOT_AVAILABLE",
        )


class AlreadyRentedException(DomainException):
    """Another user holds the film."""

    def __init__(self, film_id: int) -> None:
        super().__init__(
            message=f"Film {film_id} is already rented by another member",
            code="ALREADY_RENTED",
        )


class InsufficientCreditsException(DomainException):
    """Balance lower than the required cost."""

    def __init__(self, user_id: str, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            message=f"Insufficient credits for user {user_id}: {required} required, {available} available",
            code="INSUFFICIENT_CREDITS",
        )


class RentalNotFoundException(DomainException):
    """Rental not found."""

    def __init__(self, rental_id: str) -> None:
        super().__init__(
            message=f"Rental {rental_id} not found",
            code="RENTAL_NOT_FOUND",
        )


class ForbiddenException(DomainException):
    """Caller isn't the holder of the rental."""

    def __init__(self, rental_id: str, user_id: str) -> None:
        super().__init__(
            message=f"User {user_id} is not the holder of rental {rental_id}",
            code="FORBIDDEN",
        )


class NotActiveException(DomainException):
    """Operating on an expired or revoked rental."""

    def __init__(self, rental_id: str) -> None:
        super().__init__(
            message=f"Rental {rental_id} is no longer active",
            code="NOT_ACTIVE",
        )


class AlreadySetException(DomainException):
    """Viewing mode already chosen."""

    def __init__(self, rental_id: str) -> None:
        super().__init__(
            message=f"Viewing mode of rental {rental_id} is already set",
            code="ALREADY_SET",
        )


class AlreadyClaimedException(DomainException):
    """Rewind reward already granted."""

    def __init__(self, rental_id: str) -> None:
        super().__init__(
            message=f"Rewind reward of rental {rental_id} already claimed",
            code="ALREADY_CLAIMED",
        )


class NotEligibleException(DomainException):
    """Rewind criterion unmet."""

    def __init__(self, rental_id: str, threshold: int) -> None:
        super().__init__(
            message=f"Rental {rental_id} must be watched to {threshold}% before claiming the rewind reward",
            code="NOT_ELIGIBLE",
        )


class AlreadyExtendedException(DomainException):
    """Extension is one-shot."""

    def __init__(self, rental_id: str) -> None:
        super().__init__(
            message=f"Rental {rental_id} was already extended",
            code="ALREADY_EXTENDED",
        )


class NoDownloadableAssetException(DomainException):
    """No video file reachable for a take-away download."""

    def __init__(self, rental_id: str) -> None:
        super().__init__(
            message=f"No video file available for rental {rental_id}",
            code="NO_DOWNLOADABLE_ASSET",
        )


class ProvisionFailureException(DomainException):
    """Underlying asset missing or access point creation failed."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            message=f"Access point provisioning failed: {reason}",
            code="PROVISION_FAILURE",
        )


class AccessPointNotFoundException(DomainException):
    """Unknown, revoked or never issued token. Deliberately carries no detail."""

    def __init__(self) -> None:
        super().__init__(
            message="Not found",
            code="ACCESS_POINT_NOT_FOUND",
        )


class CatalogUnavailableException(DomainException):
    """Catalog lookup unreachable."""

    def __init__(self) -> None:
        super().__init__(
            message="Catalog service is unavailable",
            code="CATALOG_UNAVAILABLE",
        )


class AdmissionFailedException(DomainException):
    """Admission could not complete; nothing was debited or granted."""

    def __init__(self, user_id: str, film_id: int) -> None:
        super().__init__(
            message=f"Rental of film {film_id} for user {user_id} failed, please retry",
            code="ADMISSION_FAILED",
        )
