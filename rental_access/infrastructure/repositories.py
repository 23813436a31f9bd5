"""Abstract repository interfaces."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Set
from uuid import UUID

from rental_access.domain.models import Rental, ViewingMode


class RentalRepository(ABC):
    """Abstract rental repository interface.

    Conditional mutators return False when their guard did not match, so
    callers can tell a lost race from a successful write.
    """

    @abstractmethod
    async def create(self, rental: Rental) -> Rental:
        """Insert a new rental row."""
        pass

    @abstractmethod
    async def get_by_id(self, rental_id: UUID) -> Optional[Rental]:
        """Get rental by ID."""
        pass

    @abstractmethod
    async def get_active_for_film(self, film_id: int) -> Optional[Rental]:
        """The row flagged active for a film, even if already past its deadline."""
        pass

    @abstractmethod
    async def list_active_by_user(self, user_id: UUID, now: datetime) -> List[Rental]:
        """Holder's live rentals, most recent first."""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: UUID) -> List[Rental]:
        """Full rental history of a user, most recent first."""
        pass

    @abstractmethod
    async def list_stale(self, now: datetime) -> List[Rental]:
        """Active rows whose deadline has passed."""
        pass

    @abstractmethod
    async def list_active_tokens(self) -> Set[str]:
        """Access tokens of every active row."""
        pass

    @abstractmethod
    async def set_viewing_mode(self, rental_id: UUID, mode: ViewingMode) -> bool:
        """Set the mode if still unset."""
        pass

    @abstractmethod
    async def raise_progress(self, rental_id: UUID, percent: int) -> bool:
        """Store progress if it is higher than the stored value."""
        pass

    @abstractmethod
    async def mark_watch_completed(self, rental_id: UUID, threshold: int, now: datetime) -> bool:
        """Stamp completion the first time progress reaches the threshold."""
        pass

    @abstractmethod
    async def mark_rewind_claimed(self, rental_id: UUID, threshold: int) -> bool:
        """Flip rewind_claimed if unclaimed, active and progress reached the threshold."""
        pass

    @abstractmethod
    async def mark_return_requested(self, rental_id: UUID) -> bool:
        """Flag the courtesy return request."""
        pass

    @abstractmethod
    async def extend(self, rental_id: UUID, new_expires_at: datetime) -> bool:
        """Move the deadline if the one-shot extension is unused."""
        pass

    @abstractmethod
    async def deactivate(self, rental_id: UUID, returned_at: Optional[datetime] = None) -> bool:
        """Flip is_active to false and drop the access token."""
        pass

    @abstractmethod
    async def log_event(self, rental_id: UUID, event_type: str, payload: dict) -> None:
        """Log audit event."""
        pass
