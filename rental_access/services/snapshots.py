"""Holder-facing views of a rental."""
from datetime import datetime
from typing import Optional

from rental_access.domain.models import Rental, RentalSnapshot
from rental_access.infrastructure.access_points import AccessPointProvisioner
from rental_access.utils import minutes_between, utcnow


async def build_snapshot(
    rental: Rental,
    provisioner: AccessPointProvisioner,
    now: Optional[datetime] = None,
) -> RentalSnapshot:
    """Snapshot with signed streaming URLs. Only ever returned to the holder."""
    now = now or utcnow()
    live = rental.is_live(now)

    streaming_urls = {}
    if live and rental.access_token:
        streaming_urls = await provisioner.streaming_urls(rental.access_token, rental.expires_at)

    return RentalSnapshot(
        rental_id=rental.rental_id,
        user_id=rental.user_id,
        film_id=rental.film_id,
        tier=rental.tier,
        rented_at=rental.rented_at,
        expires_at=rental.expires_at,
        is_active=rental.is_active,
        viewing_mode=rental.viewing_mode,
        watch_progress_percent=rental.watch_progress_percent,
        rewind_claimed=rental.rewind_claimed,
        return_requested=rental.return_requested,
        extension_used=rental.extension_used,
        streaming_urls=streaming_urls,
        time_remaining_minutes=minutes_between(now, rental.expires_at) if live else 0,
    )
