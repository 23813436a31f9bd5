"""Rental tier rules: cost and duration as pure functions of the tier."""
from datetime import date, timedelta
from typing import Optional

from rental_access.config import settings
from rental_access.domain.models import FilmInfo, RentalTier


def tier_for_film(film: FilmInfo, today: Optional[date] = None) -> RentalTier:
    """Classify a film. New releases are RECENT, old enough titles CLASSIC."""
    if film.is_new_release:
        return RentalTier.RECENT
    today = today or date.today()
    if film.release_year and today.year - film.release_year >= settings.classic_age_years:
        return RentalTier.CLASSIC
    return RentalTier.STANDARD


def rental_cost(tier: RentalTier) -> int:
    return {
        RentalTier.RECENT: settings.cost_recent,
        RentalTier.STANDARD: settings.cost_standard,
        RentalTier.CLASSIC: settings.cost_classic,
    }[tier]


def rental_duration(tier: RentalTier) -> timedelta:
    hours = {
        RentalTier.RECENT: settings.duration_recent_hours,
        RentalTier.STANDARD: settings.duration_standard_hours,
        RentalTier.CLASSIC: settings.duration_classic_hours,
    }[tier]
    return timedelta(hours=hours)
