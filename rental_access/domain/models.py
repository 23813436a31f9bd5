"""Domain models for Rental Access Service."""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RentalTier(str, Enum):
    """Rental tier derived from the title's age."""

    RECENT = "RECENT"
    STANDARD = "STANDARD"
    CLASSIC = "CLASSIC"


class ViewingMode(str, Enum):
    """How the holder watches the rental."""

    UNSET = "UNSET"
    IN_STORE = "IN_STORE"
    TAKE_AWAY = "TAKE_AWAY"


class MediaAsset(str, Enum):
    """Media files a title may expose through an access point."""

    PRIMARY_AUDIO = "primary_audio"
    ALT_AUDIO = "alt_audio"
    SUBTITLE = "subtitle"

    @property
    def filename(self) -> str:
        """Public file name inside the access point."""
        return _ASSET_FILENAMES[self]

    @classmethod
    def from_filename(cls, filename: str) -> Optional["MediaAsset"]:
        for asset, name in _ASSET_FILENAMES.items():
            if name == filename:
                return asset
        return None


_ASSET_FILENAMES = {
    MediaAsset.PRIMARY_AUDIO: "primary.mp4",
    MediaAsset.ALT_AUDIO: "alternate.mp4",
    MediaAsset.SUBTITLE: "subtitles.vtt",
}


class MediaAssets(BaseModel):
    """Real asset locations of a title, relative to the media root."""

    primary_audio: Optional[str] = None
    alt_audio: Optional[str] = None
    subtitle: Optional[str] = None

    def present(self) -> Dict[MediaAsset, str]:
        """Assets the catalog declares as present on disk."""
        declared = {
            MediaAsset.PRIMARY_AUDIO: self.primary_audio,
            MediaAsset.ALT_AUDIO: self.alt_audio,
            MediaAsset.SUBTITLE: self.subtitle,
        }
        return {asset: path for asset, path in declared.items() if path}


class FilmInfo(BaseModel):
    """Film as seen through the catalog lookup."""

    film_id: int
    title: str
    available: bool = False
    is_new_release: bool = False
    release_year: Optional[int] = None
    assets: MediaAssets = Field(default_factory=MediaAssets)


class Rental(BaseModel):
    """Rental domain model. One row per user x film grant."""

    model_config = ConfigDict(from_attributes=True)

    rental_id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    film_id: int
    access_token: Optional[str] = None
    tier: RentalTier = RentalTier.STANDARD
    rented_at: datetime
    expires_at: datetime
    is_active: bool = True
    viewing_mode: ViewingMode = ViewingMode.UNSET
    watch_progress_percent: int = 0
    watch_completed_at: Optional[datetime] = None
    rewind_claimed: bool = False
    return_requested: bool = False
    extension_used: bool = False
    returned_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_live(self, now: datetime) -> bool:
        """Active and not yet past its deadline."""
        return self.is_active and not self.is_expired(now)


class RentalSnapshot(BaseModel):
    """Rental as returned to its holder."""

    rental_id: UUID
    user_id: UUID
    film_id: int
    tier: RentalTier
    rented_at: datetime
    expires_at: datetime
    is_active: bool
    viewing_mode: ViewingMode
    watch_progress_percent: int
    rewind_claimed: bool
    return_requested: bool
    extension_used: bool
    streaming_urls: Dict[MediaAsset, str] = Field(default_factory=dict)
    time_remaining_minutes: int = 0


class FilmRentalStatus(BaseModel):
    """Whether a film is currently rented, and by whom (from the caller's view)."""

    film_id: int
    is_rented: bool
    rented_by_current_user: bool = False
    rental: Optional[RentalSnapshot] = None


class DownloadSource(BaseModel):
    """Real file behind a take-away download."""

    path: str
    filename: str


class ReconcileReport(BaseModel):
    """Outcome of one expiry sweep."""

    processed: int = 0
    failed: int = 0


class RecoveryReport(BaseModel):
    """Outcome of the startup recovery pass."""

    refunded_debits: int = 0
    purged_access_points: int = 0


class RequestRentalRequest(BaseModel):
    """Request to rent a film."""

    film_id: int


class SetViewingModeRequest(BaseModel):
    """Request to choose the viewing mode."""

    mode: ViewingMode

    @field_validator("mode")
    @classmethod
    def mode_must_be_chosen(cls, v: ViewingMode) -> ViewingMode:
        if v == ViewingMode.UNSET:
            raise ValueError("mode must be IN_STORE or TAKE_AWAY")
        return v


class RecordProgressRequest(BaseModel):
    """Periodic watch progress ping."""

    percent: float = Field(allow_inf_nan=False)


class RewindClaimResponse(BaseModel):
    """Response after claiming the rewind reward."""

    rental: RentalSnapshot
    balance: int


class AdmissionResult(BaseModel):
    """Outcome of a rental request."""

    rental: RentalSnapshot
    created: bool


class RentalListResponse(BaseModel):
    """List of rentals."""

    rentals: List[RentalSnapshot]
