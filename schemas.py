from typing import Optional, List, Literal, Dict, Any
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator, ValidationInfo

EventStatus = Literal["pending_review", "published", "rejected", "draft"]
PriceType = Literal["free", "fixed", "range", "varies", "donation", "per_session"]
SlotKind = Literal["hero", "thumbnail", "flyer"]

PRICE_TYPES = ("free", "fixed", "range", "varies", "donation", "per_session")

GOOD_FOR_TAGS = (
    "date_night", "families_young_kids", "families_older_kids", "pet_friendly",
    "foodies", "girls_night", "guys_night", "solo_friendly", "outdoorsy",
    "creatives", "music_lovers", "active_seniors", "college_crowd", "first_timers",
)


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class LocationInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=120)
    address_line: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    google_place_id: Optional[str] = None
    venue_type: Optional[str] = None

    @field_validator("name", "city", mode="before")
    @classmethod
    def strip_required(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("address_line", "state", "postal_code", "google_place_id", "venue_type", mode="before")
    @classmethod
    def blank_optional(cls, v):
        return _blank_to_none(v)


class OrganizerInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    website_url: Optional[str] = None
    email: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("website_url", "email", mode="before")
    @classmethod
    def blank_optional(cls, v):
        return _blank_to_none(v)


class EventSubmission(BaseModel):
    """One event as sent by the external collector.

    Every optional field may be omitted or null. Values the collector gets
    wrong but that are only informational (price type, audience tags) are
    normalized instead of rejected.
    """

    # Required
    title: str = Field(..., min_length=3, max_length=200)
    start_datetime: datetime
    source_url: str = Field(..., min_length=1)

    end_datetime: Optional[datetime] = None
    instance_date: Optional[date] = None
    is_all_day: bool = False
    timezone: Optional[str] = None

    description: Optional[str] = None
    short_description: Optional[str] = None
    happenlist_summary: Optional[str] = None
    organizer_description: Optional[str] = None

    # Pricing
    price_type: PriceType = "free"
    price_low: Optional[float] = None
    price_high: Optional[float] = None
    price_details: Optional[str] = None
    ticket_url: Optional[str] = None

    # Category: id wins over slug
    category_id: Optional[int] = None
    category_slug: Optional[str] = None

    # Links
    website_url: Optional[str] = None
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    registration_url: Optional[str] = None

    # Media (unverified; hosted later by the migration worker)
    image_url: Optional[str] = None
    flyer_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    # Either an existing id or data to match/create
    location_id: Optional[int] = None
    location: Optional[LocationInput] = None
    organizer_id: Optional[int] = None
    organizer: Optional[OrganizerInput] = None

    # Audience
    age_low: Optional[int] = Field(None, ge=0)
    age_high: Optional[int] = Field(None, ge=0)
    age_restriction: Optional[str] = None
    is_family_friendly: Optional[bool] = None
    good_for: Optional[List[str]] = None

    scraped_data: Optional[Dict[str, Any]] = None

    @field_validator("title", "source_url", mode="before")
    @classmethod
    def strip_required(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator(
        "timezone", "description", "short_description", "happenlist_summary",
        "organizer_description", "price_details", "ticket_url", "category_slug",
        "website_url", "instagram_url", "facebook_url", "registration_url",
        "image_url", "flyer_url", "thumbnail_url", "age_restriction",
        mode="before",
    )
    @classmethod
    def blank_optional(cls, v):
        return _blank_to_none(v)

    @field_validator("price_type", mode="before")
    @classmethod
    def fallback_price_type(cls, v):
        # Pricing is informational; anything unrecognized becomes the safe default
        return v if v in PRICE_TYPES else "free"

    @field_validator("end_datetime")
    @classmethod
    def end_not_before_start(cls, v, info: ValidationInfo):
        start = info.data.get("start_datetime")
        if v is not None and start is not None:
            try:
                before = v < start
            except TypeError:
                # naive vs aware: compare wall-clock values
                before = v.replace(tzinfo=None) < start.replace(tzinfo=None)
            if before:
                raise ValueError("end_datetime cannot be before start_datetime")
        return v

    @field_validator("good_for", mode="before")
    @classmethod
    def known_good_for(cls, v):
        if v is None:
            return None
        if isinstance(v, list):
            return [tag for tag in v if tag in GOOD_FOR_TAGS]
        return v


class IntakeCreated(BaseModel):
    success: bool = True
    event_id: int
    slug: str
    status: EventStatus
    location_id: Optional[int] = None
    organizer_id: Optional[int] = None
    category_id: Optional[int] = None
    message: str = "Event created and queued for admin review."


# -------------------------
# Media migration
# -------------------------
class MigrationRequest(BaseModel):
    event_ids: Optional[List[int]] = None
    all: bool = False
    limit: Optional[int] = Field(None, ge=1, le=500)
    dry_run: bool = False


class SlotOutcomeOut(BaseModel):
    event_id: int
    title: str
    slot: SlotKind
    original_url: str
    new_url: Optional[str] = None
    success: bool
    error: Optional[str] = None


class SkippedSlotOut(BaseModel):
    event_id: int
    slot: SlotKind
    url: str
    reason: str


class MigrationSummaryOut(BaseModel):
    total: int
    successful: int
    failed: int


class MigrationResultOut(BaseModel):
    message: str
    dry_run: bool
    summary: MigrationSummaryOut
    results: List[SlotOutcomeOut]
    skipped: List[SkippedSlotOut] = Field(default_factory=list)


class CandidateSlotOut(BaseModel):
    slot: SlotKind
    url: str


class MigrationCandidateOut(BaseModel):
    id: int
    title: str
    slug: str
    instance_date: Optional[date] = None
    source: str
    status: str
    slots: List[CandidateSlotOut]


class MigrationStatsOut(BaseModel):
    total_with_external_images: int
    by_source: Dict[str, int]
    by_status: Dict[str, int]


class MigrationPreviewOut(BaseModel):
    message: str = "Events with external images"
    stats: MigrationStatsOut
    events: List[MigrationCandidateOut]
    skipped: List[SkippedSlotOut] = Field(default_factory=list)


class ImageUploadRequest(BaseModel):
    event_id: int
    type: SlotKind = "hero"
    source_url: Optional[str] = None
    base64: Optional[str] = None


class ImageUploadOut(BaseModel):
    success: bool = True
    url: str
    path: Optional[str] = None
    already_hosted: bool = False
