from collections import namedtuple

from sqlalchemy import (
    JSON, Column, Integer, String, Text, Date, DateTime, Boolean, Float, ForeignKey,
)
from db import Base

EVENT_STATUSES = ("pending_review", "published", "rejected", "draft")
RECORD_SOURCES = ("manual", "scraper", "api", "import")

# Column names backing each media slot kind
MediaSlot = namedtuple("MediaSlot", "kind url storage_path hosted raw_url")

MEDIA_SLOTS = {
    "hero": MediaSlot("hero", "image_url", "image_storage_path", "image_hosted", "raw_image_url"),
    "thumbnail": MediaSlot(
        "thumbnail", "thumbnail_url", "thumbnail_storage_path", "thumbnail_hosted", "raw_thumbnail_url"
    ),
    "flyer": MediaSlot("flyer", "flyer_url", "flyer_storage_path", "flyer_hosted", "raw_flyer_url"),
}


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)

    address_line = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    country = Column(String, nullable=False, default="US")

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    google_place_id = Column(String, nullable=True, index=True)

    venue_type = Column(String, nullable=False, default="venue")
    source = Column(String, nullable=False, default="manual")  # manual|scraper|api|import
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Organizer(Base):
    __tablename__ = "organizers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    website_url = Column(String, nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)

    title = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    short_description = Column(String(160), nullable=True)
    happenlist_summary = Column(Text, nullable=True)
    organizer_description = Column(Text, nullable=True)

    start_datetime = Column(DateTime(timezone=True), nullable=False)
    end_datetime = Column(DateTime(timezone=True), nullable=True)
    instance_date = Column(Date, nullable=False, index=True)
    is_all_day = Column(Boolean, nullable=False, default=False)
    timezone = Column(String, nullable=False, default="America/Chicago")

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    organizer_id = Column(Integer, ForeignKey("organizers.id"), nullable=True)

    # Pricing
    price_type = Column(String, nullable=False, default="free")
    price_low = Column(Float, nullable=True)
    price_high = Column(Float, nullable=True)
    price_details = Column(Text, nullable=True)
    ticket_url = Column(String, nullable=True)

    # Links
    website_url = Column(String, nullable=True)
    instagram_url = Column(String, nullable=True)
    facebook_url = Column(String, nullable=True)
    registration_url = Column(String, nullable=True)

    # Audience
    age_low = Column(Integer, nullable=True)
    age_high = Column(Integer, nullable=True)
    age_restriction = Column(String, nullable=True)
    is_family_friendly = Column(Boolean, nullable=True)
    good_for = Column(JSON, nullable=False, default=list)

    # Media slots: hosted is only ever set by the migration worker
    image_url = Column(String, nullable=True)
    image_storage_path = Column(String, nullable=True)
    image_hosted = Column(Boolean, nullable=False, default=False)
    raw_image_url = Column(String, nullable=True)

    thumbnail_url = Column(String, nullable=True)
    thumbnail_storage_path = Column(String, nullable=True)
    thumbnail_hosted = Column(Boolean, nullable=False, default=False)
    raw_thumbnail_url = Column(String, nullable=True)

    flyer_url = Column(String, nullable=True)
    flyer_storage_path = Column(String, nullable=True)
    flyer_hosted = Column(Boolean, nullable=False, default=False)
    raw_flyer_url = Column(String, nullable=True)

    # Workflow + provenance
    status = Column(String, nullable=False, default="draft")  # pending_review|published|rejected|draft
    source = Column(String, nullable=False, default="manual")  # manual|scraper|api|import
    # Not unique: intake dedupes with a check-then-insert, see intake.submit_event
    source_url = Column(String, nullable=True, index=True)
    scraped_at = Column(DateTime(timezone=True), nullable=True)
    scraped_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
