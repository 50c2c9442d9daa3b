"""Intake of collector-submitted events.

A submission is validated in full, checked against existing events by source
URL, has its related entities resolved, and is stored as ``pending_review``.

The duplicate check and the insert are separate statements with no lock in
between: two simultaneous submissions of the same source URL can both be
stored. Intake volume is low and operators merge the rare duplicate by hand.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Event
from resolver import (
    DEFAULT_MATCH_THRESHOLD,
    VenueSearch,
    resolve_category,
    resolve_location,
    resolve_organizer,
)
from schemas import EventSubmission, IntakeCreated
from slugs import available_slug

logger = logging.getLogger(__name__)

SHORT_DESCRIPTION_MAX = 160


def utcnow():
    return datetime.now(timezone.utc)


class SubmissionInvalid(Exception):
    def __init__(self, violations: List[Dict[str, str]]):
        super().__init__("; ".join(v["message"] for v in violations))
        self.violations = violations


class DuplicateSubmission(Exception):
    def __init__(self, existing: Event):
        super().__init__(f'Event already exists: "{existing.title}" ({existing.status})')
        self.existing_id = existing.id
        self.title = existing.title
        self.status = existing.status


def _violations(exc: ValidationError) -> List[Dict[str, str]]:
    out = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "body"
        if err["type"] == "missing":
            message = f"{field} is required"
        else:
            message = f"{field}: {err['msg']}"
        out.append({"field": field, "rule": err["type"], "message": message})
    return out


def parse_submission(raw: Any) -> EventSubmission:
    """Validate a raw JSON body, reporting every violated rule at once."""
    try:
        return EventSubmission.model_validate(raw)
    except ValidationError as exc:
        raise SubmissionInvalid(_violations(exc)) from exc


def find_duplicate(db: Session, source_url: str) -> Optional[Event]:
    return (
        db.query(Event)
        .filter(Event.source_url == source_url, Event.deleted_at.is_(None))
        .order_by(Event.id.asc())
        .first()
    )


def submit_event(
    db: Session,
    raw: Any,
    search: VenueSearch,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    default_timezone: str = "America/Chicago",
) -> IntakeCreated:
    payload = parse_submission(raw)

    existing = find_duplicate(db, payload.source_url)
    if existing:
        logger.info("duplicate submission for %s -> event %s", payload.source_url, existing.id)
        raise DuplicateSubmission(existing)

    category_id = resolve_category(db, payload.category_id, payload.category_slug)

    location_id = payload.location_id
    if not location_id and payload.location:
        location_id = resolve_location(db, payload.location, search, threshold)

    organizer_id = payload.organizer_id
    if not organizer_id and payload.organizer:
        organizer_id = resolve_organizer(db, payload.organizer)

    short_description = payload.short_description
    if short_description:
        short_description = short_description[:SHORT_DESCRIPTION_MAX]

    now = utcnow()
    event = Event(
        title=payload.title,
        slug=available_slug(db, Event, payload.title, "event"),
        description=payload.description,
        short_description=short_description,
        happenlist_summary=payload.happenlist_summary,
        organizer_description=payload.organizer_description,
        start_datetime=payload.start_datetime,
        end_datetime=payload.end_datetime,
        instance_date=payload.instance_date or payload.start_datetime.date(),
        is_all_day=payload.is_all_day,
        timezone=payload.timezone or default_timezone,
        category_id=category_id,
        location_id=location_id,
        organizer_id=organizer_id,
        price_type=payload.price_type,
        price_low=payload.price_low,
        price_high=payload.price_high,
        price_details=payload.price_details,
        ticket_url=payload.ticket_url,
        website_url=payload.website_url,
        instagram_url=payload.instagram_url,
        facebook_url=payload.facebook_url,
        registration_url=payload.registration_url,
        image_url=payload.image_url,
        image_hosted=False,
        thumbnail_url=payload.thumbnail_url,
        thumbnail_hosted=False,
        flyer_url=payload.flyer_url,
        flyer_hosted=False,
        age_low=payload.age_low,
        age_high=payload.age_high,
        age_restriction=payload.age_restriction,
        is_family_friendly=payload.is_family_friendly,
        good_for=payload.good_for or [],
        status="pending_review",  # always reviewed before publishing
        source="scraper",
        source_url=payload.source_url,
        scraped_at=now,
        scraped_data=payload.scraped_data if payload.scraped_data is not None else raw,
        created_at=now,
        updated_at=now,
    )

    db.add(event)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("insert failed for %s", payload.source_url)
        raise
    db.refresh(event)

    logger.info('created "%s" (%s) from %s', event.title, event.id, event.source_url)
    return IntakeCreated(
        event_id=event.id,
        slug=event.slug,
        status=event.status,
        location_id=location_id,
        organizer_id=organizer_id,
        category_id=category_id,
    )
