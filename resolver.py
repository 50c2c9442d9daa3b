"""Entity resolution for intake.

Maps the partial location / organizer / category data a collector sends onto
canonical catalog rows, creating locations and organizers when nothing
matches. Categories are only ever looked up.

Location matching runs in priority order:

1. exact external place id (google_place_id)
2. name similarity via a VenueSearch capability, accepted at score >= threshold
3. create a new scraper-sourced location

Creation failures are not fatal to the submission: the resolver logs, rolls
back and returns None so the event is stored with the relation unset.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Category, Location, Organizer
from schemas import LocationInput, OrganizerInput
from slugs import available_slug

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.70


def utcnow():
    return datetime.now(timezone.utc)


# -------------------------
# Venue similarity search
# -------------------------
class VenueSearchUnsupported(Exception):
    """The similarity search capability is not available in this environment."""


@dataclass(frozen=True)
class VenueMatch:
    id: int
    name: str
    similarity_score: float


class VenueSearch:
    """Similarity search over active locations.

    Returns matches best-first. An empty list means "no match"; raising
    VenueSearchUnsupported means the search could not run at all.
    """

    def search(self, db: Session, name: str, limit: int = 3) -> List[VenueMatch]:
        raise NotImplementedError


class NoVenueSearch(VenueSearch):
    def search(self, db, name, limit=3):
        raise VenueSearchUnsupported("venue similarity search disabled")


class TrigramVenueSearch(VenueSearch):
    """pg_trgm similarity() on PostgreSQL.

    Other databases have no trigram operator; there the in-process
    SequenceMatcher search runs instead. A PostgreSQL database without the
    pg_trgm extension is reported as unsupported.
    """

    def __init__(self, fallback: Optional[VenueSearch] = None):
        self.fallback = fallback or SequenceMatcherVenueSearch()

    def search(self, db, name, limit=3):
        bind = db.get_bind()
        if bind.dialect.name != "postgresql":
            return self.fallback.search(db, name, limit=limit)

        score = func.similarity(Location.name, name).label("score")
        try:
            rows = (
                db.query(Location.id, Location.name, score)
                .filter(Location.is_active.is_(True))
                .order_by(score.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            # pg_trgm not installed
            db.rollback()
            raise VenueSearchUnsupported(str(exc)) from exc
        return [VenueMatch(r.id, r.name, float(r.score or 0.0)) for r in rows]


class SequenceMatcherVenueSearch(VenueSearch):
    """In-process ratio over normalized names; works on any database."""

    def search(self, db, name, limit=3):
        target = _normalize_name(name)
        if not target:
            return []
        scored = []
        for loc_id, loc_name in db.query(Location.id, Location.name).filter(Location.is_active.is_(True)):
            ratio = SequenceMatcher(None, target, _normalize_name(loc_name)).ratio()
            scored.append(VenueMatch(loc_id, loc_name, ratio))
        scored.sort(key=lambda m: m.similarity_score, reverse=True)
        return scored[:limit]


def _normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").lower().split())


def venue_search_for(kind: str) -> VenueSearch:
    if kind == "trigram":
        return TrigramVenueSearch()
    if kind == "sequence":
        return SequenceMatcherVenueSearch()
    return NoVenueSearch()


# -------------------------
# Resolvers
# -------------------------
def resolve_location(
    db: Session,
    loc: LocationInput,
    search: VenueSearch,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> Optional[int]:
    if loc.google_place_id:
        match = (
            db.query(Location.id)
            .filter(Location.google_place_id == loc.google_place_id)
            .first()
        )
        if match:
            logger.info("location matched by google_place_id %s -> %s", loc.google_place_id, match.id)
            return match.id

    try:
        matches = search.search(db, loc.name, limit=3)
    except VenueSearchUnsupported as exc:
        logger.info("venue similarity search unavailable: %s", exc)
        matches = []

    if matches and matches[0].similarity_score >= threshold:
        top = matches[0]
        logger.info(
            "location fuzzy matched %r -> %r (score %.2f)", loc.name, top.name, top.similarity_score
        )
        return top.id

    now = utcnow()
    try:
        location = Location(
            name=loc.name,
            slug=available_slug(db, Location, loc.name, "venue"),
            address_line=loc.address_line,
            city=loc.city,
            state=loc.state,
            postal_code=loc.postal_code,
            country="US",
            latitude=loc.latitude,
            longitude=loc.longitude,
            google_place_id=loc.google_place_id,
            venue_type=loc.venue_type or "venue",
            source="scraper",
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(location)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("failed to create location %r: %s", loc.name, exc)
        return None

    logger.info("location created %r (%s)", loc.name, location.id)
    return location.id


def resolve_organizer(db: Session, org: OrganizerInput) -> Optional[int]:
    match = (
        db.query(Organizer.id)
        .filter(func.lower(Organizer.name) == func.lower(org.name))
        .order_by(Organizer.id.asc())
        .first()
    )
    if match:
        logger.info("organizer matched %r -> %s", org.name, match.id)
        return match.id

    now = utcnow()
    try:
        organizer = Organizer(
            name=org.name,
            slug=available_slug(db, Organizer, org.name, "organizer"),
            website_url=org.website_url,
            email=org.email,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(organizer)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("failed to create organizer %r: %s", org.name, exc)
        return None

    logger.info("organizer created %r (%s)", org.name, organizer.id)
    return organizer.id


def resolve_category(
    db: Session,
    category_id: Optional[int] = None,
    category_slug: Optional[str] = None,
) -> Optional[int]:
    if category_id:
        return category_id
    if not category_slug:
        return None
    cat = (
        db.query(Category.id)
        .filter(Category.slug == category_slug, Category.is_active.is_(True))
        .first()
    )
    return cat.id if cat else None
