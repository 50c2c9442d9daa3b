import hmac
import logging
from typing import Any, Optional

from fastapi import FastAPI, Depends, HTTPException, Header, Request
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config import Settings, get_settings
from db import Base, engine, get_db
from intake import DuplicateSubmission, SubmissionInvalid, submit_event
from migration import MigrationSummary, MigrationWorker, build_worker
from models import Event
from resolver import VenueSearch, venue_search_for
from schemas import (
    CandidateSlotOut,
    ImageUploadOut,
    ImageUploadRequest,
    IntakeCreated,
    MigrationCandidateOut,
    MigrationPreviewOut,
    MigrationRequest,
    MigrationResultOut,
    MigrationStatsOut,
    MigrationSummaryOut,
    SkippedSlotOut,
    SlotOutcomeOut,
)
from storage import StorageConfigError, UploadError, decode_data_url

logging.basicConfig(level=get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Event Intake API")

Base.metadata.create_all(bind=engine)


# -------------------------
# Auth: static bearer secrets, never end-user sessions
# -------------------------
def _check_bearer(authorization: Optional[str], expected: Optional[str]):
    if not expected:
        raise HTTPException(status_code=500, detail="Server API secret not configured")
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or not hmac.compare_digest(
        token.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=401,
            detail="Unauthorized - include Authorization: Bearer <token>",
        )


def require_scraper_key(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    _check_bearer(authorization, settings.scraper_secret())


def require_admin_key(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    _check_bearer(authorization, settings.admin_secret())


# -------------------------
# Collaborators
# -------------------------
def get_venue_search(settings: Settings = Depends(get_settings)) -> VenueSearch:
    return venue_search_for(settings.VENUE_SEARCH)


def get_worker(settings: Settings = Depends(get_settings)) -> MigrationWorker:
    return build_worker(settings)


def _invalid(details):
    return HTTPException(status_code=400, detail={"error": "Validation failed", "details": details})


async def _json_body(request: Request) -> Any:
    # Read after auth has passed; FastAPI body params would be parsed first
    try:
        return await request.json()
    except ValueError:
        raise _invalid([{"field": "body", "rule": "json_invalid", "message": "body must be valid JSON"}])


def _parse(model, raw) -> BaseModel:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise _invalid([
            {
                "field": ".".join(str(p) for p in err["loc"]) or "body",
                "rule": err["type"],
                "message": err["msg"],
            }
            for err in exc.errors()
        ])


@app.get("/")
def root():
    return {"ok": True, "name": "Event Intake API"}


# -------------------------
# SCRAPER: create pending event
# -------------------------
@app.post(
    "/scraper/events",
    response_model=IntakeCreated,
    status_code=201,
    dependencies=[Depends(require_scraper_key)],
)
async def create_scraped_event(
    request: Request,
    db: Session = Depends(get_db),
    search: VenueSearch = Depends(get_venue_search),
    settings: Settings = Depends(get_settings),
):
    raw = await _json_body(request)
    try:
        return await run_in_threadpool(
            submit_event, db, raw, search, settings.VENUE_MATCH_THRESHOLD, settings.DEFAULT_TIMEZONE
        )
    except SubmissionInvalid as exc:
        raise _invalid(exc.violations)
    except DuplicateSubmission as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "duplicate",
                "message": str(exc),
                "existing_event_id": exc.existing_id,
                "title": exc.title,
                "status": exc.status,
            },
        )
    except SQLAlchemyError:
        raise HTTPException(status_code=500, detail="Failed to create event")


@app.get("/scraper/events")
def scraper_docs():
    return {
        "endpoint": "/scraper/events",
        "methods": ["POST"],
        "authentication": "Bearer token (SCRAPER_API_SECRET)",
        "description": "Create events from the browser extension or external scrapers.",
        "workflow": [
            "1. POST event data here and get event_id back",
            "2. Upload images to /images/upload using that event_id, or leave raw URLs for migration",
            "3. Event appears in the review queue as pending_review",
        ],
        "required_fields": {
            "title": "string (3-200 chars)",
            "start_datetime": "string (ISO 8601, e.g. 2026-02-14T19:00:00-06:00)",
            "source_url": "string (URL of the page being scraped)",
        },
        "location_options": [
            "location_id: id of an existing venue",
            "location: { name, city, address_line?, state?, postal_code?, latitude?, longitude?, "
            "google_place_id?, venue_type? }",
        ],
        "organizer_options": [
            "organizer_id: id of an existing organizer",
            "organizer: { name, website_url?, email? }",
        ],
        "deduplication": "Deduplicated by source_url. A match returns 409 with existing_event_id.",
    }


# -------------------------
# ADMIN: media migration
# -------------------------
def _summary_out(summary: MigrationSummary) -> MigrationResultOut:
    return MigrationResultOut(
        message="Dry run complete" if summary.dry_run else "Migration complete",
        dry_run=summary.dry_run,
        summary=MigrationSummaryOut(
            total=summary.total, successful=summary.successful, failed=summary.failed
        ),
        results=[
            SlotOutcomeOut(
                event_id=o.event_id,
                title=o.title,
                slot=o.slot,
                original_url=o.original_url,
                new_url=o.new_url,
                success=o.success,
                error=o.error,
            )
            for o in summary.outcomes
        ],
        skipped=[SkippedSlotOut(**s.__dict__) for s in summary.skipped],
    )


@app.get("/admin/migrate-images", response_model=MigrationPreviewOut, dependencies=[Depends(require_admin_key)])
def preview_migration(
    db: Session = Depends(get_db),
    worker: MigrationWorker = Depends(get_worker),
):
    preview = worker.preview(db)
    return MigrationPreviewOut(
        stats=MigrationStatsOut(
            total_with_external_images=len(preview.candidates),
            by_source=preview.by_source,
            by_status=preview.by_status,
        ),
        events=[
            MigrationCandidateOut(
                id=c.id,
                title=c.title,
                slug=c.slug,
                instance_date=c.instance_date,
                source=c.source,
                status=c.status,
                slots=[CandidateSlotOut(slot=kind, url=url) for kind, url in c.slots],
            )
            for c in preview.candidates
        ],
        skipped=[SkippedSlotOut(**s.__dict__) for s in preview.skipped],
    )


@app.post("/admin/migrate-images", response_model=MigrationResultOut, dependencies=[Depends(require_admin_key)])
async def run_migration(
    request: Request,
    db: Session = Depends(get_db),
    worker: MigrationWorker = Depends(get_worker),
):
    body = _parse(MigrationRequest, await _json_body(request))
    if body.event_ids is None and not body.all:
        raise HTTPException(
            status_code=400,
            detail="Provide either { event_ids: [...] } or { all: true, limit: n }",
        )

    try:
        summary = await run_in_threadpool(
            worker.run, db, body.event_ids, body.limit, body.dry_run
        )
    except StorageConfigError as exc:
        logger.error("migration aborted: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc))
    return _summary_out(summary)


# -------------------------
# ADMIN: single image upload / re-host
# -------------------------
@app.post("/images/upload", response_model=ImageUploadOut, dependencies=[Depends(require_admin_key)])
async def upload_image(
    request: Request,
    db: Session = Depends(get_db),
    worker: MigrationWorker = Depends(get_worker),
    settings: Settings = Depends(get_settings),
):
    body = _parse(ImageUploadRequest, await _json_body(request))
    if not body.source_url and not body.base64:
        raise HTTPException(status_code=400, detail="Must provide either source_url or base64 image data")

    event = db.query(Event).filter(Event.id == body.event_id, Event.deleted_at.is_(None)).first()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")

    classifier = worker.classifier
    try:
        if body.base64:
            try:
                image = decode_data_url(body.base64, settings.DOWNLOAD_MAX_BYTES)
            except UploadError as exc:
                raise HTTPException(status_code=400, detail=str(exc))
            outcome = await run_in_threadpool(worker.store_upload, db, event, body.type, image)
        else:
            url = body.source_url.strip()
            if classifier.is_owned(url):
                return ImageUploadOut(url=url, already_hosted=True)
            if not classifier.is_valid_image(url):
                raise HTTPException(
                    status_code=400,
                    detail={
                        "error": "Invalid source URL - does not appear to be an image URL",
                        "reason": classifier.explain(url),
                        "hint": "Pass the actual image URL (e.g. from og:image), not the page URL",
                        "source_url": url,
                    },
                )
            outcome = await run_in_threadpool(worker.rehost_slot, db, event, body.type, url)
    except StorageConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    if not outcome.success:
        raise HTTPException(status_code=502, detail=outcome.error or "Failed to upload image")

    return ImageUploadOut(url=outcome.new_url, path=outcome.result.storage_path)
