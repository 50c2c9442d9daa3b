"""Migration of externally hosted event media into owned storage.

A media slot is eligible when it has a URL, is not flagged hosted, is not
already inside the owned namespace and classifies as a real image of a type
the bucket accepts. Each eligible slot is downloaded, uploaded under
``events/{id}/{slot}_...`` and then switched over in a single commit: url,
storage path, hosted flag and the raw original URL change together or not at
all. The switch re-reads the row first and fails the slot if its URL changed
or it was hosted meanwhile. A failed slot keeps ``hosted = False`` so the next
run picks it up again.

Transfers touch only the network and the bucket, so events fan out over a
small thread pool; row updates stay on the calling thread's session.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from image_urls import IMAGE_EXTENSIONS, ImageUrlKind, UrlClassifier
from models import MEDIA_SLOTS, Event
from storage import (
    DownloadedImage,
    DownloadError,
    HOSTABLE_EXTENSIONS,
    ImageDownloader,
    LocalBucketStorage,
    UploadError,
    image_path,
)

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def _hostable(url: str) -> bool:
    """False for URLs whose extension names an image type the bucket refuses."""
    path = urlsplit(url.strip()).path.lower()
    return not path.endswith(IMAGE_EXTENSIONS) or path.endswith(HOSTABLE_EXTENSIONS)


# -------------------------
# Per-slot results
# -------------------------
@dataclass(frozen=True)
class SlotSuccess:
    new_url: str
    storage_path: str


@dataclass(frozen=True)
class SlotFailure:
    reason: str


@dataclass(frozen=True)
class SlotPlanned:
    """Dry run: the slot would be migrated."""


SlotResult = Union[SlotSuccess, SlotFailure, SlotPlanned]


@dataclass(frozen=True)
class SlotOutcome:
    event_id: int
    title: str
    slot: str
    original_url: str
    result: SlotResult

    @property
    def success(self) -> bool:
        return not isinstance(self.result, SlotFailure)

    @property
    def new_url(self) -> Optional[str]:
        return self.result.new_url if isinstance(self.result, SlotSuccess) else None

    @property
    def error(self) -> Optional[str]:
        return self.result.reason if isinstance(self.result, SlotFailure) else None


@dataclass(frozen=True)
class SkippedSlot:
    event_id: int
    slot: str
    url: str
    reason: str


@dataclass
class MigrationSummary:
    dry_run: bool
    outcomes: List[SlotOutcome] = field(default_factory=list)
    skipped: List[SkippedSlot] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


@dataclass(frozen=True)
class Candidate:
    id: int
    title: str
    slug: str
    instance_date: Optional[date]
    source: str
    status: str
    slots: List[Tuple[str, str]]


@dataclass
class MigrationPreview:
    candidates: List[Candidate]
    by_source: Dict[str, int]
    by_status: Dict[str, int]
    skipped: List[SkippedSlot]


# -------------------------
# Worker
# -------------------------
class MigrationWorker:
    def __init__(
        self,
        classifier: UrlClassifier,
        storage: LocalBucketStorage,
        downloader: ImageDownloader,
        concurrency: int = 4,
        default_limit: int = 10,
    ):
        self.classifier = classifier
        self.storage = storage
        self.downloader = downloader
        self.concurrency = max(1, concurrency)
        self.default_limit = default_limit

    # -- selection --------------------------------------------------------
    def split_slots(self, event: Event) -> Tuple[List[Tuple[str, str]], List[SkippedSlot]]:
        """(eligible (slot, url) pairs, unhosted slots skipped with a reason)."""
        eligible, skipped = [], []
        for slot in MEDIA_SLOTS.values():
            url = getattr(event, slot.url)
            if not url or getattr(event, slot.hosted):
                continue
            if self.classifier.is_owned(url):
                continue
            if self.classifier.classify(url) is not ImageUrlKind.VALID_IMAGE:
                skipped.append(SkippedSlot(event.id, slot.kind, url, self.classifier.explain(url)))
            elif not _hostable(url):
                skipped.append(SkippedSlot(event.id, slot.kind, url, "Image type cannot be re-hosted"))
            else:
                eligible.append((slot.kind, url))
        return eligible, skipped

    def _unhosted_query(self, db: Session):
        unhosted = or_(*[
            and_(
                getattr(Event, slot.url).isnot(None),
                or_(getattr(Event, slot.hosted).is_(False), getattr(Event, slot.hosted).is_(None)),
            )
            for slot in MEDIA_SLOTS.values()
        ])
        return db.query(Event).filter(Event.deleted_at.is_(None), unhosted)

    def preview(self, db: Session) -> MigrationPreview:
        """Eligible events and counts; no network or storage access."""
        candidates, skipped = [], []
        by_source, by_status = Counter(), Counter()
        for event in self._unhosted_query(db).order_by(Event.created_at.desc(), Event.id.desc()):
            eligible, not_images = self.split_slots(event)
            skipped.extend(not_images)
            if not eligible:
                continue
            candidates.append(Candidate(
                id=event.id,
                title=event.title,
                slug=event.slug,
                instance_date=event.instance_date,
                source=event.source or "unknown",
                status=event.status or "unknown",
                slots=eligible,
            ))
            by_source[event.source or "unknown"] += 1
            by_status[event.status or "unknown"] += 1
        return MigrationPreview(candidates, dict(by_source), dict(by_status), skipped)

    # -- execution --------------------------------------------------------
    def run(
        self,
        db: Session,
        event_ids: Optional[Sequence[int]] = None,
        limit: Optional[int] = None,
        dry_run: bool = False,
    ) -> MigrationSummary:
        """Migrate the given events, or all eligible events up to `limit`.

        Raises StorageConfigError before any transfer if the bucket is unusable.
        """
        if event_ids is not None:
            events = (
                db.query(Event)
                .filter(Event.id.in_(list(event_ids)), Event.deleted_at.is_(None))
                .order_by(Event.id.asc())
                .all()
            )
        else:
            events = self._unhosted_query(db).order_by(Event.id.asc()).all()

        summary = MigrationSummary(dry_run=dry_run)
        jobs = []
        for event in events:
            eligible, skipped = self.split_slots(event)
            summary.skipped.extend(skipped)
            if eligible:
                jobs.append((event.id, event.title, eligible))
        if event_ids is None:
            jobs = jobs[: limit or self.default_limit]

        if dry_run:
            for event_id, title, slots in jobs:
                for kind, url in slots:
                    summary.outcomes.append(SlotOutcome(event_id, title, kind, url, SlotPlanned()))
            return summary

        if not jobs:
            return summary

        self.storage.check_ready()

        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(jobs))) as pool:
            transferred = list(pool.map(self._transfer_event, jobs))

        for (event_id, title, _slots), results in zip(jobs, transferred):
            for kind, url, result in results:
                if isinstance(result, SlotSuccess):
                    result = self._apply(db, event_id, kind, url, result)
                outcome = SlotOutcome(event_id, title, kind, url, result)
                if outcome.success:
                    logger.info("migrated %s image for event %s -> %s", kind, event_id, outcome.new_url)
                else:
                    logger.warning("failed %s image for event %s (%s): %s", kind, event_id, url, outcome.error)
                summary.outcomes.append(outcome)

        logger.info(
            "migration finished: %d ok, %d failed, %d skipped",
            summary.successful, summary.failed, len(summary.skipped),
        )
        return summary

    def _transfer_event(self, job) -> List[Tuple[str, str, SlotResult]]:
        event_id, _title, slots = job
        return [(kind, url, self.transfer(event_id, kind, url)) for kind, url in slots]

    def transfer(self, event_id: int, kind: str, url: str) -> SlotResult:
        """Download `url` and store it for the event slot. Never touches the database."""
        try:
            image = self.downloader.fetch(url)
            return self._store(event_id, kind, image)
        except (DownloadError, UploadError) as exc:
            return SlotFailure(str(exc))

    def _store(self, event_id: int, kind: str, image: DownloadedImage) -> SlotSuccess:
        stored = self.storage.upload(image_path(event_id, kind, image.content_type), image.content, image.content_type)
        return SlotSuccess(new_url=stored.url, storage_path=stored.path)

    def _apply(self, db: Session, event_id: int, kind: str, original_url: str, stored: SlotSuccess) -> SlotResult:
        slot = MEDIA_SLOTS[kind]
        # Reload: the cached row predates the transfer
        event = db.get(Event, event_id, populate_existing=True)
        if event is None or getattr(event, slot.url) != original_url or getattr(event, slot.hosted):
            return SlotFailure("event changed during migration; slot left as is")
        return self._switch_slot(db, event, kind, original_url, stored)

    def _switch_slot(self, db: Session, event: Event, kind: str, raw_url: Optional[str], stored: SlotSuccess) -> SlotResult:
        slot = MEDIA_SLOTS[kind]
        setattr(event, slot.url, stored.new_url)
        setattr(event, slot.storage_path, stored.storage_path)
        setattr(event, slot.hosted, True)
        setattr(event, slot.raw_url, raw_url or None)
        event.updated_at = utcnow()
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            return SlotFailure(f"update failed: {exc}")
        return stored

    # -- single slot (upload endpoint) ------------------------------------
    def rehost_slot(self, db: Session, event: Event, kind: str, url: str) -> SlotOutcome:
        self.storage.check_ready()
        result = self.transfer(event.id, kind, url)
        return self._finish_single(db, event, kind, url, result)

    def store_upload(self, db: Session, event: Event, kind: str, image: DownloadedImage) -> SlotOutcome:
        self.storage.check_ready()
        original = getattr(event, MEDIA_SLOTS[kind].url) or ""
        try:
            result = self._store(event.id, kind, image)
        except UploadError as exc:
            result = SlotFailure(str(exc))
        return self._finish_single(db, event, kind, original, result)

    def _finish_single(self, db, event, kind, original_url, result) -> SlotOutcome:
        event_id, title = event.id, event.title
        if isinstance(result, SlotSuccess):
            result = self._switch_slot(db, event, kind, original_url, result)
        return SlotOutcome(event_id, title, kind, original_url, result)


def build_worker(settings) -> MigrationWorker:
    """Worker wired from Settings: owned namespace, bucket, download limits."""
    return MigrationWorker(
        classifier=UrlClassifier(settings.STORAGE_PUBLIC_BASE_URL),
        storage=LocalBucketStorage(
            settings.STORAGE_ROOT, settings.STORAGE_BUCKET, settings.STORAGE_PUBLIC_BASE_URL
        ),
        downloader=ImageDownloader(settings.DOWNLOAD_TIMEOUT_S, settings.DOWNLOAD_MAX_BYTES),
        concurrency=settings.MIGRATION_CONCURRENCY,
        default_limit=settings.MIGRATION_DEFAULT_LIMIT,
    )
