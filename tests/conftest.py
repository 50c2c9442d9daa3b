"""Shared fixtures: in-memory SQLite, test settings, fake collaborators."""

import os

# Must be set before db.py builds the module-level engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Settings, get_settings
from db import Base, get_db
from main import app, get_venue_search, get_worker
from migration import build_worker
from models import Event
from resolver import VenueMatch, VenueSearch, VenueSearchUnsupported
from storage import DownloadedImage, DownloadError

OWNED_BASE = "https://media.test/storage"
SCRAPER_SECRET = "scraper-secret"
ADMIN_SECRET = "admin-secret"


class FakeDownloader:
    """Returns a tiny JPEG for every URL except those listed as failures."""

    def __init__(self, failures=()):
        self.failures = set(failures)
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        if url in self.failures:
            raise DownloadError("HTTP 404 from source")
        return DownloadedImage(b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")


class FakeVenueSearch(VenueSearch):
    def __init__(self, matches=None, unsupported=False):
        self.matches = matches or []
        self.unsupported = unsupported
        self.queries = []

    def search(self, db, name, limit=3):
        self.queries.append(name)
        if self.unsupported:
            raise VenueSearchUnsupported("not available")
        return [VenueMatch(*m) for m in self.matches][:limit]


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    (root / "event-images").mkdir(parents=True)
    return root


@pytest.fixture
def settings(storage_root):
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SCRAPER_API_SECRET=SCRAPER_SECRET,
        ADMIN_API_SECRET=ADMIN_SECRET,
        STORAGE_ROOT=storage_root,
        STORAGE_BUCKET="event-images",
        STORAGE_PUBLIC_BASE_URL=OWNED_BASE,
        VENUE_SEARCH="sequence",
        MIGRATION_CONCURRENCY=2,
    )


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def worker(settings, downloader):
    w = build_worker(settings)
    w.downloader = downloader
    return w


@pytest.fixture
def make_event(db):
    """Insert an Event directly, bypassing intake."""

    def _make_event(title="Jazz Night", **kwargs):
        now = datetime.now(timezone.utc)
        start = kwargs.pop("start_datetime", datetime(2026, 3, 14, 19, 0, tzinfo=timezone.utc))
        values = {
            "title": title,
            "slug": kwargs.pop("slug", title.lower().replace(" ", "-")),
            "start_datetime": start,
            "instance_date": start.date(),
            "status": "pending_review",
            "source": "scraper",
            "source_url": f"https://example.com/{title.lower().replace(' ', '-')}",
            "created_at": now,
            "updated_at": now,
        }
        values.update(kwargs)
        event = Event(**values)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _make_event


@pytest.fixture
def venue_search():
    return FakeVenueSearch(unsupported=True)


@pytest.fixture
def client(session_factory, settings, worker, venue_search):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_worker] = lambda: worker
    app.dependency_overrides[get_venue_search] = lambda: venue_search
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def scraper_auth():
    return {"Authorization": f"Bearer {SCRAPER_SECRET}"}


def admin_auth():
    return {"Authorization": f"Bearer {ADMIN_SECRET}"}
