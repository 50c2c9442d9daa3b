import pytest
from click.testing import CliRunner

import cli
from models import Category, Event


@pytest.fixture
def run(monkeypatch, session_factory, settings, worker):
    monkeypatch.setattr(cli, "SessionLocal", session_factory)
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "build_worker", lambda _settings: worker)
    runner = CliRunner()
    return lambda *args: runner.invoke(cli.main, list(args))


def test_seed(run, db):
    result = run("seed")
    assert result.exit_code == 0
    assert "10 categories added" in result.output
    assert db.query(Category).count() == 10


def test_preview_images(run, make_event):
    make_event("Show A", image_url="https://cdn.example.com/a.jpg")
    make_event("Show B", flyer_url="https://example.com/events/b")

    result = run("preview-images")

    assert result.exit_code == 0
    assert "Events with external images: 1" in result.output
    assert "Show A" in result.output
    assert "skipped" in result.output


def test_migrate_requires_selection(run):
    result = run("migrate-images")
    assert result.exit_code == 2
    assert "--event-id" in result.output


def test_migrate_all(run, db, make_event):
    event = make_event(image_url="https://cdn.example.com/a.jpg")

    result = run("migrate-images", "--all", "--limit", "5")

    assert result.exit_code == 0
    assert "1 ok, 0 failed" in result.output
    db.expire_all()
    assert db.get(Event, event.id).image_hosted is True


def test_migrate_dry_run(run, db, downloader, make_event):
    event = make_event(image_url="https://cdn.example.com/a.jpg")

    result = run("migrate-images", "--event-id", str(event.id), "--dry-run")

    assert result.exit_code == 0
    assert "would migrate" in result.output
    assert downloader.calls == []


def test_migrate_failure_exit_code(run, downloader, make_event):
    make_event(image_url="https://cdn.example.com/gone.jpg")
    downloader.failures.add("https://cdn.example.com/gone.jpg")

    result = run("migrate-images", "--all")

    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_migrate_storage_misconfigured(run, worker, make_event):
    make_event(image_url="https://cdn.example.com/a.jpg")
    worker.storage.bucket = "missing-bucket"

    result = run("migrate-images", "--all")

    assert result.exit_code == 2
    assert "Migration aborted" in result.output
