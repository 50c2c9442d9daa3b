"""Operator commands.

    python cli.py seed
    python cli.py preview-images
    python cli.py migrate-images --all --limit 25 --dry-run
    python cli.py migrate-images --event-id 12 --event-id 14
"""

import logging
import sys

import click

from config import get_settings
from db import Base, SessionLocal, engine
from migration import build_worker
from seed import run_seed
from storage import StorageConfigError


@click.group()
def main():
    logging.basicConfig(level=get_settings().LOG_LEVEL)
    Base.metadata.create_all(bind=engine)


@main.command()
def seed():
    """Insert the category catalog."""
    db = SessionLocal()
    try:
        added = run_seed(db)
    finally:
        db.close()
    click.echo(f"Seed complete. {added} categories added.")


@main.command("preview-images")
def preview_images():
    """List events whose media is still hosted elsewhere."""
    worker = build_worker(get_settings())
    db = SessionLocal()
    try:
        preview = worker.preview(db)
    finally:
        db.close()

    click.echo(f"Events with external images: {len(preview.candidates)}")
    for source, count in sorted(preview.by_source.items()):
        click.echo(f"  source={source}: {count}")
    for status, count in sorted(preview.by_status.items()):
        click.echo(f"  status={status}: {count}")
    for c in preview.candidates:
        kinds = ",".join(kind for kind, _ in c.slots)
        click.echo(f"{c.id}\t{c.status}\t{kinds}\t{c.title}")
    for s in preview.skipped:
        click.echo(f"skipped {s.event_id}/{s.slot}: {s.reason} ({s.url})")


@main.command("migrate-images")
@click.option("--event-id", "event_ids", type=int, multiple=True, help="Event to migrate (repeatable).")
@click.option("--all", "all_eligible", is_flag=True, help="Migrate all eligible events.")
@click.option("--limit", type=int, default=None, help="Max events with --all.")
@click.option("--dry-run", is_flag=True, help="Report what would be migrated.")
def migrate_images(event_ids, all_eligible, limit, dry_run):
    """Copy external event images into owned storage."""
    if not event_ids and not all_eligible:
        raise click.UsageError("Provide --event-id (repeatable) or --all")

    worker = build_worker(get_settings())
    db = SessionLocal()
    try:
        summary = worker.run(db, list(event_ids) if event_ids else None, limit, dry_run)
    except StorageConfigError as exc:
        click.echo(f"Migration aborted: {exc}", err=True)
        sys.exit(2)
    finally:
        db.close()

    for o in summary.outcomes:
        mark = "ok" if o.success else "FAILED"
        detail = o.new_url or o.error or ("would migrate" if dry_run else "")
        click.echo(f"[{mark}] event {o.event_id} {o.slot}: {o.original_url} -> {detail}")
    click.echo(
        f"{'Dry run' if dry_run else 'Migration'} complete: "
        f"{summary.successful} ok, {summary.failed} failed, {len(summary.skipped)} skipped"
    )
    if summary.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
