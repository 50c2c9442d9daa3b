from datetime import datetime, timezone
from db import Base, engine, SessionLocal
from models import Category, Location

CATEGORIES = [
    ("Music", "music"),
    ("Arts & Culture", "arts-culture"),
    ("Food & Drink", "food-drink"),
    ("Family", "family"),
    ("Sports & Recreation", "sports-recreation"),
    ("Nightlife", "nightlife"),
    ("Community", "community"),
    ("Classes & Workshops", "classes-workshops"),
    ("Festivals", "festivals"),
    ("Theater & Comedy", "theater-comedy"),
]


def utcnow():
    return datetime.now(timezone.utc)


def run_seed(db=None) -> int:
    """Insert the category catalog and a demo venue. Returns categories added."""
    owns_session = db is None
    if owns_session:
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
    try:
        existing = {slug for (slug,) in db.query(Category.slug)}
        added = 0
        for name, slug in CATEGORIES:
            if slug in existing:
                continue
            db.add(Category(name=name, slug=slug, is_active=True))
            added += 1

        if not db.query(Location).filter(Location.slug == "turner-hall-ballroom").first():
            now = utcnow()
            db.add(Location(
                name="Turner Hall Ballroom",
                slug="turner-hall-ballroom",
                address_line="1040 N 4th St",
                city="Milwaukee",
                state="WI",
                postal_code="53203",
                source="manual",
                is_active=True,
                created_at=now,
                updated_at=now,
            ))
        db.commit()
        return added
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    count = run_seed()
    print(f"Seed complete. {count} categories added.")
