from models import Category, Location
from seed import CATEGORIES, run_seed


def test_seed_inserts_catalog(db):
    assert run_seed(db) == len(CATEGORIES)
    assert db.query(Category).filter(Category.is_active.is_(True)).count() == len(CATEGORIES)
    assert db.query(Location).filter(Location.slug == "turner-hall-ballroom").count() == 1


def test_seed_is_idempotent(db):
    run_seed(db)
    assert run_seed(db) == 0
    assert db.query(Category).count() == len(CATEGORIES)
    assert db.query(Location).count() == 1
