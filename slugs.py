import re
import unicodedata
from typing import Optional

from sqlalchemy.orm import Session


def slugify(value: Optional[str]) -> str:
    """Lowercase ASCII alnum with '-' separators.

    'Jazz at the Lake!' -> 'jazz-at-the-lake'
    """
    if not value:
        return ""
    v = unicodedata.normalize("NFKD", value)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^a-z0-9]+", "-", v)
    return v.strip("-")


def available_slug(db: Session, model, text: Optional[str], fallback: str) -> str:
    """Slug for `text` that no existing `model` row uses yet.

    Taken slugs get a numeric suffix: 'turner-hall', 'turner-hall-2', ...
    """
    base = slugify(text) or fallback
    taken = {
        row[0]
        for row in db.query(model.slug).filter(
            (model.slug == base) | model.slug.like(f"{base}-%")
        )
    }
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"
