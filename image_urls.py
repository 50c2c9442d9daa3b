"""Image URL classification.

Scraped media fields are untrusted: collectors frequently hand over the URL
of the page an image was found on (an Eventbrite listing, an Instagram post)
instead of the image itself. Page URLs look plausible but never return image
bytes, so every media URL is classified before it is displayed or migrated.

Classification fails closed: a URL that matches no known image signal is
``unknown`` and treated as invalid.
"""

import re
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import parse_qs, urlsplit


class ImageUrlKind(str, Enum):
    VALID_IMAGE = "valid_image"
    PAGE_URL = "page_url"
    UNKNOWN = "unknown"


IMAGE_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".svg", ".bmp", ".ico",
)

# Checked first: these win over any CDN or extension signal
PAGE_URL_PATTERNS = [
    (re.compile(r"^https?://(www\.)?instagram\.com/p/", re.I), "Instagram post page (not image)"),
    (re.compile(r"^https?://(www\.)?instagram\.com/[^/]+/?$", re.I), "Instagram profile page (not image)"),
    (re.compile(r"^https?://(www\.)?facebook\.com/events/", re.I), "Facebook event page (not image)"),
    (re.compile(r"^https?://(www\.)?facebook\.com/[^/]+/posts", re.I), "Facebook post page (not image)"),
    (re.compile(r"^https?://(www\.)?eventbrite\.com/e/", re.I), "Eventbrite event page (not image)"),
    (re.compile(r"^https?://(www\.)?meetup\.com/[^/]+/events", re.I), "Meetup event page (not image)"),
    (re.compile(r"^https?://(www\.)?dice\.fm/event/", re.I), "Dice event page (not image)"),
    (re.compile(r"^https?://(www\.)?ra\.co/events/", re.I), "Resident Advisor event page (not image)"),
    (re.compile(r"^https?://(www\.)?ticketmaster\.com/[^/]+-tickets", re.I), "Ticketmaster ticket page (not image)"),
    (re.compile(r"^https?://(www\.)?axs\.com/events/", re.I), "AXS event page (not image)"),
    (re.compile(r"^https?://(www\.)?seetickets\.com/event/", re.I), "See Tickets event page (not image)"),
]

# Hosts and paths that serve images without a file extension
IMAGE_CDN_PATTERNS = [
    re.compile(r"scontent.*\.cdninstagram\.com", re.I),
    re.compile(r"scontent.*\.fbcdn\.net", re.I),
    re.compile(r".*\.fbcdn\.net.*\.(jpg|jpeg|png|gif|webp)", re.I),
    re.compile(r"img\.evbuc\.com", re.I),
    re.compile(r"cdn\.evbuc\.com.*/images/", re.I),
    re.compile(r"res\.cloudinary\.com", re.I),
    re.compile(r".*\.imgix\.net", re.I),
    re.compile(r"images\.unsplash\.com", re.I),
    re.compile(r"s3\..*\.amazonaws\.com.*\.(jpg|jpeg|png|gif|webp)", re.I),
    re.compile(r"supabase\.(co|in)/storage/v1/object", re.I),
    re.compile(r"/images?/", re.I),
    re.compile(r"/photos?/", re.I),
    re.compile(r"/media/", re.I),
    re.compile(r"/uploads?/", re.I),
    re.compile(r"/assets?/.*\.(jpg|jpeg|png|gif|webp)", re.I),
    re.compile(r".*\.ticketmaster\.com.*/dam/", re.I),
    re.compile(r"s1\.ticketm\.net", re.I),
    re.compile(r"dice\.fm.*/images/", re.I),
    re.compile(r"ra\.co.*/images/", re.I),
    re.compile(r"secure\.meetupstatic\.com", re.I),
]

IMAGE_QUERY_PARAMS = {"w", "h", "width", "height", "format", "fit", "crop"}

# Priority order when picking an image out of raw scraped data
SCRAPED_IMAGE_KEYS = ("og_image", "twitter_image", "meta_image", "image_url", "thumbnail_url")


class UrlClassifier:
    """Classifies media URLs relative to an owned storage namespace.

    `owned_base_url` is the public prefix under which our own storage serves
    uploaded objects. An empty value means nothing is considered owned.
    """

    def __init__(self, owned_base_url: str = ""):
        self.owned_base_url = owned_base_url.rstrip("/")

    def is_owned(self, url: Optional[str]) -> bool:
        if not url or not self.owned_base_url:
            return False
        return url.strip().startswith(self.owned_base_url + "/")

    def classify(self, url: Optional[str]) -> ImageUrlKind:
        parts = _split(url)
        if parts is None:
            return ImageUrlKind.UNKNOWN
        url = url.strip()

        for pattern, _reason in PAGE_URL_PATTERNS:
            if pattern.search(url):
                return ImageUrlKind.PAGE_URL

        if self.is_owned(url):
            return ImageUrlKind.VALID_IMAGE

        if parts.path.lower().endswith(IMAGE_EXTENSIONS):
            return ImageUrlKind.VALID_IMAGE

        for pattern in IMAGE_CDN_PATTERNS:
            if pattern.search(url):
                return ImageUrlKind.VALID_IMAGE

        params = parse_qs(parts.query, keep_blank_values=True)
        if IMAGE_QUERY_PARAMS.intersection(params):
            return ImageUrlKind.VALID_IMAGE

        return ImageUrlKind.UNKNOWN

    def is_valid_image(self, url: Optional[str]) -> bool:
        return self.classify(url) is ImageUrlKind.VALID_IMAGE

    def safe_image_url(self, url: Optional[str]) -> Optional[str]:
        return url.strip() if self.is_valid_image(url) else None

    def best_image(self, *urls: Optional[str]) -> Optional[str]:
        """First candidate that classifies as a valid image.

        Typical call: ``best_image(event.thumbnail_url, event.image_url, event.flyer_url)``
        """
        for url in urls:
            safe = self.safe_image_url(url)
            if safe:
                return safe
        return None

    def image_from_scraped_data(self, data: Optional[Mapping]) -> Optional[str]:
        if not data:
            return None
        candidates = [data.get(key) for key in SCRAPED_IMAGE_KEYS]
        return self.best_image(*[c for c in candidates if isinstance(c, str)])

    def explain(self, url: Optional[str]) -> Optional[str]:
        """Human-readable reason a URL is rejected, or None if it is accepted."""
        if not url or not url.strip():
            return "No URL provided"
        if _split(url) is None:
            return "Invalid URL format"
        for pattern, reason in PAGE_URL_PATTERNS:
            if pattern.search(url.strip()):
                return reason
        if self.is_valid_image(url):
            return None
        return "Unknown URL pattern - cannot verify if image"


def _split(url: Optional[str]):
    if not url or not url.strip():
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return parts
