"""Image download and owned object storage.

Downloads are bounded by a timeout and a byte ceiling. The owned store is a
public bucket on local disk served under a configured base URL; it is
append-only, every upload gets a fresh path.
"""

import base64
import binascii
import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; EventIntake/1.0)"

SUPPORTED_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
    "image/bmp": "bmp",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
}

# Raster extensions the bucket accepts; svg is displayed but never re-hosted
HOSTABLE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".avif", ".bmp", ".ico")

DATA_URL_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.S)


class DownloadError(Exception):
    pass


class UploadError(Exception):
    pass


class StorageConfigError(Exception):
    """Storage cannot accept any upload until an operator fixes configuration."""


@dataclass(frozen=True)
class DownloadedImage:
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class StoredObject:
    path: str
    url: str


def _media_type(header: Optional[str]) -> str:
    return (header or "").split(";", 1)[0].strip().lower()


class ImageDownloader:
    def __init__(self, timeout_s: float = 15.0, max_bytes: int = 5 * 1024 * 1024, user_agent: str = USER_AGENT):
        self.timeout_s = timeout_s
        self.max_bytes = max_bytes
        self.user_agent = user_agent

    def fetch(self, url: str) -> DownloadedImage:
        deadline = time.monotonic() + self.timeout_s
        try:
            resp = requests.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_s,
                stream=True,
            )
        except requests.RequestException as exc:
            raise DownloadError(f"request failed: {exc}") from exc

        try:
            if not 200 <= resp.status_code < 300:
                raise DownloadError(f"HTTP {resp.status_code} from source")

            content_type = _media_type(resp.headers.get("Content-Type"))
            if not content_type.startswith("image/"):
                raise DownloadError(f"URL did not return an image: {content_type or 'no content type'}")
            if content_type not in SUPPORTED_TYPES:
                raise DownloadError(f"Unsupported image type: {content_type}")

            declared = resp.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise DownloadError(f"image too large: {declared} bytes (max {self.max_bytes})")

            chunks = []
            received = 0
            try:
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if not chunk:
                        continue
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise DownloadError(f"image too large: over {self.max_bytes} bytes")
                    if time.monotonic() > deadline:
                        raise DownloadError(f"download exceeded {self.timeout_s}s")
                    chunks.append(chunk)
            except requests.RequestException as exc:
                raise DownloadError(f"download interrupted: {exc}") from exc
        finally:
            resp.close()

        return DownloadedImage(b"".join(chunks), content_type)


def image_path(event_id, kind: str, content_type: str) -> str:
    """events/{event_id}/{kind}_{timestamp}_{random}.{ext}"""
    ext = SUPPORTED_TYPES.get(content_type, "jpg")
    stamp = int(time.time() * 1000)
    return f"events/{event_id}/{kind}_{stamp}_{uuid.uuid4().hex[:8]}.{ext}"


def decode_data_url(data: str, max_bytes: int) -> DownloadedImage:
    """Decode a ``data:image/...;base64,...`` payload."""
    m = DATA_URL_RE.match(data.strip()) if data else None
    if not m:
        raise UploadError("Invalid base64 image data")
    content_type = m.group(1).lower()
    if content_type not in SUPPORTED_TYPES:
        raise UploadError(f"Unsupported image type: {content_type}")
    try:
        content = base64.b64decode(m.group(2), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UploadError("Invalid base64 image data") from exc
    if len(content) > max_bytes:
        raise UploadError(f"Image too large: {len(content)} bytes (max {max_bytes})")
    return DownloadedImage(content, content_type)


class LocalBucketStorage:
    """Public bucket directory under `root`, served at `public_base_url`."""

    def __init__(self, root, bucket: str, public_base_url: str):
        self.root = Path(root)
        self.bucket = bucket
        self.public_base_url = (public_base_url or "").rstrip("/")

    @property
    def bucket_dir(self) -> Path:
        return self.root / self.bucket

    def check_ready(self) -> None:
        if not self.public_base_url:
            raise StorageConfigError(
                "STORAGE_PUBLIC_BASE_URL is not set. Configure the public URL that serves the storage root."
            )
        if not self.bucket or not self.bucket_dir.is_dir():
            raise StorageConfigError(
                f'Bucket "{self.bucket}" not found under {self.root}. '
                f"Create the directory {self.bucket_dir} and expose it publicly."
            )

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{path}"

    def upload(self, path: str, content: bytes, content_type: str) -> StoredObject:
        if content_type not in SUPPORTED_TYPES:
            raise UploadError(f"Unsupported image type: {content_type}")
        target = self.bucket_dir / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as fh:
                fh.write(content)
        except FileExistsError as exc:
            raise UploadError(f"object already exists: {path}") from exc
        except OSError as exc:
            raise UploadError(f"Upload failed: {exc}") from exc
        logger.info("stored %s (%d bytes)", path, len(content))
        return StoredObject(path=path, url=self.public_url(path))
