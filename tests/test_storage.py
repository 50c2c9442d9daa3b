"""Unit tests for image download limits and the owned bucket."""

import base64
import re
from unittest.mock import MagicMock, patch

import pytest
import requests

from image_urls import IMAGE_EXTENSIONS
from storage import (
    HOSTABLE_EXTENSIONS,
    SUPPORTED_TYPES,
    DownloadError,
    ImageDownloader,
    LocalBucketStorage,
    StorageConfigError,
    UploadError,
    decode_data_url,
    image_path,
)


def _response(status=200, content_type="image/jpeg", chunks=(b"abc",), length=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {"Content-Type": content_type}
    if length is not None:
        resp.headers["Content-Length"] = str(length)
    resp.iter_content.return_value = iter(chunks)
    return resp


# ---------------------------------------------------------------------------
# ImageDownloader
# ---------------------------------------------------------------------------

class TestImageDownloader:
    def test_returns_bytes_and_media_type(self):
        resp = _response(content_type="image/png; charset=binary", chunks=(b"ab", b"", b"cd"))
        with patch("storage.requests.get", return_value=resp) as get:
            image = ImageDownloader(timeout_s=5, max_bytes=100).fetch("https://cdn.example.com/a.png")

        assert image.content == b"abcd"
        assert image.content_type == "image/png"
        assert image.size == 4
        assert get.call_args.kwargs["timeout"] == 5
        assert get.call_args.kwargs["stream"] is True
        resp.close.assert_called_once()

    def test_http_error(self):
        with patch("storage.requests.get", return_value=_response(status=404)):
            with pytest.raises(DownloadError, match="HTTP 404"):
                ImageDownloader().fetch("https://cdn.example.com/missing.jpg")

    def test_non_image_content_type(self):
        with patch("storage.requests.get", return_value=_response(content_type="text/html")):
            with pytest.raises(DownloadError, match="did not return an image"):
                ImageDownloader().fetch("https://cdn.example.com/page.jpg")

    def test_declared_size_over_ceiling(self):
        resp = _response(length=1000)
        with patch("storage.requests.get", return_value=resp):
            with pytest.raises(DownloadError, match="too large"):
                ImageDownloader(max_bytes=100).fetch("https://cdn.example.com/big.jpg")
        resp.iter_content.assert_not_called()

    def test_streamed_size_over_ceiling(self):
        resp = _response(chunks=(b"x" * 60, b"x" * 60))
        with patch("storage.requests.get", return_value=resp):
            with pytest.raises(DownloadError, match="too large"):
                ImageDownloader(max_bytes=100).fetch("https://cdn.example.com/big.jpg")

    def test_unsupported_image_type(self):
        resp = _response(content_type="image/svg+xml")
        with patch("storage.requests.get", return_value=resp):
            with pytest.raises(DownloadError, match="Unsupported image type"):
                ImageDownloader().fetch("https://cdn.example.com/logo")
        resp.iter_content.assert_not_called()

    def test_timeout(self):
        with patch("storage.requests.get", side_effect=requests.Timeout("read timed out")):
            with pytest.raises(DownloadError, match="request failed"):
                ImageDownloader(timeout_s=1).fetch("https://slow.example.com/a.jpg")

    def test_slow_body_exceeds_deadline(self):
        resp = _response(chunks=(b"a", b"b"))
        clock = iter([0.0, 0.5, 10.0])
        with patch("storage.requests.get", return_value=resp), \
                patch("storage.time.monotonic", side_effect=lambda: next(clock)):
            with pytest.raises(DownloadError, match="exceeded"):
                ImageDownloader(timeout_s=5).fetch("https://slow.example.com/a.jpg")


# ---------------------------------------------------------------------------
# LocalBucketStorage
# ---------------------------------------------------------------------------

class TestLocalBucketStorage:
    def test_upload_writes_file_and_public_url(self, storage_root):
        store = LocalBucketStorage(storage_root, "event-images", "https://media.test/storage/")
        stored = store.upload("events/1/hero_1_ab.jpg", b"jpeg", "image/jpeg")

        assert stored.path == "events/1/hero_1_ab.jpg"
        assert stored.url == "https://media.test/storage/event-images/events/1/hero_1_ab.jpg"
        assert (storage_root / "event-images" / "events/1/hero_1_ab.jpg").read_bytes() == b"jpeg"

    def test_never_overwrites(self, storage_root):
        store = LocalBucketStorage(storage_root, "event-images", "https://media.test/storage")
        store.upload("events/1/hero.jpg", b"one", "image/jpeg")
        with pytest.raises(UploadError, match="already exists"):
            store.upload("events/1/hero.jpg", b"two", "image/jpeg")
        assert (storage_root / "event-images" / "events/1/hero.jpg").read_bytes() == b"one"

    def test_unsupported_type(self, storage_root):
        store = LocalBucketStorage(storage_root, "event-images", "https://media.test/storage")
        with pytest.raises(UploadError, match="Unsupported"):
            store.upload("events/1/hero.tiff", b"II*", "image/tiff")

    def test_jpg_alias_accepted(self, storage_root):
        store = LocalBucketStorage(storage_root, "event-images", "https://media.test/storage")
        path = image_path(3, "hero", "image/jpg")
        assert path.endswith(".jpg")
        assert store.upload(path, b"jpeg", "image/jpg").path == path

    def test_ready(self, storage_root):
        LocalBucketStorage(storage_root, "event-images", "https://media.test/storage").check_ready()

    def test_missing_bucket_is_config_error(self, tmp_path):
        store = LocalBucketStorage(tmp_path, "event-images", "https://media.test/storage")
        with pytest.raises(StorageConfigError, match="not found"):
            store.check_ready()

    def test_missing_base_url_is_config_error(self, storage_root):
        with pytest.raises(StorageConfigError, match="STORAGE_PUBLIC_BASE_URL"):
            LocalBucketStorage(storage_root, "event-images", "").check_ready()


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_image_path_namespaced_by_event_and_slot(self):
        path = image_path(42, "thumbnail", "image/webp")
        assert re.fullmatch(r"events/42/thumbnail_\d+_[0-9a-f]{8}\.webp", path)

    def test_image_paths_are_unique(self):
        assert image_path(1, "hero", "image/jpeg") != image_path(1, "hero", "image/jpeg")

    def test_decode_data_url(self):
        data = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()
        image = decode_data_url(data, max_bytes=100)
        assert (image.content, image.content_type) == (b"png-bytes", "image/png")

    @pytest.mark.parametrize("data", ["", "hello", "data:image/png;base64,@@@"])
    def test_decode_data_url_invalid(self, data):
        with pytest.raises(UploadError, match="Invalid base64"):
            decode_data_url(data, max_bytes=100)

    def test_decode_data_url_too_large(self):
        data = "data:image/png;base64," + base64.b64encode(b"x" * 50).decode()
        with pytest.raises(UploadError, match="too large"):
            decode_data_url(data, max_bytes=10)

    def test_decode_data_url_unsupported_type(self):
        data = "data:image/tiff;base64," + base64.b64encode(b"II*").decode()
        with pytest.raises(UploadError, match="Unsupported image type"):
            decode_data_url(data, max_bytes=100)

    def test_raster_extensions_map_to_stored_types(self):
        stored = {f".{ext}" for ext in SUPPORTED_TYPES.values()} | {".jpeg"}
        assert set(HOSTABLE_EXTENSIONS) <= stored
        assert set(IMAGE_EXTENSIONS) - set(HOSTABLE_EXTENSIONS) == {".svg"}
