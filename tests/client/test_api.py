"""Tests for the media server HTTP client."""

import json
from pathlib import Path

import httpx
import pytest

from mediaqueue.client.api import (
    APIError,
    HTTPClient,
    InvalidResponseError,
    NetworkError,
    PermissionDeniedError,
)
from mediaqueue.core.config import EndpointConfig
from mediaqueue.core.types import MediaKind

HEALTH_URL = "http://test/_api/v1/health"
UPLOAD_URL = "http://test/_api/v1/upload"
CONTACTS_URL = "http://test/_api/v1/contacts/key123"


def make_config(base_url: str = "http://test", user_key: str = "key123") -> EndpointConfig:
    """Create an EndpointConfig for testing."""
    return EndpointConfig(base_url=base_url, user_key=user_key)


@pytest.fixture
def media_file(tmp_path: Path) -> Path:
    """Create a small fake JPEG."""
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"\xff\xd8" + b"x" * 200_000)
    return path


class TestHealthCheck:
    """Tests for HTTPClient.health_check."""

    def test_available(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A 2xx {"status": "ok"} means available, with latency."""
        httpx_mock.add_response(url=HEALTH_URL, json={"status": "ok"})

        with HTTPClient(make_config()) as client:
            status = client.health_check()

        assert status.available is True
        assert isinstance(status.latency_ms, int)
        assert status.latency_ms >= 0

    def test_wrong_status_body(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Any other body means unavailable."""
        httpx_mock.add_response(url=HEALTH_URL, json={"status": "degraded"})

        with HTTPClient(make_config()) as client:
            assert client.health_check().available is False

    def test_server_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A non-2xx status means unavailable."""
        httpx_mock.add_response(url=HEALTH_URL, status_code=503)

        with HTTPClient(make_config()) as client:
            assert client.health_check().available is False

    def test_non_json_body(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A body that is not JSON means unavailable."""
        httpx_mock.add_response(url=HEALTH_URL, text="<html>ok</html>")

        with HTTPClient(make_config()) as client:
            assert client.health_check().available is False

    def test_timeout(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A timeout means unavailable with no latency."""
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=HEALTH_URL)

        with HTTPClient(make_config()) as client:
            status = client.health_check()

        assert status.available is False
        assert status.latency_ms is None

    def test_connection_refused(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A connection failure means unavailable."""
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=HEALTH_URL)

        with HTTPClient(make_config()) as client:
            assert client.health_check().available is False


class TestUploadMedia:
    """Tests for HTTPClient.upload_media."""

    def test_multipart_fields(self, httpx_mock, media_file: Path) -> None:  # type: ignore[no-untyped-def]
        """The form should carry the user key, kind, recipients, timestamp and media."""
        httpx_mock.add_response(url=UPLOAD_URL, method="POST", json={"id": "srv-1"})
        overlays = [{"id": "o1", "text": "hello"}]

        with HTTPClient(make_config()) as client:
            result = client.upload_media(
                media_file,
                MediaKind.IMAGE,
                ["alice", "bob"],
                1700000000000,
                overlays=overlays,
            )

        assert result == {"id": "srv-1"}
        request = httpx_mock.get_request()
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        body = request.read()
        assert b'name="userKey"' in body and b"key123" in body
        assert b'name="mediaType"' in body and b"image" in body
        assert json.dumps(["alice", "bob"]).encode() in body
        assert b"1700000000000" in body
        assert b'name="textOverlays"' in body
        assert b'filename="media_' in body and b'.jpg"' in body
        assert b"Content-Type: image/jpeg" in body

    def test_video_content_type(self, httpx_mock, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """Videos are sent as video/mp4 without an overlays field."""
        video = tmp_path / "clip.mov"
        video.write_bytes(b"\x00" * 1000)
        httpx_mock.add_response(url=UPLOAD_URL, method="POST", json={})

        with HTTPClient(make_config()) as client:
            client.upload_media(video, MediaKind.VIDEO, [], 1)

        body = httpx_mock.get_request().read()
        assert b"Content-Type: video/mp4" in body
        assert b'.mp4"' in body
        assert b'name="textOverlays"' not in body

    def test_progress_reported(self, httpx_mock, media_file: Path) -> None:  # type: ignore[no-untyped-def]
        """Progress should report increasing byte counts up to the total."""
        httpx_mock.add_response(url=UPLOAD_URL, method="POST", json={})
        calls: list[tuple[int, int]] = []

        with HTTPClient(make_config()) as client:
            client.upload_media(
                media_file,
                MediaKind.IMAGE,
                [],
                1,
                on_progress=lambda sent, total: calls.append((sent, total)),
            )

        assert calls
        sent_values = [sent for sent, _ in calls]
        assert sent_values == sorted(sent_values)
        last_sent, total = calls[-1]
        assert total > 200_000
        assert last_sent == total

    def test_forbidden(self, httpx_mock, media_file: Path) -> None:  # type: ignore[no-untyped-def]
        """A 403 raises PermissionDeniedError."""
        httpx_mock.add_response(url=UPLOAD_URL, method="POST", status_code=403)

        with HTTPClient(make_config()) as client:
            with pytest.raises(PermissionDeniedError, match="Invalid permissions"):
                client.upload_media(media_file, MediaKind.IMAGE, [], 1)

    def test_server_error(self, httpx_mock, media_file: Path) -> None:  # type: ignore[no-untyped-def]
        """Other non-2xx statuses raise APIError with status and body."""
        httpx_mock.add_response(url=UPLOAD_URL, method="POST", status_code=500, text="boom")

        with HTTPClient(make_config()) as client:
            with pytest.raises(APIError) as exc_info:
                client.upload_media(media_file, MediaKind.IMAGE, [], 1)

        assert not isinstance(exc_info.value, PermissionDeniedError)
        assert exc_info.value.status_code == 500
        assert str(exc_info.value) == "Server error: 500 - boom"

    def test_unparseable_response(self, httpx_mock, media_file: Path) -> None:  # type: ignore[no-untyped-def]
        """A 2xx body that is not JSON raises InvalidResponseError."""
        httpx_mock.add_response(url=UPLOAD_URL, method="POST", text="not json")

        with HTTPClient(make_config()) as client:
            with pytest.raises(InvalidResponseError):
                client.upload_media(media_file, MediaKind.IMAGE, [], 1)

    def test_network_error(self, httpx_mock, media_file: Path) -> None:  # type: ignore[no-untyped-def]
        """Transport failures raise NetworkError."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"), url=UPLOAD_URL)

        with HTTPClient(make_config()) as client:
            with pytest.raises(NetworkError, match="Connection refused"):
                client.upload_media(media_file, MediaKind.IMAGE, [], 1)


class TestFetchContacts:
    """Tests for HTTPClient.fetch_contacts."""

    def test_fetch(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Contacts should be returned as dicts."""
        httpx_mock.add_response(
            url=CONTACTS_URL,
            json=[{"id": "alice", "display_name": "Alice"}, "junk"],
        )

        with HTTPClient(make_config()) as client:
            contacts = client.fetch_contacts()

        assert contacts == [{"id": "alice", "display_name": "Alice"}]

    def test_http_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A non-2xx status raises APIError."""
        httpx_mock.add_response(url=CONTACTS_URL, status_code=404)

        with HTTPClient(make_config()) as client:
            with pytest.raises(APIError, match="status: 404"):
                client.fetch_contacts()

    def test_not_a_list(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A body that is not a list raises InvalidResponseError."""
        httpx_mock.add_response(url=CONTACTS_URL, json={"contacts": []})

        with HTTPClient(make_config()) as client:
            with pytest.raises(InvalidResponseError):
                client.fetch_contacts()
