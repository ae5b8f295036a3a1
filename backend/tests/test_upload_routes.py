"""
Tests for the HTTP upload surface.

Tests cover:
- Successful upload response and public URL
- Serving stored files back under /uploads
- Status code mapping for each failure kind
- Health endpoint
"""

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routes.uploads import STATUS_BY_KIND, get_upload_pipeline, get_upload_policy
from app.services.storage_root import StorageRoot
from app.services.upload_errors import UploadErrorKind
from app.services.upload_pipeline import UploadPipeline
from conftest import BOUNDARY, build_multipart


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _post_raw(client, parts, **kwargs):
    return client.post(
        "/upload",
        content=build_multipart(parts),
        headers={"content-type": f"multipart/form-data; boundary={BOUNDARY}", **kwargs.pop("headers", {})},
        **kwargs,
    )


class TestUploadSuccess:
    """Tests for accepted uploads"""

    def test_upload_returns_url_and_metadata(self, client):
        data = b"\x89PNG\r\n\x1a\n" + b"\x00" * 100

        response = client.post("/upload", files={"image": ("cat.png", data, "image/png")})

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert payload["size"] == len(data)
        assert payload["filename"].endswith(".png")
        assert payload["url"] == f"http://testserver/uploads/{payload['filename']}"
        assert payload["message"]

    def test_stored_file_is_served_back(self, client):
        data = b"GIF89a" + b"\x01" * 64

        payload = client.post("/upload", files={"image": ("anim.gif", data, "image/gif")}).json()
        served = client.get(f"/uploads/{payload['filename']}")

        assert served.status_code == 200
        assert served.content == data

    def test_url_uses_request_host(self, client):
        response = client.post(
            "/upload",
            files={"image": ("cat.jpg", b"jpegdata", "image/jpeg")},
            headers={"host": "images.example.com"},
        )

        assert response.json()["url"].startswith("http://images.example.com/uploads/")


class TestUploadFailures:
    """Tests for error responses"""

    def test_missing_file(self, client):
        response = _post_raw(client, [("caption", None, None, b"no image here")])

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "No file uploaded",
            "kind": UploadErrorKind.NO_FILE_PROVIDED.value,
        }

    def test_not_multipart(self, client):
        response = client.post("/upload", json={"image": "data"})

        assert response.status_code == 400
        assert response.json()["kind"] == UploadErrorKind.MALFORMED_REQUEST.value

    def test_unsupported_type(self, client):
        response = client.post("/upload", files={"image": ("payload.exe", b"MZ", "image/jpeg")})

        assert response.status_code == 415
        assert response.json()["success"] is False
        assert response.json()["kind"] == UploadErrorKind.UNSUPPORTED_FILE_TYPE.value

    def test_too_many_files(self, client):
        response = _post_raw(
            client,
            [
                ("image", "a.png", "image/png", b"a"),
                ("image", "b.png", "image/png", b"b"),
            ],
        )

        assert response.status_code == 400
        assert response.json()["kind"] == UploadErrorKind.TOO_MANY_FILES.value

    def test_file_too_large_reports_limit(self, client, small_policy):
        app.dependency_overrides[get_upload_policy] = lambda: small_policy

        response = client.post("/upload", files={"image": ("big.png", b"b" * 2048, "image/png")})

        assert response.status_code == 413
        assert response.json()["kind"] == UploadErrorKind.FILE_TOO_LARGE.value
        assert "1024 bytes" in response.json()["error"]

    def test_storage_unavailable(self, client, tmp_path):
        blocker = tmp_path / "uploads"
        blocker.write_bytes(b"occupied")
        app.dependency_overrides[get_upload_pipeline] = lambda: UploadPipeline(StorageRoot(blocker))

        response = client.post("/upload", files={"image": ("cat.png", b"png", "image/png")})

        assert response.status_code == 503
        assert response.json()["kind"] == UploadErrorKind.STORAGE_UNAVAILABLE.value

    def test_every_kind_has_a_status(self):
        assert set(STATUS_BY_KIND) == set(UploadErrorKind)
        for kind, status_code in STATUS_BY_KIND.items():
            assert (status_code < 500) == kind.is_client_error


class TestHealth:
    """Tests for the health endpoint"""

    def test_health_reports_upload_dir(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "ok"
        assert payload["upload"]["exists"] is True
        assert payload["upload"]["writable"] is True
