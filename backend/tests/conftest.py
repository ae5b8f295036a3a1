"""
Shared pytest fixtures for the upload service tests.

Provides:
- Isolated upload directories (settings are pointed at a temp dir before
  the app package is imported)
- Validation policies
- Multipart body builders and streaming request factories
"""

import os
import tempfile

_SESSION_ROOT = tempfile.mkdtemp(prefix="upload-tests-")
os.environ["UPLOAD_DIR"] = os.path.join(_SESSION_ROOT, "uploads")
os.environ["STATIC_DIR"] = os.path.join(_SESSION_ROOT, "public")

import pytest
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

from app.services.storage_root import StorageRoot
from app.services.upload_pipeline import IncomingRequest, UploadPipeline
from app.services.upload_policy import ValidationPolicy

BOUNDARY = "----UploadTestBoundary7MA4YWxkTrZu0gW"
IMAGE_MIME_TYPES = ["image/jpeg", "image/png", "image/gif", "image/webp", "image/bmp"]
IMAGE_EXTENSIONS = ["jpg", "png", "gif", "webp", "bmp"]
TEN_MB = 10 * 1024 * 1024


def build_multipart(parts: Iterable[tuple], boundary: str = BOUNDARY, terminate: bool = True) -> bytes:
    """
    Encode parts as multipart/form-data.

    Each part is (field_name, filename_or_None, content_type_or_None, data).
    """
    chunks = []
    for name, filename, content_type, data in parts:
        chunks.append(f"--{boundary}\r\n".encode())
        disposition = f'form-data; name="{name}"'
        if filename is not None:
            disposition += f'; filename="{filename}"'
        chunks.append(f"Content-Disposition: {disposition}\r\n".encode())
        if content_type:
            chunks.append(f"Content-Type: {content_type}\r\n".encode())
        chunks.append(b"\r\n")
        chunks.append(data)
        chunks.append(b"\r\n")
    if terminate:
        chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks)


async def stream_bytes(body: bytes, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
    for start in range(0, len(body), chunk_size):
        yield body[start:start + chunk_size]


def make_request(
    stream: AsyncIterator[bytes],
    boundary: str = BOUNDARY,
    content_type: Optional[str] = None,
    content_length: Optional[int] = None,
) -> IncomingRequest:
    headers = {"content-type": content_type or f"multipart/form-data; boundary={boundary}"}
    if content_length is not None:
        headers["content-length"] = str(content_length)
    return IncomingRequest(headers=headers, stream=stream)


def stored_files(root: Path) -> list[Path]:
    """Everything left in the upload directory, partial files included."""
    if not root.exists():
        return []
    return sorted(p for p in root.iterdir() if p.is_file())


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def storage(upload_dir: Path) -> StorageRoot:
    return StorageRoot(upload_dir)


@pytest.fixture
def pipeline(storage: StorageRoot) -> UploadPipeline:
    return UploadPipeline(storage, field_name="image")


# ============================================================================
# Policy Fixtures
# ============================================================================

@pytest.fixture
def policy() -> ValidationPolicy:
    """10 MB limit, common image types, one file per request."""
    return ValidationPolicy.create(
        max_size_bytes=TEN_MB,
        allowed_mime_types=IMAGE_MIME_TYPES,
        allowed_extensions=IMAGE_EXTENSIONS,
    )


@pytest.fixture
def small_policy() -> ValidationPolicy:
    return ValidationPolicy.create(
        max_size_bytes=1024,
        allowed_mime_types=IMAGE_MIME_TYPES,
        allowed_extensions=IMAGE_EXTENSIONS,
    )


# ============================================================================
# Request Factories
# ============================================================================

@pytest.fixture
def image_request():
    """Factory for a request carrying one file in the `image` field."""

    def _make(
        data: bytes = b"\xff\xd8\xff" + b"\x00" * 2045,
        filename: str = "photo.jpg",
        content_type: str = "image/jpeg",
        chunk_size: int = 64 * 1024,
    ) -> IncomingRequest:
        body = build_multipart([("image", filename, content_type, data)])
        return make_request(stream_bytes(body, chunk_size), content_length=len(body))

    return _make
