"""Upload ingestion pipeline.

Parses a multipart/form-data body while it streams in, validates the single
expected file part against a ValidationPolicy, and writes it under a random
name in the storage root.

Per request: Received -> Parsing -> Validating -> Naming -> Writing ->
Completed | Failed. A failure at any step removes whatever was written
before the outcome is returned. Nothing but cancellation leaves `ingest`.
"""
import asyncio
import logging
import secrets
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import decode_rfc2231
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Mapping, Optional

import aiofiles
import aiofiles.os
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from app.config import settings
from app.services.storage_root import StorageRoot, storage_root
from app.services.upload_errors import (
    FileTooLarge,
    InternalUploadError,
    MalformedRequest,
    NoFileProvided,
    StorageUnavailable,
    TooManyFiles,
    UploadAborted,
    UploadError,
)
from app.services.upload_policy import ValidationPolicy

logger = logging.getLogger(__name__)

NAME_ENTROPY_BYTES = 16
PARTIAL_SUFFIX = ".part"


def generate_stored_name(extension: str) -> str:
    """32 hex chars of CSPRNG output plus the validated extension."""
    return f"{secrets.token_hex(NAME_ENTROPY_BYTES)}.{extension}"


@dataclass(frozen=True)
class IncomingRequest:
    """What the HTTP layer hands over. Header lookups use lowercase keys."""

    headers: Mapping[str, str]
    stream: AsyncIterator[bytes]

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    @property
    def content_length(self) -> Optional[int]:
        # Informational only, never used for enforcement.
        raw = self.headers.get("content-length")
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None


@dataclass(frozen=True)
class IncomingFile:
    field_name: str
    original_name: str
    declared_mime_type: Optional[str]
    declared_size: Optional[int] = None


@dataclass(frozen=True)
class StoredFile:
    generated_name: str
    absolute_path: Path
    size_bytes: int
    created_at: datetime


@dataclass(frozen=True)
class UploadOutcome:
    """Either `stored` or `error` is set, never both."""

    stored: Optional[StoredFile] = None
    error: Optional[UploadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _Event(Enum):
    PART_BEGIN = "part_begin"
    HEADER_FIELD = "header_field"
    HEADER_VALUE = "header_value"
    HEADER_END = "header_end"
    HEADERS_FINISHED = "headers_finished"
    PART_DATA = "part_data"
    PART_END = "part_end"
    END = "end"


def _boundary_of(content_type: Optional[str]) -> bytes:
    media_type, options = parse_options_header(content_type)
    if media_type != b"multipart/form-data":
        raise MalformedRequest("Expected a multipart/form-data request")
    boundary = options.get(b"boundary")
    if not boundary:
        raise MalformedRequest("Multipart boundary is missing")
    return boundary


def _filename_of(options: dict[bytes, bytes]) -> Optional[str]:
    """Plain `filename=`, falling back to the RFC 2231 `filename*=` form."""
    raw = options.get(b"filename")
    if raw is not None:
        return raw.decode("utf-8", errors="replace")
    extended = options.get(b"filename*")
    if extended is None:
        return None
    charset, _, value = decode_rfc2231(extended.decode("latin-1").strip('"'))
    try:
        return urllib.parse.unquote(value, encoding=charset or "utf-8", errors="replace")
    except LookupError:
        return urllib.parse.unquote(value, encoding="utf-8", errors="replace")


def _parse_int(raw: Optional[bytes]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def _read_stream(stream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Yield chunks, turning any transport failure into UploadAborted."""
    iterator = stream.__aiter__()
    while True:
        try:
            chunk = await iterator.__anext__()
        except StopAsyncIteration:
            return
        except Exception as exc:
            raise UploadAborted("Connection closed before the upload completed") from exc
        yield chunk


class _UploadSession:
    """State for one request. Never shared between requests."""

    def __init__(self, storage: StorageRoot, policy: ValidationPolicy, field_name: str):
        self.storage = storage
        self.policy = policy
        self.field_name = field_name

        self._events: list[tuple[_Event, bytes]] = []
        self._header_field = b""
        self._header_value = b""
        self._part_headers: dict[bytes, bytes] = {}
        self._file_count = 0
        self._in_target = False
        self._ignored_size = 0
        self._finished = False

        self.incoming: Optional[IncomingFile] = None
        self._generated_name: Optional[str] = None
        self._final_path: Optional[Path] = None
        self._partial_path: Optional[Path] = None
        self._handle = None
        self._size = 0
        self._file_complete = False

    def _callbacks(self) -> dict:
        def signal(event: _Event):
            return lambda: self._events.append((event, b""))

        def data(event: _Event):
            # The parser reuses its buffer, so slice now.
            return lambda buf, start, end: self._events.append((event, bytes(buf[start:end])))

        return {
            "on_part_begin": signal(_Event.PART_BEGIN),
            "on_header_field": data(_Event.HEADER_FIELD),
            "on_header_value": data(_Event.HEADER_VALUE),
            "on_header_end": signal(_Event.HEADER_END),
            "on_headers_finished": signal(_Event.HEADERS_FINISHED),
            "on_part_data": data(_Event.PART_DATA),
            "on_part_end": signal(_Event.PART_END),
            "on_end": signal(_Event.END),
        }

    async def run(self, request: IncomingRequest) -> StoredFile:
        boundary = _boundary_of(request.content_type)
        self.storage.ensure_root()
        parser = MultipartParser(boundary, self._callbacks())

        async for chunk in _read_stream(request.stream):
            try:
                parser.write(chunk)
            except MultipartParseError as exc:
                raise MalformedRequest(f"Malformed multipart body: {exc}") from exc
            await self._handle_events()
            if self._finished:
                break

        if not self._finished:
            raise UploadAborted("Request body ended before the multipart payload was complete")
        if not self._file_complete:
            raise NoFileProvided(f"No file provided in field '{self.field_name}'")
        return await self._commit()

    async def _handle_events(self) -> None:
        events = list(self._events)
        self._events.clear()
        for event, payload in events:
            if event is _Event.PART_BEGIN:
                self._part_headers = {}
            elif event is _Event.HEADER_FIELD:
                self._header_field += payload
            elif event is _Event.HEADER_VALUE:
                self._header_value += payload
            elif event is _Event.HEADER_END:
                self._part_headers[self._header_field.lower()] = self._header_value
                self._header_field = b""
                self._header_value = b""
            elif event is _Event.HEADERS_FINISHED:
                await self._begin_part()
            elif event is _Event.PART_DATA:
                await self._write(payload)
            elif event is _Event.PART_END:
                await self._end_part()
            elif event is _Event.END:
                self._finished = True

    async def _begin_part(self) -> None:
        _, options = parse_options_header(self._part_headers.get(b"content-disposition"))
        field_name = options.get(b"name", b"").decode("utf-8", errors="replace")
        original_name = _filename_of(options)
        self._in_target = False
        self._ignored_size = 0

        # Plain form field, or a file input left empty by the browser.
        if not original_name:
            return

        self._file_count += 1
        if self._file_count > self.policy.max_files:
            raise TooManyFiles(f"At most {self.policy.max_files} file(s) may be uploaded per request")
        if field_name != self.field_name:
            return
        if self.incoming is not None:
            raise TooManyFiles(f"Only one file may be sent in field '{self.field_name}'")

        raw_type = self._part_headers.get(b"content-type")
        self.incoming = IncomingFile(
            field_name=field_name,
            original_name=original_name,
            declared_mime_type=raw_type.decode("latin-1") if raw_type else None,
            declared_size=_parse_int(self._part_headers.get(b"content-length")),
        )

        extension = self.policy.check_type(self.incoming.original_name, self.incoming.declared_mime_type)

        self._generated_name = generate_stored_name(extension)
        self._final_path = self.storage.resolve(self._generated_name)
        self._partial_path = self.storage.resolve(self._generated_name + PARTIAL_SUFFIX)

        self._handle = await aiofiles.open(self._partial_path, "wb")
        self._in_target = True

    async def _write(self, chunk: bytes) -> None:
        if not self._in_target:
            # Parts that are not stored are drained, but still bounded.
            self._ignored_size += len(chunk)
            if self._ignored_size > self.policy.max_field_bytes:
                raise MalformedRequest(f"Form field exceeds {self.policy.max_field_bytes} bytes")
            return
        self._size += len(chunk)
        if self.policy.exceeds_size(self._size):
            raise FileTooLarge(self.policy.max_size_bytes)
        await self._handle.write(chunk)

    async def _end_part(self) -> None:
        if not self._in_target:
            return
        await self._handle.close()
        self._handle = None
        self._in_target = False
        self._file_complete = True

    async def _commit(self) -> StoredFile:
        await aiofiles.os.replace(self._partial_path, self._final_path)
        self._partial_path = None
        return StoredFile(
            generated_name=self._generated_name,
            absolute_path=self._final_path,
            size_bytes=self._size,
            created_at=datetime.now(timezone.utc),
        )

    async def discard(self) -> None:
        """Close and remove any partially written file."""
        if self._handle is not None:
            try:
                await self._handle.close()
            except OSError as exc:
                logger.warning("Could not close partial upload %s: %s", self._partial_path, exc)
            self._handle = None
        self.discard_now()

    def discard_now(self) -> None:
        """Synchronous close and removal, usable while the task is being cancelled."""
        if self._handle is not None:
            # Closing the raw file releases the descriptor without awaiting;
            # buffered bytes are thrown away with the file anyway.
            try:
                self._handle.raw.close()
            except (OSError, ValueError) as exc:
                logger.warning("Could not close partial upload %s: %s", self._partial_path, exc)
            self._handle = None
        if self._partial_path is None:
            return
        try:
            self._partial_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove partial upload %s: %s", self._partial_path, exc)
        self._partial_path = None


class UploadPipeline:
    """Turns one incoming request into a StoredFile or a classified error."""

    def __init__(self, storage: StorageRoot, field_name: str = "image"):
        self.storage = storage
        self.field_name = field_name

    async def ingest(self, request: IncomingRequest, policy: ValidationPolicy) -> UploadOutcome:
        logger.info(
            "Upload started | field=%s | declared_length=%s",
            self.field_name,
            request.content_length,
        )
        session = _UploadSession(self.storage, policy, self.field_name)
        try:
            stored = await session.run(request)
        except asyncio.CancelledError:
            session.discard_now()
            logger.warning("Upload cancelled, partial data removed")
            raise
        except UploadError as exc:
            await session.discard()
            return self._failed(exc, session)
        except OSError as exc:
            await session.discard()
            error = StorageUnavailable(f"Failed to write uploaded file: {exc.strerror or exc}")
            return self._failed(error, session)
        except Exception:
            logger.exception("Unexpected failure while ingesting upload")
            await session.discard()
            return UploadOutcome(error=InternalUploadError("Unexpected failure while handling upload"))

        logger.info(
            "Upload completed | stored=%s | size=%d | original=%s",
            stored.generated_name,
            stored.size_bytes,
            session.incoming.original_name if session.incoming else None,
        )
        return UploadOutcome(stored=stored)

    @staticmethod
    def _failed(error: UploadError, session: _UploadSession) -> UploadOutcome:
        original = session.incoming.original_name if session.incoming else None
        if error.kind.is_client_error:
            logger.warning("Upload rejected | kind=%s | original=%s | %s", error.kind.value, original, error.detail)
        else:
            logger.error("Upload failed | kind=%s | original=%s | %s", error.kind.value, original, error.detail)
        return UploadOutcome(error=error)


upload_pipeline = UploadPipeline(storage_root, field_name=settings.UPLOAD_FIELD_NAME)
