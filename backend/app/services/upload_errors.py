"""Upload failure types.

These keep the pipeline HTTP-agnostic: it only classifies failures, and the
route layer maps each kind to a status code.
"""
from enum import Enum


class UploadErrorKind(str, Enum):
    NO_FILE_PROVIDED = "NoFileProvided"
    TOO_MANY_FILES = "TooManyFiles"
    FILE_TOO_LARGE = "FileTooLarge"
    UNSUPPORTED_FILE_TYPE = "UnsupportedFileType"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    PATH_REJECTED = "PathRejected"
    MALFORMED_REQUEST = "MalformedRequest"
    UPLOAD_ABORTED = "UploadAborted"
    INTERNAL_ERROR = "InternalError"

    @property
    def is_client_error(self) -> bool:
        return self not in _SERVER_SIDE


_SERVER_SIDE = {
    UploadErrorKind.STORAGE_UNAVAILABLE,
    UploadErrorKind.PATH_REJECTED,
    UploadErrorKind.INTERNAL_ERROR,
}


class UploadError(Exception):
    """Base class for every classified upload failure."""

    kind: UploadErrorKind = UploadErrorKind.INTERNAL_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.detail!r})"


class NoFileProvided(UploadError):
    kind = UploadErrorKind.NO_FILE_PROVIDED


class TooManyFiles(UploadError):
    kind = UploadErrorKind.TOO_MANY_FILES


class FileTooLarge(UploadError):
    kind = UploadErrorKind.FILE_TOO_LARGE

    def __init__(self, limit_bytes: int):
        super().__init__(f"File exceeds the maximum allowed size of {limit_bytes} bytes")
        self.limit_bytes = limit_bytes


class UnsupportedFileType(UploadError):
    kind = UploadErrorKind.UNSUPPORTED_FILE_TYPE


class StorageUnavailable(UploadError):
    kind = UploadErrorKind.STORAGE_UNAVAILABLE


class PathRejected(UploadError):
    kind = UploadErrorKind.PATH_REJECTED


class MalformedRequest(UploadError):
    kind = UploadErrorKind.MALFORMED_REQUEST


class UploadAborted(UploadError):
    kind = UploadErrorKind.UPLOAD_ABORTED


class InternalUploadError(UploadError):
    kind = UploadErrorKind.INTERNAL_ERROR
