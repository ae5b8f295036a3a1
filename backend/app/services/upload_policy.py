"""Validation policy for incoming image uploads."""
from dataclasses import dataclass
from typing import Iterable, Optional

from app.config import Settings, split_csv
from app.services.upload_errors import UnsupportedFileType


def _normalize_mime(value: str) -> str:
    # "image/jpeg; charset=binary" -> "image/jpeg"
    return value.split(";", 1)[0].strip().lower()


def _normalize_extension(value: str) -> str:
    return value.strip().lstrip(".").lower()


def extension_of(original_name: str) -> Optional[str]:
    """Return the lowercase text after the last '.', or None if there is none."""
    if "." not in original_name:
        return None
    extension = original_name.rsplit(".", 1)[1].lower()
    return extension or None


@dataclass(frozen=True)
class ValidationPolicy:
    """Immutable upload limits. Built once at startup, read-only afterwards."""

    max_size_bytes: int
    allowed_mime_types: frozenset[str]
    allowed_extensions: frozenset[str]
    max_files: int = 1
    # Cap for parts that are drained rather than stored (plain fields, other files)
    max_field_bytes: int = 1024 * 1024

    def __post_init__(self):
        if self.max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive")
        if self.max_files <= 0:
            raise ValueError("max_files must be positive")
        if self.max_field_bytes <= 0:
            raise ValueError("max_field_bytes must be positive")
        mime_types = frozenset(_normalize_mime(m) for m in self.allowed_mime_types if m.strip())
        extensions = frozenset(_normalize_extension(e) for e in self.allowed_extensions if e.strip())
        if not mime_types:
            raise ValueError("allowed_mime_types must not be empty")
        if not extensions:
            raise ValueError("allowed_extensions must not be empty")
        object.__setattr__(self, "allowed_mime_types", mime_types)
        object.__setattr__(self, "allowed_extensions", extensions)

    @classmethod
    def create(
        cls,
        max_size_bytes: int,
        allowed_mime_types: Iterable[str],
        allowed_extensions: Iterable[str],
        max_files: int = 1,
        max_field_bytes: int = 1024 * 1024,
    ) -> "ValidationPolicy":
        return cls(
            max_size_bytes=max_size_bytes,
            allowed_mime_types=frozenset(allowed_mime_types),
            allowed_extensions=frozenset(allowed_extensions),
            max_files=max_files,
            max_field_bytes=max_field_bytes,
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "ValidationPolicy":
        return cls.create(
            max_size_bytes=config.MAX_UPLOAD_SIZE_BYTES,
            allowed_mime_types=split_csv(config.ALLOWED_MIME_TYPES),
            allowed_extensions=split_csv(config.ALLOWED_EXTENSIONS),
            max_files=config.MAX_FILES,
            max_field_bytes=config.MAX_FIELD_SIZE_BYTES,
        )

    def check_type(self, original_name: str, declared_mime_type: Optional[str]) -> str:
        """Validate MIME type and extension independently.

        Returns the validated (lowercase) extension. Raises
        UnsupportedFileType if either check fails.
        """
        mime = _normalize_mime(declared_mime_type or "")
        if mime not in self.allowed_mime_types:
            raise UnsupportedFileType(f"Content type '{mime or 'unknown'}' is not allowed")

        extension = extension_of(original_name)
        if extension is None:
            raise UnsupportedFileType(f"File '{original_name}' has no extension")
        if extension not in self.allowed_extensions:
            raise UnsupportedFileType(f"File extension '.{extension}' is not allowed")
        return extension

    def exceeds_size(self, size_bytes: int) -> bool:
        return size_bytes > self.max_size_bytes
