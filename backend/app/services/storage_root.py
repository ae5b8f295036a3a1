"""Upload directory ownership: creation, path resolution, health."""
import logging
import os
from pathlib import Path

from app.config import settings
from app.services.upload_errors import PathRejected, StorageUnavailable

logger = logging.getLogger(__name__)

_SEPARATORS = {"/", "\\", os.sep, os.altsep or "/"}


class StorageRoot:
    """The single directory all accepted uploads are written under."""

    def __init__(self, path: str | Path):
        self.path = Path(path).resolve()

    def ensure_root(self) -> Path:
        """Create the directory if absent. Safe to call concurrently.

        Raises StorageUnavailable when the directory cannot be created or
        is not writable.
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create upload directory %s: %s", self.path, exc)
            raise StorageUnavailable(f"Upload directory could not be created: {self.path}") from exc
        if not os.access(self.path, os.W_OK):
            logger.error("Upload directory %s is not writable", self.path)
            raise StorageUnavailable(f"Upload directory not writable: {self.path}")
        return self.path

    def resolve(self, name: str) -> Path:
        """Join `name` onto the root. No existence check."""
        if not name or name in (".", "..") or ".." in name or "\x00" in name:
            raise PathRejected(f"Refusing unsafe file name: {name!r}")
        if any(sep in name for sep in _SEPARATORS):
            raise PathRejected(f"File name must not contain directory separators: {name!r}")
        return self.path / name

    def describe(self) -> dict[str, object]:
        exists = self.path.is_dir()
        writable = os.access(self.path, os.W_OK) if exists else False
        return {
            "path": str(self.path),
            "exists": exists,
            "writable": writable,
        }


storage_root = StorageRoot(settings.UPLOAD_DIR)
