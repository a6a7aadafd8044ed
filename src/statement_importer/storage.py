"""
Uploaded file storage.

Statements are stored once at upload and read back for every processing or
remapping run. The returned path is opaque to callers.
"""

import logging
import re
import uuid
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


class FileStore(Protocol):
    """Storage for uploaded statement files."""

    def save(self, user_id: str, filename: str, content: bytes) -> str: ...

    def read(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe basename."""
    name = Path(filename.replace("\\", "/")).name
    name = _UNSAFE_CHARS_RE.sub("_", name).strip("._")
    return name or "statement"


class LocalFileStore:
    """FileStore backed by a local directory (one subdirectory per user)."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes storage root: {path}")
        return resolved

    def save(self, user_id: str, filename: str, content: bytes) -> str:
        """Write the file and return its path relative to the storage root."""
        relative = Path(safe_filename(user_id)) / f"{uuid.uuid4().hex}_{safe_filename(filename)}"
        target = self._resolve(str(relative))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.debug("Stored %d bytes at %s", len(content), relative)
        return relative.as_posix()

    def read(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def delete(self, path: str) -> None:
        """Remove the file; a file that is already gone is not an error."""
        target = self._resolve(path)
        if target.exists():
            target.unlink()
        else:
            logger.debug("Stored file already removed: %s", path)
