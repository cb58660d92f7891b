# core/directory_handle.py
"""Directory capability consumed by the sync engine.

A handle enumerates the immediate file entries of one folder and reports
read permission. ``LocalDirectoryHandle`` backs it with the local file
system; tests substitute in-memory handles with the same shape.
"""
import fnmatch
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from core.errors import EnumerationError, PermissionDeniedError
from core.models import PermissionState

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    mime_type: str
    size: int
    last_modified: int  # epoch millis
    path: Optional[str] = None
    reader: Optional[Callable[[], bytes]] = field(default=None, compare=False, repr=False)

    def read_bytes(self) -> bytes:
        if self.reader is not None:
            return self.reader()
        if self.path is None:
            raise OSError(f"No content source for {self.name}")
        with open(self.path, "rb") as f:
            return f.read()


class DirectoryHandle(Protocol):
    name: str

    def enumerate_entries(self) -> Iterable[DirectoryEntry]:
        ...

    def query_permission(self) -> PermissionState:
        ...

    def request_permission(self) -> PermissionState:
        ...


def guess_mime_type(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or "application/octet-stream"


class LocalDirectoryHandle:
    """Non-recursive view of a local folder, filtered to supported image files."""

    def __init__(self, path: str, extensions: Sequence[str] = DEFAULT_IMAGE_EXTENSIONS,
                 ignore_patterns: Sequence[str] = ("._*",)):
        self.path = os.path.abspath(os.path.expanduser(path))
        self.name = os.path.basename(self.path.rstrip(os.sep)) or self.path
        self._extensions = {e.lower() for e in extensions}
        self.ignore_patterns = list(ignore_patterns)

    def is_supported_file(self, filename: str) -> bool:
        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(filename, pattern):
                logger.debug(f"Skipping file {filename}: matches ignore pattern '{pattern}'")
                return False
        _, ext = os.path.splitext(filename)
        return ext.lower() in self._extensions

    def query_permission(self) -> PermissionState:
        if os.path.isdir(self.path) and os.access(self.path, os.R_OK | os.X_OK):
            return PermissionState.GRANTED
        return PermissionState.DENIED

    def request_permission(self) -> PermissionState:
        # Local folders have no interactive grant; re-check the current state.
        return self.query_permission()

    def enumerate_entries(self) -> List[DirectoryEntry]:
        """List immediate regular files. Subdirectories are ignored.

        Raises PermissionDeniedError when the folder cannot be read and
        EnumerationError for any other listing failure. Entries that vanish
        between listing and stat are skipped.
        """
        entries: List[DirectoryEntry] = []
        try:
            with os.scandir(self.path) as it:
                for dirent in it:
                    if not self.is_supported_file(dirent.name):
                        continue
                    try:
                        if not dirent.is_file():
                            continue
                        st = dirent.stat()
                    except OSError as e:
                        logger.warning(f"Could not stat {dirent.path}: {e}")
                        continue
                    entries.append(DirectoryEntry(
                        name=dirent.name,
                        mime_type=guess_mime_type(dirent.name),
                        size=st.st_size,
                        last_modified=st.st_mtime_ns // 1_000_000,
                        path=dirent.path,
                    ))
        except PermissionError as e:
            raise PermissionDeniedError(self.name, str(e)) from e
        except OSError as e:
            raise EnumerationError(self.name, e) from e
        return entries
