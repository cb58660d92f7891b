"""
Shared pytest fixtures for refsync tests.
"""
import os
import sys
from typing import Callable, Dict, List, Optional

import pytest

# Ensure project root is on path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.directory_handle import DirectoryEntry  # noqa: E402
from core.entity_store import EntityStore  # noqa: E402
from core.ingestion import FileIngestor  # noqa: E402
from core.models import FileRecord, Origin, PermissionState  # noqa: E402


class MockConfigManager:
    """Minimal ConfigManager substitute that accepts a plain dict.

    Only implements the interface used by Workspace and main.
    """

    def __init__(self, overrides: dict | None = None):
        self._cfg: dict = {
            "logging_level": "DEBUG",
            "sync": {
                "interval_seconds": 60.0,  # tests drive passes by hand
                "watch_events": False,
                "image_extensions": [".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"],
                "ignore_patterns": ["._*"],
            },
            "preview": {"size": 32},
            "sessions": {"catalog_path": None},
        }
        if overrides:
            self._cfg.update(overrides)

    def get(self, key: str, default=None):
        keys = key.split(".")
        val = self._cfg
        for k in keys:
            if isinstance(val, dict):
                val = val.get(k)
            else:
                return default
        return val if val is not None else default


class FakeDirectoryHandle:
    """In-memory folder: a dict of name -> (bytes, mtime) plus a scriptable permission."""

    def __init__(self, name: str = "photos"):
        self.name = name
        self.permission = PermissionState.GRANTED
        self.request_result = PermissionState.GRANTED
        self.enumerate_error: Optional[Exception] = None
        self.unreadable: set = set()
        self.enumerations = 0
        self.before_enumerate: Optional[Callable[[], None]] = None
        self._files: Dict[str, tuple] = {}

    def put(self, name: str, data: bytes = b"data", mtime: int = 1_000, mime_type: str = "text/plain"):
        self._files[name] = (data, mtime, mime_type)

    def remove(self, name: str):
        self._files.pop(name, None)

    def enumerate_entries(self) -> List[DirectoryEntry]:
        self.enumerations += 1
        if self.before_enumerate is not None:
            self.before_enumerate()
        if self.enumerate_error is not None:
            raise self.enumerate_error
        entries = []
        for name, (data, mtime, mime) in self._files.items():
            entries.append(DirectoryEntry(
                name=name, mime_type=mime, size=len(data), last_modified=mtime,
                path=f"/fake/{self.name}/{name}", reader=self._reader(name, data),
            ))
        return entries

    def _reader(self, name, data):
        def read():
            if name in self.unreadable:
                raise OSError(f"{name} vanished")
            return data
        return read

    def query_permission(self) -> PermissionState:
        return self.permission

    def request_permission(self) -> PermissionState:
        self.permission = self.request_result
        return self.permission


def make_file(file_id: str, name: Optional[str] = None, last_modified: int = 0, origin: Optional[Origin] = None,
              rating: int = 0, reference_id: Optional[str] = None, preview: Optional[str] = None,
              mime_type: str = "image/png") -> FileRecord:
    return FileRecord(
        id=file_id,
        name=name or f"{file_id}.png",
        mime_type=mime_type,
        size_bytes=10,
        last_modified=last_modified,
        origin=origin or Origin.manual(),
        preview=preview,
        rating=rating,
        reference_id=reference_id,
    )


@pytest.fixture()
def store():
    return EntityStore()


@pytest.fixture()
def fake_dir():
    return FakeDirectoryHandle("photos")


@pytest.fixture()
def ingestor():
    return FileIngestor(preview_size=32)


@pytest.fixture()
def config():
    return MockConfigManager()
