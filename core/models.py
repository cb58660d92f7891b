# core/models.py
"""Enums and dataclasses shared by the store, projector, sync engine and workspace."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, FrozenSet, Tuple

MIXED_RATING = -1


class OriginKind(Enum):
    MANUAL = "manual"
    SYNCED = "synced"


class FilterStatus(Enum):
    ALL = "all"
    ASSOCIATED = "associated"
    UNASSOCIATED = "unassociated"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


class PermissionState(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


@dataclass(frozen=True)
class Origin:
    """Where a file came from: a manual upload, or a synced folder by name."""
    kind: OriginKind
    folder_name: Optional[str] = None

    @staticmethod
    def manual() -> 'Origin':
        return Origin(OriginKind.MANUAL)

    @staticmethod
    def synced(folder_name: str) -> 'Origin':
        return Origin(OriginKind.SYNCED, folder_name)

    @property
    def is_manual(self) -> bool:
        return self.kind is OriginKind.MANUAL

    def is_synced_from(self, folder_name: Optional[str]) -> bool:
        return self.kind is OriginKind.SYNCED and self.folder_name == folder_name


@dataclass(frozen=True)
class FileRecord:
    """One uploaded or synced artifact.

    Records are immutable; the store swaps whole records via
    ``dataclasses.replace`` so readers never observe a half-updated file.
    """
    id: str
    name: str
    mime_type: str
    size_bytes: int
    last_modified: int  # epoch millis
    origin: Origin = field(default_factory=Origin.manual)
    preview: Optional[str] = None  # data: URL, absent for non-previewable types
    rating: int = 0
    reference_id: Optional[str] = None
    source_path: Optional[str] = None
    source_mtime: Optional[int] = None  # mtime last reported by the source; association bumps leave it alone

    @property
    def has_image_preview(self) -> bool:
        return bool(self.preview) and self.mime_type.startswith("image/")


@dataclass(frozen=True)
class Reference:
    id: str
    text: str


@dataclass(frozen=True)
class ViewState:
    filter_status: FilterStatus = FilterStatus.ALL
    rating_filter: Optional[int] = None
    active_reference_id: Optional[str] = None
    sort_order: SortOrder = SortOrder.DESC

    @property
    def single_reference_id(self) -> Optional[str]:
        """The focused reference, effective only under the ASSOCIATED filter."""
        if self.filter_status is FilterStatus.ASSOCIATED:
            return self.active_reference_id
        return None


@dataclass(frozen=True)
class FileGroup:
    files: Tuple[FileRecord, ...]
    reference: Optional[Reference] = None
    is_unassociated: bool = False

    @property
    def key(self) -> str:
        return self.reference.id if self.reference else "unassociated-group"


@dataclass(frozen=True)
class SyncSummary:
    folder_name: str
    added: int = 0
    updated: int = 0
    removed: int = 0
    conflicts_resolved: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.updated or self.removed or self.conflicts_resolved)

    def describe(self) -> str:
        parts = []
        if self.added:
            parts.append(f"{self.added} added")
        if self.updated:
            parts.append(f"{self.updated} updated")
        if self.removed:
            parts.append(f"{self.removed} removed")
        if self.conflicts_resolved:
            parts.append(f"{self.conflicts_resolved} manual files replaced by folder version")
        if not parts:
            return f"Folder '{self.folder_name}' sync: No changes detected."
        return f"Folder '{self.folder_name}' sync: " + ", ".join(parts) + "."


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one reconciliation pass: the summary plus ids the caller must purge."""
    summary: SyncSummary
    removed_ids: FrozenSet[str] = frozenset()
    conflict_names: Tuple[str, ...] = ()
