# core/directory_sync.py
"""One reconciliation pass between a watched folder and the EntityStore.

Files are matched by name. Reading the folder happens before the store lock
is taken; the diff and the commit happen together under the lock so no
reader ever sees a half-applied pass.
"""
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from core.directory_handle import DirectoryHandle
from core.entity_store import EntityStore
from core.errors import EntryReadError, EnumerationError, PermissionDeniedError
from core.ingestion import FileIngestor
from core.models import FileRecord, Origin, SyncOutcome, SyncSummary

logger = logging.getLogger(__name__)


@dataclass
class ReconcileContext:
    """Mutable working state of one diff.

    *next_files* is built in store order; *purged_ids* collects every id that
    leaves the store (removed synced files and replaced manual files) so the
    caller can cascade the removal into selection and custom order.
    """
    folder_name: str
    next_files: List[FileRecord] = field(default_factory=list)
    purged_ids: Set[str] = field(default_factory=set)
    conflict_names: List[str] = field(default_factory=list)
    added: int = 0
    updated: int = 0
    removed: int = 0
    conflicts_resolved: int = 0

    def summary(self) -> SyncSummary:
        return SyncSummary(
            folder_name=self.folder_name,
            added=self.added,
            updated=self.updated,
            removed=self.removed,
            conflicts_resolved=self.conflicts_resolved,
        )


class DirectorySyncEngine:

    def __init__(self, ingestor: Optional[FileIngestor] = None):
        self.ingestor = ingestor or FileIngestor()

    def read_directory(self, handle: DirectoryHandle,
                       known: Optional[Dict[str, FileRecord]] = None) -> Dict[str, FileRecord]:
        """Enumerate *handle* into provisional synced records keyed by name.

        *known* maps names to the store's current records for this folder;
        an entry whose size and mtime match is not re-read, its preview is
        reused. Per-entry read failures are skipped with a warning.
        """
        folder = handle.name
        try:
            entries = list(handle.enumerate_entries())
        except (PermissionDeniedError, EnumerationError):
            raise
        except PermissionError as e:
            raise PermissionDeniedError(folder, str(e)) from e
        except OSError as e:
            raise EnumerationError(folder, e) from e

        known = known or {}
        provisional: Dict[str, FileRecord] = {}
        origin = Origin.synced(folder)
        for entry in entries:
            previous = known.get(entry.name)
            if (previous is not None and previous.size_bytes == entry.size
                    and previous.source_mtime == entry.last_modified
                    and previous.source_path == entry.path):
                provisional[entry.name] = FileRecord(
                    id=previous.id,
                    name=entry.name,
                    mime_type=entry.mime_type,
                    size_bytes=entry.size,
                    last_modified=entry.last_modified,
                    origin=origin,
                    preview=previous.preview,
                    source_path=entry.path,
                    source_mtime=entry.last_modified,
                )
                continue
            try:
                data = entry.read_bytes()
                provisional[entry.name] = self.ingestor.ingest(
                    entry.name, data,
                    mime_type=entry.mime_type,
                    size=entry.size,
                    last_modified=entry.last_modified,
                    origin=origin,
                    source_path=entry.path,
                )
            except Exception as e:
                # why: one unreadable or undecodable entry is skipped, the pass goes on
                logger.warning(str(EntryReadError(entry.name, e)))
                continue
        return provisional

    def diff(self, folder_name: str, files: Sequence[FileRecord],
             provisional: Dict[str, FileRecord]) -> ReconcileContext:
        """Classify every provisional entry and existing synced file; pure."""
        ctx = ReconcileContext(folder_name=folder_name)

        synced_by_name: Dict[str, FileRecord] = {}
        manual_by_name: Dict[str, List[FileRecord]] = {}
        for f in files:
            if f.origin.is_synced_from(folder_name):
                synced_by_name[f.name] = f
            elif f.origin.is_manual:
                manual_by_name.setdefault(f.name, []).append(f)

        updates: Dict[str, FileRecord] = {}
        replacements: Dict[str, FileRecord] = {}
        added: List[FileRecord] = []

        for name, incoming in provisional.items():
            existing = synced_by_name.get(name)
            if existing is not None:
                changed = (existing.size_bytes != incoming.size_bytes
                           or existing.source_mtime != incoming.source_mtime)
                if changed:
                    ctx.updated += 1
                    updates[existing.id] = dataclasses.replace(
                        existing,
                        mime_type=incoming.mime_type,
                        size_bytes=incoming.size_bytes,
                        last_modified=incoming.last_modified,
                        preview=incoming.preview,
                        source_path=incoming.source_path,
                        source_mtime=incoming.source_mtime,
                    )
                elif existing.source_path != incoming.source_path:
                    updates[existing.id] = dataclasses.replace(existing, source_path=incoming.source_path)
                continue

            manuals = manual_by_name.get(name)
            if manuals:
                # Folder wins: the first manual slot takes the synced record, the rest are dropped.
                replacements[manuals[0].id] = incoming
                ctx.purged_ids.update(m.id for m in manuals)
                ctx.conflicts_resolved += len(manuals)
                ctx.conflict_names.append(name)
                continue

            added.append(incoming)
            ctx.added += 1

        for name, f in synced_by_name.items():
            if name not in provisional:
                ctx.purged_ids.add(f.id)
                ctx.removed += 1

        for f in files:
            if f.id in updates:
                ctx.next_files.append(updates[f.id])
            elif f.id in replacements:
                ctx.next_files.append(replacements[f.id])
            elif f.id not in ctx.purged_ids:
                ctx.next_files.append(f)
        ctx.next_files.extend(added)
        return ctx

    def reconcile(self, handle: DirectoryHandle, store: EntityStore) -> SyncOutcome:
        """Run one pass. Raises PermissionDeniedError or EnumerationError with the store untouched."""
        start = time.monotonic()
        folder = handle.name
        known = {f.name: f for f in store.files if f.origin.is_synced_from(folder)}
        provisional = self.read_directory(handle, known)

        with store.locked():
            ctx = self.diff(folder, store.files, provisional)
            if ctx.summary().has_changes or ctx.next_files != list(store.files):
                store.replace_files(ctx.next_files, ctx.purged_ids)

        summary = ctx.summary()
        elapsed = time.monotonic() - start
        if summary.has_changes:
            logger.info(f"{summary.describe()} ({len(provisional)} entries, {elapsed:.3f}s)")
        else:
            logger.debug(f"Folder '{folder}' unchanged ({len(provisional)} entries, {elapsed:.3f}s)")
        for name in ctx.conflict_names:
            logger.warning(f"Synced file '{name}' replaced a manual file.")
        return SyncOutcome(summary=summary, removed_ids=frozenset(ctx.purged_ids),
                           conflict_names=tuple(ctx.conflict_names))
