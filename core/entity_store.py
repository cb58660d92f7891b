# core/entity_store.py
"""Canonical in-memory collections: files, references, associations, custom order.

Every mutating method runs under a single re-entrant lock and validates its
arguments before writing anything, so a rejected call leaves all four
collections exactly as they were.
"""
import dataclasses
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from core.errors import ValidationError
from core.models import FileRecord, Origin, Reference

logger = logging.getLogger(__name__)


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class StoreSnapshot:
    """Consistent read-only view of the store taken under its lock."""
    files: Tuple[FileRecord, ...] = ()
    references: Tuple[Reference, ...] = ()
    custom_order: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def files_by_id(self) -> Dict[str, FileRecord]:
        return {f.id: f for f in self.files}

    @property
    def references_by_id(self) -> Dict[str, Reference]:
        return {r.id: r for r in self.references}


class EntityStore:

    def __init__(self):
        self._files: List[FileRecord] = []
        self._references: List[Reference] = []
        self._custom_order: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    #  Reads
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self) -> Iterator['EntityStore']:
        """Hold the store lock across a read-compute-commit sequence."""
        with self._lock:
            yield self

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                files=tuple(self._files),
                references=tuple(self._references),
                custom_order={ref_id: tuple(ids) for ref_id, ids in self._custom_order.items()},
            )

    @property
    def files(self) -> Tuple[FileRecord, ...]:
        with self._lock:
            return tuple(self._files)

    @property
    def references(self) -> Tuple[Reference, ...]:
        with self._lock:
            return tuple(self._references)

    @property
    def custom_order(self) -> Dict[str, List[str]]:
        with self._lock:
            return {ref_id: list(ids) for ref_id, ids in self._custom_order.items()}

    def get_file(self, file_id: str) -> Optional[FileRecord]:
        with self._lock:
            for f in self._files:
                if f.id == file_id:
                    return f
        return None

    def get_reference(self, reference_id: str) -> Optional[Reference]:
        with self._lock:
            for r in self._references:
                if r.id == reference_id:
                    return r
        return None

    def count_by_reference(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for f in self._files:
                if f.reference_id:
                    counts[f.reference_id] = counts.get(f.reference_id, 0) + 1
        return counts

    # ------------------------------------------------------------------
    #  File mutations
    # ------------------------------------------------------------------

    def add_files(self, records: Iterable[FileRecord]) -> List[FileRecord]:
        records = list(records)
        with self._lock:
            existing_ids = {f.id for f in self._files}
            synced_names = {(f.origin.folder_name, f.name) for f in self._files if not f.origin.is_manual}
            reference_ids = {r.id for r in self._references}
            for rec in records:
                if rec.id in existing_ids:
                    raise ValidationError(f"Duplicate file id: {rec.id}")
                existing_ids.add(rec.id)
                if not rec.origin.is_manual:
                    key = (rec.origin.folder_name, rec.name)
                    if key in synced_names:
                        raise ValidationError(
                            f"'{rec.name}' already exists in synced folder '{rec.origin.folder_name}'")
                    synced_names.add(key)
                if rec.reference_id is not None and rec.reference_id not in reference_ids:
                    raise ValidationError(f"Unknown reference: {rec.reference_id}")

            self._files.extend(records)
        logger.debug(f"Added {len(records)} files")
        return records

    def remove_file(self, file_id: str) -> Optional[FileRecord]:
        """Remove one file and prune it from every custom order. Returns None if absent."""
        with self._lock:
            for index, f in enumerate(self._files):
                if f.id == file_id:
                    del self._files[index]
                    self._discard_from_orders({file_id})
                    logger.debug(f"Removed file {f.name} ({file_id})")
                    return f
        return None

    def set_association(self, file_ids: Iterable[str], reference_id: Optional[str],
                        now_ms: Optional[int] = None) -> List[str]:
        """Associate files with *reference_id* (or dissociate with None).

        Returns the ids whose association actually changed. Every targeted id
        ends up in ``custom_order[reference_id]`` when associating.
        """
        ids = list(dict.fromkeys(file_ids))
        stamp = now_ms if now_ms is not None else now_millis()
        with self._lock:
            if reference_id is not None and not any(r.id == reference_id for r in self._references):
                raise ValidationError(f"Unknown reference: {reference_id}")
            index_by_id = {f.id: i for i, f in enumerate(self._files)}
            missing = [i for i in ids if i not in index_by_id]
            if missing:
                raise ValidationError(f"Unknown file ids: {missing}")

            changed: List[str] = []
            for file_id in ids:
                idx = index_by_id[file_id]
                current = self._files[idx]
                if current.reference_id == reference_id:
                    continue
                self._files[idx] = dataclasses.replace(current, reference_id=reference_id, last_modified=stamp)
                changed.append(file_id)

            self._prune_custom_order()
            if reference_id is not None and ids:
                self._append_to_order(reference_id, ids)
        logger.debug(f"Association -> {reference_id}: {len(changed)} of {len(ids)} files changed")
        return changed

    def set_rating(self, file_ids: Iterable[str], rating: int) -> int:
        if isinstance(rating, bool) or not isinstance(rating, int) or not (0 <= rating <= 5):
            raise ValidationError(f"rating must be 0-5, got {rating!r}")
        ids = set(file_ids)
        with self._lock:
            known = {f.id for f in self._files}
            missing = ids - known
            if missing:
                raise ValidationError(f"Unknown file ids: {sorted(missing)}")
            count = 0
            for idx, f in enumerate(self._files):
                if f.id in ids:
                    self._files[idx] = dataclasses.replace(f, rating=rating)
                    count += 1
        return count

    def replace_files(self, files: Iterable[FileRecord], removed_ids: Iterable[str] = ()) -> None:
        """Swap the whole file collection in one step (reconciliation commit)."""
        files = list(files)
        with self._lock:
            self._files = files
            self._discard_from_orders(set(removed_ids))
            self._prune_custom_order()

    def remove_synced_folder(self, folder_name: str) -> Set[str]:
        """Drop every file synced from *folder_name*; returns the removed ids."""
        with self._lock:
            removed = {f.id for f in self._files if f.origin.is_synced_from(folder_name)}
            if removed:
                self._files = [f for f in self._files if f.id not in removed]
                self._discard_from_orders(removed)
        if removed:
            logger.info(f"Removed {len(removed)} files synced from '{folder_name}'")
        return removed

    def reset_for_session(self, keep_folder: Optional[str] = None) -> None:
        """Clear references and custom order for a new session.

        Files synced from *keep_folder* are left untouched; every other file
        loses its association and is demoted to a manual file.
        """
        with self._lock:
            self._references = []
            self._custom_order = {}
            reset: List[FileRecord] = []
            for f in self._files:
                if keep_folder is not None and f.origin.is_synced_from(keep_folder):
                    reset.append(dataclasses.replace(f, reference_id=None))
                else:
                    reset.append(dataclasses.replace(f, reference_id=None, origin=Origin.manual()))
            self._files = reset

    # ------------------------------------------------------------------
    #  Reference mutations
    # ------------------------------------------------------------------

    def add_references(self, texts: Iterable[str]) -> List[Reference]:
        """Add references, skipping blanks and case-insensitive duplicates."""
        created: List[Reference] = []
        with self._lock:
            seen = {r.text.lower() for r in self._references}
            for raw in texts:
                text = raw.strip()
                if not text or text.lower() in seen:
                    continue
                seen.add(text.lower())
                created.append(Reference(id=str(uuid.uuid4()), text=text))
            self._references.extend(created)
        if created:
            logger.debug(f"Added references: {[r.text for r in created]}")
        return created

    def remove_reference(self, reference_id: str, now_ms: Optional[int] = None) -> Optional[Reference]:
        stamp = now_ms if now_ms is not None else now_millis()
        with self._lock:
            target = next((r for r in self._references if r.id == reference_id), None)
            if target is None:
                return None
            self._references = [r for r in self._references if r.id != reference_id]
            self._files = [
                dataclasses.replace(f, reference_id=None, last_modified=stamp) if f.reference_id == reference_id else f
                for f in self._files
            ]
            self._custom_order.pop(reference_id, None)
        logger.debug(f"Removed reference '{target.text}'")
        return target

    def reorder_within_reference(self, reference_id: str, ordered_ids: Iterable[str]) -> List[str]:
        """Write a custom order, keeping only unique ids still associated with the reference."""
        with self._lock:
            associated = {f.id for f in self._files if f.reference_id == reference_id}
            final = [i for i in dict.fromkeys(ordered_ids) if i in associated]
            if final:
                self._custom_order[reference_id] = final
            else:
                self._custom_order.pop(reference_id, None)
            return list(final)

    # ------------------------------------------------------------------
    #  Invariants
    # ------------------------------------------------------------------

    def check_invariants(self) -> List[str]:
        """Return a description of every violated invariant (empty when consistent)."""
        problems: List[str] = []
        with self._lock:
            reference_ids = {r.id for r in self._references}
            by_id = {f.id: f for f in self._files}
            if len(by_id) != len(self._files):
                problems.append("duplicate file ids")
            synced_keys: Set[Tuple[Optional[str], str]] = set()
            for f in self._files:
                if f.reference_id is not None and f.reference_id not in reference_ids:
                    problems.append(f"file {f.id} points at missing reference {f.reference_id}")
                if not f.origin.is_manual:
                    key = (f.origin.folder_name, f.name)
                    if key in synced_keys:
                        problems.append(f"synced name '{f.name}' repeated in folder '{f.origin.folder_name}'")
                    synced_keys.add(key)
            for ref_id, ids in self._custom_order.items():
                if len(set(ids)) != len(ids):
                    problems.append(f"custom order for {ref_id} has duplicates")
                for file_id in ids:
                    f = by_id.get(file_id)
                    if f is None or f.reference_id != ref_id:
                        problems.append(f"custom order for {ref_id} holds unassociated id {file_id}")
        return problems

    # ------------------------------------------------------------------
    #  Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _append_to_order(self, reference_id: str, ids: List[str]) -> None:
        current = self._custom_order.get(reference_id, [])
        present = set(current)
        additions = [i for i in ids if i not in present]
        if additions:
            self._custom_order[reference_id] = current + additions

    def _discard_from_orders(self, ids: Set[str]) -> None:
        if not ids:
            return
        for ref_id in list(self._custom_order):
            kept = [i for i in self._custom_order[ref_id] if i not in ids]
            if kept:
                self._custom_order[ref_id] = kept
            else:
                del self._custom_order[ref_id]

    def _prune_custom_order(self) -> None:
        ref_by_file = {f.id: f.reference_id for f in self._files}
        for ref_id in list(self._custom_order):
            kept = [i for i in dict.fromkeys(self._custom_order[ref_id]) if ref_by_file.get(i) == ref_id]
            if kept:
                self._custom_order[ref_id] = kept
            else:
                del self._custom_order[ref_id]
