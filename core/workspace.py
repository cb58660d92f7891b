# core/workspace.py
"""Command and query surface over the store, view state, selection and sync.

The Workspace owns the view state and serializes compound commands with its
own lock. That lock is never held across directory I/O, and the scheduler
thread never takes it, so ``stop_sync`` can always join the loop thread.
"""
import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set

from core.directory_handle import DirectoryHandle
from core.directory_sync import DirectorySyncEngine
from core.entity_store import EntityStore, now_millis
from core.errors import PermissionDeniedError, ValidationError
from core.ingestion import FileIngestor
from core.models import (FileGroup, FileRecord, FilterStatus, Origin, Reference, SortOrder,
                         SyncOutcome, SyncSummary, ViewState)
from core.reorder import ReorderController
from core.selection import SelectionController
from core.session_catalog import Session, SessionCatalog
from core.sync_scheduler import SyncScheduler
from core import view_projector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    """Raw payload of a manually added file."""
    name: str
    data: bytes
    mime_type: Optional[str] = None
    last_modified: Optional[int] = None


class Workspace:

    def __init__(self, config_manager=None, store: Optional[EntityStore] = None,
                 ingestor: Optional[FileIngestor] = None, catalog: Optional[SessionCatalog] = None,
                 interval: Optional[float] = None,
                 on_summary: Optional[Callable[[SyncSummary], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.config_manager = config_manager
        self.store = store or EntityStore()
        self.ingestor = ingestor or FileIngestor(preview_size=self._config("preview.size", 256))
        self.catalog = catalog or self._load_catalog()
        self.on_summary = on_summary
        self.on_error = on_error

        self._lock = threading.RLock()
        self._sync_lock = threading.Lock()
        self._view = ViewState()
        self.session: Optional[Session] = None
        self.last_summary: Optional[SyncSummary] = None
        self.last_error: Optional[Exception] = None

        if interval is None:
            interval = float(self._config("sync.interval_seconds", 1.0))
        self.scheduler = SyncScheduler(
            DirectorySyncEngine(self.ingestor), self.store, interval=interval,
            on_outcome=self._handle_outcome,
            on_error=self._handle_error,
            on_auto_stop=self._handle_auto_stop,
        )
        self.reorder_controller = ReorderController(self.store, lambda: self.scheduler.folder_name)
        self.selection = SelectionController(is_suspended=self.is_reorder_enabled)

    def _config(self, key, default):
        if self.config_manager is None:
            return default
        return self.config_manager.get(key, default)

    def _load_catalog(self) -> SessionCatalog:
        path = self._config("sessions.catalog_path", None)
        return SessionCatalog.from_yaml(path) if path else SessionCatalog()

    # ------------------------------------------------------------------
    #  Queries
    # ------------------------------------------------------------------

    @property
    def view(self) -> ViewState:
        with self._lock:
            return self._view

    def project_view(self) -> List[FileGroup]:
        return view_projector.project_view(self.store.snapshot(), self.view)

    def visible_ids(self) -> List[str]:
        return view_projector.visible_ids(self.project_view())

    def reference_preview(self, reference_id: str) -> Optional[str]:
        return view_projector.reference_preview(self.store.snapshot(), reference_id)

    def image_count_by_reference(self) -> Dict[str, int]:
        return self.store.count_by_reference()

    def common_rating(self) -> Optional[int]:
        return self.selection.common_rating(self.store.snapshot().files_by_id)

    def is_reorder_enabled(self) -> bool:
        return self.reorder_controller.is_enabled(self.view)

    @property
    def is_syncing(self) -> bool:
        return self.scheduler.is_active

    # ------------------------------------------------------------------
    #  Files and references
    # ------------------------------------------------------------------

    def upload(self, payloads: Iterable[Upload]) -> List[FileRecord]:
        """Ingest manual files. Previews are built before any lock is taken."""
        records = [
            self.ingestor.ingest(p.name, p.data, mime_type=p.mime_type,
                                 last_modified=p.last_modified, origin=Origin.manual())
            for p in payloads
        ]
        if not records:
            return []
        added = self.store.add_files(records)
        logger.info(f"Uploaded {len(added)} files")
        return added

    def add_references(self, texts: Iterable[str]) -> List[Reference]:
        if isinstance(texts, str):
            texts = [texts]
        created = self.store.add_references(texts)
        if created:
            logger.info(f"Added {len(created)} references")
        return created

    def set_association(self, file_ids: Iterable[str], reference_id: Optional[str]) -> List[str]:
        ids = list(file_ids)
        with self._lock, self.store.locked():
            wanted = set(ids)
            previous = {f.reference_id for f in self.store.files if f.id in wanted}
            changed = self.store.set_association(ids, reference_id)
            if reference_id is None:
                self.selection.purge(ids)
                for ref_id in previous:
                    self._clear_stale_focus(ref_id)
        return changed

    def associate_selection(self, reference_id: str) -> List[str]:
        """Associate every selected file with *reference_id*, then clear the selection."""
        with self._lock:
            if self.is_reorder_enabled():
                raise ValidationError("Cannot associate while reordering")
            ids = sorted(self.selection.selected_ids)
            if not ids:
                raise ValidationError("No files selected")
            changed = self.set_association(ids, reference_id)
            self.selection.clear()
        return changed

    def unassociate(self, file_id: str) -> bool:
        return bool(self.set_association([file_id], None))

    def set_rating(self, file_ids: Iterable[str], rating: int) -> int:
        return self.store.set_rating(file_ids, rating)

    def rate_selection(self, rating: int) -> int:
        ids = self.selection.selected_ids
        if not ids:
            return 0
        return self.store.set_rating(ids, rating)

    def delete_file(self, file_id: str) -> Optional[FileRecord]:
        """Remove a manual file. Synced files can only be removed from their folder."""
        with self._lock, self.store.locked():
            record = self.store.get_file(file_id)
            if record is None:
                return None
            if not record.origin.is_manual:
                raise ValidationError(
                    f"'{record.name}' is synced from '{record.origin.folder_name}'; remove it from the folder instead")
            self.store.remove_file(file_id)
            self.selection.purge({file_id})
            self._clear_stale_focus(record.reference_id)
        logger.info(f"Deleted file {record.name}")
        return record

    def delete_reference(self, reference_id: str) -> Optional[Reference]:
        with self._lock, self.store.locked():
            affected = {f.id for f in self.store.files if f.reference_id == reference_id}
            removed = self.store.remove_reference(reference_id, now_millis())
            if removed is None:
                return None
            self.selection.purge(affected)
            if self._view.active_reference_id == reference_id:
                self._view = dataclasses.replace(self._view, active_reference_id=None,
                                                 filter_status=FilterStatus.ALL)
        logger.info(f"Deleted reference '{removed.text}'")
        return removed

    def reorder(self, dragged_id: str, target_id: str) -> Optional[List[str]]:
        with self._lock:
            view = self._view
            if view.active_reference_id is None:
                return None
            visible = view_projector.files_for_reference(self.store.snapshot(), view, view.active_reference_id)
            return self.reorder_controller.move_before(dragged_id, target_id, view, visible)

    def _clear_stale_focus(self, reference_id: Optional[str]) -> None:
        """Drop the focus when the focused reference no longer has any files."""
        if reference_id is None or self._view.active_reference_id != reference_id:
            return
        if self.store.count_by_reference().get(reference_id, 0) == 0:
            self._view = dataclasses.replace(self._view, active_reference_id=None,
                                             filter_status=FilterStatus.ALL)

    # ------------------------------------------------------------------
    #  Selection
    # ------------------------------------------------------------------

    def toggle_select(self, file_id: str) -> bool:
        return self.selection.toggle(file_id)

    def range_select(self, file_id: str) -> bool:
        return self.selection.range_select(file_id, self.visible_ids())

    def select_adjacent(self, step: int) -> Optional[str]:
        return self.selection.select_adjacent(step, self.visible_ids())

    def clear_selection(self) -> None:
        self.selection.clear()

    def undo_selection(self) -> bool:
        """Step the selection back. History is dropped whenever files vanish."""
        return self.selection.undo()

    def redo_selection(self) -> bool:
        return self.selection.redo()

    # ------------------------------------------------------------------
    #  View state
    # ------------------------------------------------------------------

    def set_filter_status(self, status: FilterStatus) -> None:
        with self._lock:
            self._view = dataclasses.replace(self._view, filter_status=status, active_reference_id=None)
            if not self.is_reorder_enabled():
                self.selection.clear()

    def set_rating_filter(self, rating: Optional[int]) -> Optional[int]:
        """Set the exact-rating filter; choosing the active rating again clears it."""
        if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 5):
            raise ValidationError(f"rating filter must be 0-5 or None, got {rating!r}")
        with self._lock:
            new = None if self._view.rating_filter == rating else rating
            self._view = dataclasses.replace(self._view, rating_filter=new)
            return new

    def toggle_sort_order(self) -> SortOrder:
        with self._lock:
            new = SortOrder.ASC if self._view.sort_order is SortOrder.DESC else SortOrder.DESC
            self._view = dataclasses.replace(self._view, sort_order=new)
            return new

    def focus_reference(self, reference_id: str) -> Optional[str]:
        """Toggle the single-reference filter. Returns the focused id afterwards.

        Only references with at least one file can be focused; the selection
        is cleared either way.
        """
        with self._lock:
            if self.store.get_reference(reference_id) is None:
                raise ValidationError(f"Unknown reference: {reference_id}")
            if self._view.active_reference_id == reference_id:
                self._view = dataclasses.replace(self._view, active_reference_id=None,
                                                 filter_status=FilterStatus.ASSOCIATED)
            elif self.store.count_by_reference().get(reference_id, 0) > 0:
                self._view = dataclasses.replace(self._view, active_reference_id=reference_id,
                                                 filter_status=FilterStatus.ASSOCIATED)
            else:
                self._view = dataclasses.replace(self._view, active_reference_id=None)
            self.selection.clear()
            return self._view.active_reference_id

    def reset_filters(self) -> None:
        with self._lock:
            self._view = ViewState()

    # ------------------------------------------------------------------
    #  Directory sync
    # ------------------------------------------------------------------

    def start_sync(self, handle: DirectoryHandle) -> Optional[SyncOutcome]:
        """Sync *handle*.

        Switching to a different folder drops the previous folder's files and
        starts a fresh session: references, custom order, selection and view
        state are cleared.
        """
        with self._sync_lock:
            previous = self.scheduler.folder_name
            if previous is not None and previous != handle.name:
                self.scheduler.stop()
                self.selection.purge(self.store.remove_synced_folder(previous))
                with self._lock:
                    self._reset_session_data()
                    self.session = None
                logger.info(f"Switched sync from '{previous}' to '{handle.name}'; session cleared")
            try:
                return self.scheduler.start(handle)
            except PermissionDeniedError as e:
                self.last_error = e
                raise

    def stop_sync(self) -> Set[str]:
        """Stop syncing and remove the folder's files. Returns the removed ids."""
        with self._sync_lock:
            folder = self.scheduler.folder_name
            self.scheduler.stop()
            if folder is None:
                return set()
            removed = self.store.remove_synced_folder(folder)
            self.selection.purge(removed)
        if removed:
            with self._lock:
                self._clear_stale_focus(self._view.active_reference_id)
        return removed

    def refresh_sync(self) -> Optional[SyncOutcome]:
        return self.scheduler.refresh()

    def _handle_outcome(self, outcome: SyncOutcome) -> None:
        # Runs on the scheduler thread; must not take the workspace lock.
        self.selection.purge(outcome.removed_ids)
        self.last_summary = outcome.summary
        if self.on_summary is not None:
            self.on_summary(outcome.summary)

    def _handle_error(self, error: Exception) -> None:
        self.last_error = error
        if self.on_error is not None:
            self.on_error(error)

    def _handle_auto_stop(self, folder_name: str) -> None:
        # Same cascade as stop_sync, minus the workspace lock: this runs on the scheduler thread.
        removed = self.store.remove_synced_folder(folder_name)
        self.selection.purge(removed)
        logger.warning(f"Sync of '{folder_name}' stopped; removed {len(removed)} synced files.")

    # ------------------------------------------------------------------
    #  Sessions
    # ------------------------------------------------------------------

    def _reset_session_data(self) -> None:
        self.store.reset_for_session(keep_folder=self.scheduler.folder_name)
        self.selection.clear()
        self.selection.history.clear()
        self._view = ViewState()

    def load_session(self, session_id: str) -> Session:
        session = self.catalog.get(session_id)
        if session is None:
            raise ValidationError(f"Unknown session: {session_id}")
        with self._lock:
            self._reset_session_data()
            self.store.add_references(session.references)
            self.session = session
        logger.info(f"Loaded session '{session.name}' with {len(session.references)} references")
        return session

    def create_session(self, name: str) -> Session:
        session = self.catalog.create(name)
        with self._lock:
            self._reset_session_data()
            self.session = session
        logger.info(f"Created session '{session.name}'")
        return session

    def unload_session(self) -> None:
        with self._lock:
            self._reset_session_data()
            self.session = None
        logger.info("Session unloaded")

    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop syncing without discarding the folder's files."""
        self.scheduler.stop()
