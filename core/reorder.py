# core/reorder.py
"""Drag-and-drop reordering of the files under one focused reference."""
import logging
from typing import Callable, List, Optional, Sequence

from core.entity_store import EntityStore
from core.models import FilterStatus, ViewState

logger = logging.getLogger(__name__)


class ReorderController:
    """Writes ``custom_order`` for the focused reference.

    ``active_sync_folder`` returns the folder currently being synced (or
    None). Reordering is refused while that folder supplies any of the
    reference's files, because the next pass could replace them.
    """

    def __init__(self, store: EntityStore, active_sync_folder: Optional[Callable[[], Optional[str]]] = None):
        self.store = store
        self._active_sync_folder = active_sync_folder or (lambda: None)

    def is_enabled(self, view: ViewState) -> bool:
        if view.filter_status is not FilterStatus.ASSOCIATED or view.active_reference_id is None:
            return False
        folder = self._active_sync_folder()
        if folder is None:
            return True
        return not any(
            f.reference_id == view.active_reference_id and f.origin.is_synced_from(folder)
            for f in self.store.files
        )

    def move_before(self, dragged_id: str, target_id: str, view: ViewState,
                    visible_ids: Sequence[str]) -> Optional[List[str]]:
        """Move *dragged_id* in front of *target_id*.

        *visible_ids* is the reference's on-screen id sequence; it seeds the
        order when none exists and ranks ids when the target is missing from
        the stored order. Returns the new order, or None when nothing changed.
        """
        if not self.is_enabled(view) or dragged_id == target_id:
            return None
        reference_id = view.active_reference_id

        with self.store.locked():
            dragged = self.store.get_file(dragged_id)
            target = self.store.get_file(target_id)
            if dragged is None or target is None:
                return None
            if dragged.reference_id != reference_id or target.reference_id != reference_id:
                logger.debug(f"Reorder ignored: {dragged_id} or {target_id} not under {reference_id}")
                return None

            visible = list(visible_ids)
            seed = self.store.custom_order.get(reference_id) or visible
            associated = {f.id for f in self.store.files if f.reference_id == reference_id}
            working = [i for i in seed if i in associated and i != dragged_id]

            if target_id in working:
                working.insert(working.index(target_id), dragged_id)
            elif target_id in visible:
                target_rank = visible.index(target_id)
                for position, file_id in enumerate(working):
                    if file_id in visible and visible.index(file_id) >= target_rank:
                        working.insert(position, dragged_id)
                        break
                else:
                    working.append(dragged_id)
            else:
                working.append(dragged_id)

            final = self.store.reorder_within_reference(reference_id, working)
        logger.debug(f"Reordered {reference_id}: {final}")
        return final
