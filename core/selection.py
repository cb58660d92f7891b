import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from core.models import MIXED_RATING, FileRecord

logger = logging.getLogger(__name__)

_KEEP = object()  # sentinel: command leaves the anchor where it is


class SelectionState:
    """Holds the selected file ids and the range anchor as the single source of truth."""

    def __init__(self):
        self.selected_ids: Set[str] = set()
        self.anchor_id: Optional[str] = None

    def set_selection(self, ids: Set[str]):
        self.selected_ids = set(ids)

    def add_to_selection(self, ids: Set[str]):
        self.selected_ids.update(ids)

    def remove_from_selection(self, ids: Set[str]):
        self.selected_ids.difference_update(ids)
        if self.anchor_id in ids:
            self.anchor_id = None

    def capture(self) -> Tuple[Set[str], Optional[str]]:
        return set(self.selected_ids), self.anchor_id

    def restore(self, captured: Tuple[Set[str], Optional[str]]):
        self.selected_ids, self.anchor_id = set(captured[0]), captured[1]


class SelectionCommand(ABC):
    """A reversible change to the selection."""

    def __init__(self, ids: Iterable[str], anchor=_KEEP, source: str = "", timestamp: Optional[float] = None):
        self.ids = set(ids)
        self.anchor = anchor
        self.source = source
        self.timestamp = timestamp if timestamp is not None else time.time()
        self.previous: Tuple[Set[str], Optional[str]] = (set(), None)

    def execute(self, state: SelectionState) -> None:
        self.previous = state.capture()
        self.apply(state)
        if self.anchor is not _KEEP:
            state.anchor_id = self.anchor

    @abstractmethod
    def apply(self, state: SelectionState) -> None:
        """Modify the selected ids."""
        pass

    def undo(self, state: SelectionState) -> None:
        state.restore(self.previous)
        logger.debug(f"Undid {type(self).__name__}, restored: {self.previous[0]}")


class ReplaceSelectionCommand(SelectionCommand):
    """Command to replace the entire selection."""

    def apply(self, state: SelectionState) -> None:
        state.set_selection(self.ids)
        logger.debug(f"Executed ReplaceSelection: {self.ids}")


class ToggleSelectionCommand(SelectionCommand):
    """Command to toggle items in the selection (XOR operation)."""

    def apply(self, state: SelectionState) -> None:
        state.selected_ids.symmetric_difference_update(self.ids)
        logger.debug(f"Executed ToggleSelection: {self.ids}")


class RemoveFromSelectionCommand(SelectionCommand):
    """Command to remove items from the current selection; drops the anchor if it is removed."""

    def apply(self, state: SelectionState) -> None:
        state.remove_from_selection(self.ids)
        logger.debug(f"Executed RemoveFromSelection: {self.ids}")


class SelectionHistory:
    """Manages undo/redo stacks for selection commands."""

    def __init__(self):
        self.undo_stack: List[SelectionCommand] = []
        self.redo_stack: List[SelectionCommand] = []

    def record(self, command: SelectionCommand):
        self.undo_stack.append(command)
        self.redo_stack.clear()

    def undo(self, state: SelectionState) -> bool:
        if not self.undo_stack:
            return False
        command = self.undo_stack.pop()
        command.undo(state)
        self.redo_stack.append(command)
        return True

    def redo(self, state: SelectionState) -> bool:
        if not self.redo_stack:
            return False
        command = self.redo_stack.pop()
        command.execute(state)
        self.undo_stack.append(command)
        return True

    def clear(self):
        self.undo_stack.clear()
        self.redo_stack.clear()


class SelectionController:
    """Multi-select over the projected view: toggle, shift-range, purge.

    ``is_suspended`` reports whether reorder mode is active; while it is,
    toggle and range selection do nothing.
    """

    def __init__(self, is_suspended: Optional[Callable[[], bool]] = None):
        self.state = SelectionState()
        self.history = SelectionHistory()
        self._is_suspended = is_suspended or (lambda: False)
        self._lock = threading.RLock()

    @property
    def selected_ids(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self.state.selected_ids)

    @property
    def anchor_id(self) -> Optional[str]:
        with self._lock:
            return self.state.anchor_id

    @property
    def suspended(self) -> bool:
        return self._is_suspended()

    def _run(self, command: SelectionCommand) -> None:
        command.execute(self.state)
        self.history.record(command)

    def toggle(self, file_id: str) -> bool:
        if self.suspended:
            return False
        with self._lock:
            self._run(ToggleSelectionCommand({file_id}, anchor=file_id, source="toggle"))
        return True

    def range_select(self, file_id: str, visible_order: Sequence[str]) -> bool:
        """Select the contiguous span between the anchor and *file_id*.

        Falls back to toggle when there is no anchor or either endpoint is
        not visible. The anchor does not move on a successful range.
        """
        if self.suspended:
            return False
        with self._lock:
            anchor = self.state.anchor_id
            order = list(visible_order)
            if anchor is None or anchor not in order or file_id not in order:
                self._run(ToggleSelectionCommand({file_id}, anchor=file_id, source="range_fallback"))
                return True
            a, b = order.index(anchor), order.index(file_id)
            start, end = min(a, b), max(a, b)
            self._run(ReplaceSelectionCommand(order[start:end + 1], source="range"))
        return True

    def select_only(self, file_id: str) -> None:
        with self._lock:
            self._run(ReplaceSelectionCommand({file_id}, anchor=file_id, source="select_only"))

    def select_adjacent(self, step: int, visible_order: Sequence[str]) -> Optional[str]:
        """Move a single selection one step through *visible_order*; returns the new id."""
        if self.suspended:
            return None
        with self._lock:
            if len(self.state.selected_ids) != 1:
                return None
            current = next(iter(self.state.selected_ids))
            order = list(visible_order)
            if current not in order:
                return None
            target = order.index(current) + step
            if not (0 <= target < len(order)):
                return None
            self._run(ReplaceSelectionCommand({order[target]}, anchor=order[target], source="adjacent"))
            return order[target]

    def clear(self) -> None:
        with self._lock:
            if self.state.selected_ids or self.state.anchor_id is not None:
                self._run(ReplaceSelectionCommand(set(), anchor=None, source="clear"))

    def purge(self, file_ids: Iterable[str]) -> bool:
        """Forget ids of files that no longer exist or no longer qualify.

        Undo history is dropped when anything was purged so an undo can
        never resurrect a removed file.
        """
        ids = set(file_ids)
        with self._lock:
            if not (ids & self.state.selected_ids) and self.state.anchor_id not in ids:
                return False
            self.state.remove_from_selection(ids)
            self.history.clear()
        return True

    def undo(self) -> bool:
        with self._lock:
            return self.history.undo(self.state)

    def redo(self) -> bool:
        with self._lock:
            return self.history.redo(self.state)

    def common_rating(self, files_by_id: Mapping[str, FileRecord]) -> Optional[int]:
        """Shared rating of the selection, MIXED_RATING if they differ, None if empty."""
        ratings = {files_by_id[i].rating or 0 for i in self.selected_ids if i in files_by_id}
        if not ratings:
            return None
        if len(ratings) > 1:
            return MIXED_RATING
        return ratings.pop()
