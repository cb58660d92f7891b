# core/sync_scheduler.py
"""Drives DirectorySyncEngine passes on an interval for one active folder."""
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from core.directory_handle import DirectoryHandle
from core.directory_sync import DirectorySyncEngine
from core.entity_store import EntityStore
from core.errors import EnumerationError, PermissionDeniedError
from core.models import PermissionState, SyncOutcome

logger = logging.getLogger(__name__)


class SyncState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"


def ensure_permission(handle: DirectoryHandle) -> bool:
    """True when read access is granted, asking once if the handle is in the prompt state."""
    state = handle.query_permission()
    if state is PermissionState.PROMPT:
        state = handle.request_permission()
    return state is PermissionState.GRANTED


class SyncScheduler:
    """State machine over IDLE / ACTIVE / STOPPING.

    One daemon thread per started session waits on a wake event with the
    interval as timeout, so ``request_refresh`` can run a pass early. A
    pass flag guarded by a condition keeps two passes from ever running
    together; a trigger that arrives mid-pass is queued and runs once
    afterwards, unless the session was stopped in the meantime.

    ``on_outcome`` receives every committed pass, ``on_error`` every
    surfaced failure, ``on_auto_stop`` is called after a permission loss
    stopped the session.
    """

    def __init__(self, engine: DirectorySyncEngine, store: EntityStore, interval: float = 1.0,
                 on_outcome: Optional[Callable[[SyncOutcome], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 on_auto_stop: Optional[Callable[[str], None]] = None):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.engine = engine
        self.store = store
        self.interval = interval
        self.on_outcome = on_outcome
        self.on_error = on_error
        self.on_auto_stop = on_auto_stop

        self._state = SyncState.IDLE
        self._state_lock = threading.Lock()
        self._pass_cond = threading.Condition()
        self._pass_running = False
        self._pass_owner: Optional[int] = None
        self._pending = False
        self._handle: Optional[DirectoryHandle] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    @property
    def handle(self) -> Optional[DirectoryHandle]:
        with self._state_lock:
            return self._handle

    @property
    def folder_name(self) -> Optional[str]:
        handle = self.handle
        return handle.name if handle is not None else None

    @property
    def is_active(self) -> bool:
        return self.state is SyncState.ACTIVE

    def start(self, handle: DirectoryHandle) -> Optional[SyncOutcome]:
        """Stop any previous session, run an immediate pass, then arm the timer.

        Raises PermissionDeniedError (leaving the scheduler IDLE) when read
        access is not granted. An EnumerationError on the first pass is
        surfaced via ``on_error`` and the session stays active.
        """
        self.stop()
        if not ensure_permission(handle):
            raise PermissionDeniedError(handle.name)

        stop_event = threading.Event()
        with self._state_lock:
            self._handle = handle
            self._stop_event = stop_event
            self._wake_event = threading.Event()
            self._state = SyncState.ACTIVE
        logger.info(f"Folder sync started for '{handle.name}' (interval {self.interval}s)")

        outcome = self._run_pass(handle, stop_event)

        with self._state_lock:
            if self._stop_event is not stop_event or self._state is not SyncState.ACTIVE:
                return outcome
            thread = threading.Thread(target=self._loop, args=(handle, stop_event, self._wake_event),
                                      daemon=True, name=f"SyncScheduler-{handle.name}")
            self._thread = thread
        thread.start()
        return outcome

    def stop(self) -> None:
        """Cancel the timer and go IDLE. A pass in flight finishes and commits first."""
        with self._state_lock:
            if self._state is SyncState.IDLE and self._thread is None:
                return
            self._state = SyncState.STOPPING
            self._stop_event.set()
            self._wake_event.set()
            thread = self._thread
            self._thread = None

        timeout = max(5.0, self.interval * 2)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Sync scheduler thread did not stop gracefully.")
        # A pass started by start() or refresh() on another thread may still be committing.
        if not self._wait_for_pass(timeout):
            logger.warning("Sync pass still running after stop; it will commit when it finishes.")

        with self._state_lock:
            self._state = SyncState.IDLE
            self._handle = None
        logger.info("Folder sync stopped.")

    def refresh(self) -> Optional[SyncOutcome]:
        """Run a pass now on the caller's thread. Returns None if idle or a pass is already running."""
        with self._state_lock:
            if self._state is not SyncState.ACTIVE or self._handle is None:
                return None
            handle, stop_event = self._handle, self._stop_event
        return self._run_pass(handle, stop_event)

    def request_refresh(self) -> None:
        """Ask the background loop to run a pass as soon as possible."""
        with self._state_lock:
            if self._state is SyncState.ACTIVE:
                self._wake_event.set()

    # ------------------------------------------------------------------

    def _loop(self, handle: DirectoryHandle, stop_event: threading.Event, wake_event: threading.Event) -> None:
        while not stop_event.is_set():
            wake_event.wait(self.interval)
            wake_event.clear()
            if stop_event.is_set():
                break
            self._run_pass(handle, stop_event)
        logger.debug(f"Sync loop for '{handle.name}' exited")

    def _run_pass(self, handle: DirectoryHandle, stop_event: threading.Event) -> Optional[SyncOutcome]:
        with self._pass_cond:
            if self._pass_running:
                self._pending = True
                logger.debug("Sync pass already in flight; queued a follow-up pass")
                return None
            self._pass_running = True
            self._pass_owner = threading.get_ident()

        outcome = None
        finished = False
        try:
            while not stop_event.is_set():
                outcome = self._reconcile_once(handle, stop_event)
                with self._pass_cond:
                    if not self._pending:
                        # Ends the pass under the same lock a late trigger would take.
                        self._end_pass()
                        finished = True
                        return outcome
                    self._pending = False
            return outcome
        finally:
            if not finished:
                with self._pass_cond:
                    self._end_pass()

    def _end_pass(self) -> None:
        # Caller holds _pass_cond.
        self._pass_running = False
        self._pass_owner = None
        self._pending = False
        self._pass_cond.notify_all()

    def _wait_for_pass(self, timeout: float) -> bool:
        """Block until a pass running on another thread has committed. False on timeout."""
        me = threading.get_ident()
        with self._pass_cond:
            return self._pass_cond.wait_for(
                lambda: not self._pass_running or self._pass_owner == me, timeout=timeout)

    def _reconcile_once(self, handle: DirectoryHandle, stop_event: threading.Event) -> Optional[SyncOutcome]:
        try:
            if not ensure_permission(handle):
                raise PermissionDeniedError(handle.name)
            outcome = self.engine.reconcile(handle, self.store)
        except PermissionDeniedError as e:
            logger.error(f"{e}. Stopping sync.")
            self._auto_stop(handle, stop_event, e)
            return None
        except EnumerationError as e:
            logger.error(f"{e}. Will retry on the next pass.")
            self._notify(self.on_error, e)
            return None
        except Exception as e:  # why: an unexpected failure in one pass must not kill the timer thread
            logger.error(f"Unexpected error during sync of '{handle.name}': {e}", exc_info=True)
            self._notify(self.on_error, e)
            return None

        self._notify(self.on_outcome, outcome)
        return outcome

    def _auto_stop(self, handle: DirectoryHandle, stop_event: threading.Event, error: Exception) -> None:
        with self._state_lock:
            if self._stop_event is not stop_event:
                return
            self._state = SyncState.STOPPING
            stop_event.set()
            self._wake_event.set()
            thread = self._thread
            self._thread = None
            self._state = SyncState.IDLE
            self._handle = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(5.0, self.interval * 2))
        self._notify(self.on_error, error)
        self._notify(self.on_auto_stop, handle.name)

    @staticmethod
    def _notify(callback, payload) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception as e:  # why: isolate callback crashes so the scheduler keeps running
            logger.error(f"Error in sync callback: {e}", exc_info=True)
