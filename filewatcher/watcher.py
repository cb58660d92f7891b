import logging
import os
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from core.directory_handle import LocalDirectoryHandle
from core.sync_scheduler import SyncScheduler


class DirectoryChangeHandler(FileSystemEventHandler):
    """
    Filesystem event handler that asks the SyncScheduler for an early pass
    whenever a supported file in the synced folder changes. The scheduler's
    interval tick still runs, so missed events only delay a change.
    """
    def __init__(self, scheduler: SyncScheduler, handle: LocalDirectoryHandle):
        super().__init__()
        self.scheduler = scheduler
        self.handle = handle
        self.observer: Optional[Observer] = None

    def start(self):
        """Schedule a non-recursive observer on the handle's folder."""
        self.stop()
        if not os.path.isdir(self.handle.path):
            logging.warning(f"Watch path does not exist: {self.handle.path}")
            return
        self.observer = Observer()
        self.observer.schedule(self, path=self.handle.path, recursive=False)
        self.observer.start()
        logging.info(f"Watching {self.handle.path} for changes...")

    def stop(self):
        """Shut down the observer thread, if any."""
        if self.observer is None:
            return
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=1.0)
            if self.observer.is_alive():
                logging.warning("Watchdog observer thread did not stop gracefully.")
        self.observer = None
        logging.info("Watchdog observer stopped.")

    def _is_relevant(self, path: str) -> bool:
        if os.path.realpath(os.path.dirname(path)) != os.path.realpath(self.handle.path):
            return False
        return self.handle.is_supported_file(os.path.basename(path))

    def dispatch(self, event):
        """Nudge the scheduler for created, modified, moved or deleted supported files."""
        if event.is_directory:
            return

        paths = [event.src_path]
        if event.event_type == 'moved':
            paths.append(event.dest_path)
        elif event.event_type not in ('created', 'modified', 'deleted'):
            return

        if not any(self._is_relevant(os.fsdecode(p)) for p in paths if p):
            return

        logging.debug(f"Watchdog: {event.event_type} {event.src_path}; requesting sync pass")
        self.scheduler.request_refresh()
