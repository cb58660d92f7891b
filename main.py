import logging
import sys
import os
import argparse
import signal
import threading
from config.config_manager import ConfigManager
from core.directory_handle import LocalDirectoryHandle
from core.errors import PermissionDeniedError, RefSyncError
from core.workspace import Upload, Workspace
from filewatcher.watcher import DirectoryChangeHandler

def setup_logging(log_level, log_dir="~/.refsync"):
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = os.path.expanduser(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "refsync.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stdout)
        ]
    )


def _read_uploads(paths):
    uploads = []
    for path in paths:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            logging.warning(f"Skipping upload {path}: {e}")
            continue
        mtime_ms = int(os.path.getmtime(path) * 1000)
        uploads.append(Upload(name=os.path.basename(path), data=data, last_modified=mtime_ms))
    return uploads


def main():
    parser = argparse.ArgumentParser(description="refsync: keep tagged files in step with a local folder.")
    parser.add_argument('directory', help='The folder to sync.')
    parser.add_argument('--interval', type=float, default=None,
                        help='Seconds between sync passes (defaults to sync.interval_seconds).')
    parser.add_argument('--no-watch', action='store_true', default=False,
                        help='Rely on the interval tick only; do not watch filesystem events.')
    parser.add_argument('--session', default=None, help='Session id whose references are loaded first.')
    parser.add_argument('--upload', nargs='*', default=[], metavar='FILE',
                        help='Files to add manually before syncing starts.')
    args = parser.parse_args()

    config_manager = ConfigManager()
    setup_logging(config_manager.logging_level, config_manager.get("log_dir", "~/.refsync"))

    target_dir = os.path.abspath(args.directory)
    if not os.path.isdir(target_dir):
        logging.error(f"Invalid directory provided: {target_dir}")
        return 1

    interval = args.interval if args.interval is not None else config_manager.sync_interval
    if interval <= 0:
        logging.error(f"--interval must be positive, got {interval}")
        return 1

    stopped = threading.Event()

    def on_summary(summary):
        if summary.has_changes:
            logging.info(summary.describe())

    def on_error(error):
        logging.error(f"Sync error: {error}")
        if isinstance(error, PermissionDeniedError):
            stopped.set()

    workspace = Workspace(config_manager, interval=interval, on_summary=on_summary, on_error=on_error)

    try:
        if args.session:
            workspace.load_session(args.session)
        if args.upload:
            workspace.upload(_read_uploads(args.upload))
    except RefSyncError as e:
        logging.error(str(e))
        return 1

    handle = LocalDirectoryHandle(target_dir, config_manager.image_extensions, config_manager.ignore_patterns)
    try:
        outcome = workspace.start_sync(handle)
    except PermissionDeniedError as e:
        logging.error(str(e))
        return 1
    if outcome is not None:
        logging.info(outcome.summary.describe())

    watcher = None
    if config_manager.get("sync.watch_events", True) and not args.no_watch:
        watcher = DirectoryChangeHandler(workspace.scheduler, handle)
        watcher.start()

    def shutdown(signum=None, frame=None):
        logging.info("Shutting down...")
        stopped.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        while not stopped.wait(1.0):
            pass
    finally:
        if watcher is not None:
            watcher.stop()
        workspace.close()
        counts = workspace.image_count_by_reference()
        logging.info(f"Stopped with {len(workspace.store.files)} files, "
                     f"{sum(counts.values())} associated across {len(counts)} references.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
