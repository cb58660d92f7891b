# core/errors.py
"""Error taxonomy for store commands and directory sync."""


class RefSyncError(Exception):
    pass


class ValidationError(RefSyncError, ValueError):
    """Rejected before any mutation; the store is unchanged."""


class PermissionDeniedError(RefSyncError):
    """Directory read access was refused or revoked. Ends the sync session."""

    def __init__(self, folder_name: str, message: str = ""):
        self.folder_name = folder_name
        super().__init__(message or f"Read permission denied for folder '{folder_name}'")


class EnumerationError(RefSyncError):
    """Listing the directory failed. Aborts the current pass only."""

    def __init__(self, folder_name: str, cause: Exception):
        self.folder_name = folder_name
        self.cause = cause
        super().__init__(f"Error listing folder '{folder_name}': {cause}")


class EntryReadError(RefSyncError):
    """A single entry could not be read. The entry is skipped."""

    def __init__(self, name: str, cause: Exception):
        self.name = name
        self.cause = cause
        super().__init__(f"Could not read '{name}': {cause}")
