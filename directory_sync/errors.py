"""
Exception hierarchy shared by the sync components.

Component-specific errors live next to the code that raises them and derive
from SyncError so the orchestrator can map them to exit codes.
"""


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class OperationCancelled(SyncError):
    """Raised when the run's cancel event is set while work is in progress."""
    pass


class DirectoryError(SyncError):
    """Raised when the directory service cannot be reached or queried."""
    pass
