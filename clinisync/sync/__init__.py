"""Per-destination synchronization engine.

One SyncWorker per destination pushes dirty records and reconciles
acknowledgements with a compare-and-swap on the record's modification
time; the SyncCoordinator schedules the workers independently.
"""

from .coordinator import SyncCoordinator
from .transport import HttpDestination, PushAck, PushError, RemoteDestination
from .worker import SyncResult, SyncStatus, SyncWorker

__all__ = [
    "HttpDestination",
    "PushAck",
    "PushError",
    "RemoteDestination",
    "SyncCoordinator",
    "SyncResult",
    "SyncStatus",
    "SyncWorker",
]
