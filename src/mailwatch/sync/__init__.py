"""History sync engine.

Takes a mailbox change notification, replays the Gmail history delta since
the stored cursor and hands each new message to the artifact sink and the
notifier.
"""

from mailwatch.sync.cursor import CursorStore
from mailwatch.sync.errors import CursorStoreError, DeltaFetchError, EventDecodeError, SyncError
from mailwatch.sync.models import (
    CanonicalRecord,
    ChangeEvent,
    ChangeRecord,
    ReconciliationResult,
    SyncCursor,
)
from mailwatch.sync.reconciler import DeltaReconciler, collect_change_records, dedupe_records

__all__ = [
    "CanonicalRecord",
    "ChangeEvent",
    "ChangeRecord",
    "CursorStore",
    "CursorStoreError",
    "DeltaFetchError",
    "DeltaReconciler",
    "EventDecodeError",
    "ReconciliationResult",
    "SyncCursor",
    "SyncError",
    "collect_change_records",
    "dedupe_records",
]
