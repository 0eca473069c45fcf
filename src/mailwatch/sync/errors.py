"""Error taxonomy for a sync invocation.

Every terminal failure surfaces as one :class:`SyncError` whose ``stage`` names
where the invocation stopped. Per-record problems never become exceptions at
this level; they are logged and counted by the reconciler.
"""

from __future__ import annotations


class SyncError(Exception):
    """Terminal failure of a sync invocation."""

    stage: str = "reconcile"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        if stage is not None:
            self.stage = stage
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class EventDecodeError(SyncError):
    """Inbound payload is not a valid change notification."""

    stage = "decode"


class CursorStoreError(SyncError):
    """The stored cursor could not be read, parsed or written."""

    stage = "cursor"


class DeltaFetchError(SyncError):
    """The change list could not be fetched from the provider."""

    stage = "delta_fetch"
