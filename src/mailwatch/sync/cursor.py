"""Durable cursor storage for one mailbox.

The cursor lives as a single JSON object under ``{root_folder}{history_file}``
in the configured object store. Any failure to read, parse or write it is a
:class:`CursorStoreError`: the invocation cannot proceed safely without a
cursor it can resume from.
"""

from __future__ import annotations

import logging
import time

from pydantic import ValidationError

from mailwatch.metrics import SyncMetrics, get_error_type
from mailwatch.storage.objects import ObjectNotFoundError, ObjectStore
from mailwatch.sync.errors import CursorStoreError
from mailwatch.sync.models import SyncCursor

logger = logging.getLogger(__name__)


class CursorStore:
    """Read/write the sync cursor for a single mailbox key."""

    def __init__(self, store: ObjectStore, key: str, metrics: SyncMetrics | None = None) -> None:
        self._store = store
        self._key = key
        self._metrics = metrics
        self.last_saved_at: float | None = None
        self.last_history_id: str | None = None

    @property
    def key(self) -> str:
        return self._key

    async def exists(self) -> bool:
        try:
            return await self._store.exists(self._key)
        except Exception as exc:
            raise CursorStoreError(f"Failed to check cursor {self._key}: {exc}") from exc

    async def read(self) -> SyncCursor:
        """Load the stored cursor.

        Raises:
            CursorStoreError: missing, unreadable or not a cursor document
        """
        try:
            data = await self._store.read(self._key)
        except ObjectNotFoundError as exc:
            raise CursorStoreError(f"Cursor not found: {self._key}") from exc
        except Exception as exc:
            raise CursorStoreError(f"Failed to read cursor {self._key}: {exc}") from exc

        try:
            cursor = SyncCursor.model_validate_json(data)
        except ValidationError as exc:
            logger.error("Failed to parse history file %s: %r", self._key, data[:200])
            raise CursorStoreError(f"Invalid JSON in history file: {exc}") from exc

        self.last_history_id = cursor.history_id
        return cursor

    async def load(self) -> SyncCursor | None:
        """Return the stored cursor, or ``None`` on the very first run."""
        if not await self.exists():
            logger.debug("History file %s does not exist", self._key)
            return None
        return await self.read()

    async def write(self, cursor: SyncCursor) -> None:
        """Persist *cursor*. Failures propagate as :class:`CursorStoreError`."""
        try:
            await self._store.write(self._key, cursor.to_json_bytes())
        except Exception as exc:
            if self._metrics is not None:
                self._metrics.record_cursor_save(status="error")
                self._metrics.record_error(get_error_type(exc), operation="cursor_save")
            raise CursorStoreError(f"Failed to write cursor {self._key}: {exc}") from exc

        self.last_saved_at = time.time()
        self.last_history_id = cursor.history_id
        if self._metrics is not None:
            self._metrics.record_cursor_save(status="success")
        logger.debug("Saved cursor: historyId=%s", cursor.history_id)
