"""Tests for the cursor store."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from mailwatch.metrics import SyncMetrics, cursor_saves_total
from mailwatch.storage.objects import LocalObjectStore
from mailwatch.sync.cursor import CursorStore
from mailwatch.sync.errors import CursorStoreError
from mailwatch.sync.models import SyncCursor

pytestmark = pytest.mark.unit

KEY = "mail/history.json"
ENDPOINT_IDENTITY = "gmail:user:user@example.com"


@pytest.fixture
def cursor_store(object_store: LocalObjectStore, metrics: SyncMetrics) -> CursorStore:
    return CursorStore(object_store, KEY, metrics=metrics)


class TestCursorStore:
    """Tests for CursorStore read/write."""

    async def test_load_returns_none_when_absent(self, cursor_store: CursorStore) -> None:
        assert await cursor_store.exists() is False
        assert await cursor_store.load() is None

    async def test_read_missing_raises(self, cursor_store: CursorStore) -> None:
        with pytest.raises(CursorStoreError, match="Cursor not found") as exc_info:
            await cursor_store.read()
        assert exc_info.value.stage == "cursor"

    async def test_write_then_read(
        self, cursor_store: CursorStore, object_store: LocalObjectStore
    ) -> None:
        cursor = SyncCursor(email_address="user@example.com", history_id="456")
        await cursor_store.write(cursor)

        assert await cursor_store.read() == cursor
        assert cursor_store.last_history_id == "456"
        assert cursor_store.last_saved_at is not None

        stored = json.loads(await object_store.read(KEY))
        assert stored == {"emailAddress": "user@example.com", "historyId": "456"}

    async def test_email_address_omitted_when_absent(
        self, cursor_store: CursorStore, object_store: LocalObjectStore
    ) -> None:
        await cursor_store.write(SyncCursor(history_id="9"))
        assert json.loads(await object_store.read(KEY)) == {"historyId": "9"}

    async def test_reads_numeric_history_id(
        self, cursor_store: CursorStore, object_store: LocalObjectStore
    ) -> None:
        """A cursor file holding the raw notification (numeric id) still loads."""
        await object_store.write(KEY, b'{"emailAddress": "u@example.com", "historyId": 123}')
        cursor = await cursor_store.read()
        assert cursor.history_id == "123"

    async def test_invalid_json(
        self, cursor_store: CursorStore, object_store: LocalObjectStore
    ) -> None:
        await object_store.write(KEY, b"{not json")
        with pytest.raises(CursorStoreError, match="Invalid JSON in history file"):
            await cursor_store.read()

    async def test_cursor_without_history_id(
        self, cursor_store: CursorStore, object_store: LocalObjectStore
    ) -> None:
        await object_store.write(KEY, b'{"emailAddress": "u@example.com"}')
        with pytest.raises(CursorStoreError):
            await cursor_store.read()

    async def test_write_failure_raises(self, metrics: SyncMetrics) -> None:
        store = AsyncMock()
        store.write.side_effect = OSError("disk full")
        cursor_store = CursorStore(store, KEY, metrics=metrics)

        with pytest.raises(CursorStoreError, match="disk full"):
            await cursor_store.write(SyncCursor(history_id="1"))

        assert cursor_store.last_saved_at is None
        errors = cursor_saves_total.labels(
            endpoint_identity=ENDPOINT_IDENTITY, status="error"
        )._value.get()
        assert errors == 1.0

    async def test_successful_write_is_counted(self, cursor_store: CursorStore) -> None:
        await cursor_store.write(SyncCursor(history_id="1"))
        saves = cursor_saves_total.labels(
            endpoint_identity=ENDPOINT_IDENTITY, status="success"
        )._value.get()
        assert saves == 1.0

    async def test_backend_read_failure(self) -> None:
        store = AsyncMock()
        store.exists.return_value = True
        store.read.side_effect = RuntimeError("backend down")
        cursor_store = CursorStore(store, KEY)

        with pytest.raises(CursorStoreError, match="backend down"):
            await cursor_store.load()
