"""Best-effort persistence of sync artifacts.

Key layout under the configured root prefix::

    {debug}{message_id}_msg.json      raw Gmail message (audit)
    {records}{message_id}_email.json  canonical record
    {debug}{history_id}.json          history.list response for a pass

No method here raises: a failed write is logged and counted, and the pass
carries on with the next record.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mailwatch.metrics import SyncMetrics, get_error_type
from mailwatch.storage.objects import ObjectStore
from mailwatch.sync.models import CanonicalRecord, RawRecord

logger = logging.getLogger(__name__)


class ArtifactSink:
    """Writes raw and canonical records next to the cursor."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        root_folder: str = "",
        records_folder: str = "emails/",
        debug_folder: str = "debug/",
        metrics: SyncMetrics | None = None,
    ) -> None:
        self._store = store
        self._root = root_folder
        self._records = records_folder
        self._debug = debug_folder
        self._metrics = metrics

    def raw_key(self, record_id: str) -> str:
        return f"{self._root}{self._debug}{record_id}_msg.json"

    def record_key(self, record_id: str) -> str:
        return f"{self._root}{self._records}{record_id}_email.json"

    def history_key(self, history_id: str) -> str:
        return f"{self._root}{self._debug}{history_id}.json"

    async def _store_best_effort(self, kind: str, key: str, data: bytes) -> bool:
        try:
            await self._store.write(key, data)
        except Exception as exc:
            logger.error("Failed to store %s artifact at %s: %s", kind, key, exc, exc_info=True)
            if self._metrics is not None:
                self._metrics.record_artifact_write(kind=kind, status="error")
                self._metrics.record_error(get_error_type(exc), operation=f"store_{kind}")
            return False

        if self._metrics is not None:
            self._metrics.record_artifact_write(kind=kind, status="success")
        return True

    async def store_raw(self, record_id: str, raw: RawRecord) -> bool:
        return await self._store_best_effort(
            "raw", self.raw_key(record_id), json.dumps(raw).encode("utf-8")
        )

    async def store_record(self, record_id: str, record: CanonicalRecord) -> bool:
        return await self._store_best_effort(
            "record", self.record_key(record_id), record.to_json_bytes()
        )

    async def store_history_snapshot(self, history_id: str, response: dict[str, Any]) -> bool:
        return await self._store_best_effort(
            "history", self.history_key(history_id), json.dumps(response).encode("utf-8")
        )
