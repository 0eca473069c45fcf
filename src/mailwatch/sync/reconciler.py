"""Incremental history reconciliation.

One :class:`DeltaReconciler` pass turns a :class:`ChangeEvent` into:

1. a committed cursor (``before_fetch``: before the delta fetch;
   ``after_pass``: once the record loop has finished),
2. the history delta since the previous cursor, flattened over all pages,
3. an ordered, de-duplicated list of :class:`ChangeRecord`,
4. per record: fetch, extract, store artifacts, notify,
5. a debug snapshot of the history response.

Only cursor and delta-fetch failures abort a pass. Everything per record is
isolated: a record that cannot be fetched, extracted or stored is logged and
skipped.

The reconciler does no locking; callers serialize passes for a mailbox.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from typing import Any, Protocol

from opentelemetry import trace

from mailwatch.config import CursorCommitMode
from mailwatch.connectors.gmail import HistoryExpiredError
from mailwatch.metrics import SyncMetrics, get_error_type
from mailwatch.sync.cursor import CursorStore
from mailwatch.sync.errors import DeltaFetchError
from mailwatch.sync.extractor import extract_record
from mailwatch.sync.models import (
    ChangeEvent,
    ChangeRecord,
    ReconciliationResult,
    SyncCursor,
)
from mailwatch.sync.notifier import Notifier, format_summary, notify_best_effort
from mailwatch.sync.sink import ArtifactSink

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("mailwatch")


class ChangeSource(Protocol):
    async def list_history(
        self, start_history_id: str, *, label_id: str | None = None
    ) -> dict[str, Any]: ...

    async def get_message(self, message_id: str) -> dict[str, Any] | None: ...


def _to_change_record(message: dict[str, Any] | None) -> ChangeRecord | None:
    if not message:
        return None
    record = ChangeRecord(
        record_id=message.get("id") or "",
        thread_id=message.get("threadId") or "",
    )
    if not record.identity:
        return None
    return record


def collect_change_records(
    history: Iterable[dict[str, Any]],
    watched_labels: frozenset[str],
) -> list[ChangeRecord]:
    """Flatten history entries into change records, in upstream order.

    ``labelsAdded`` entries count only when one of the added labels is
    watched. ``messagesAdded`` entries always count. Within one history entry
    the label additions come first.
    """
    records: list[ChangeRecord] = []
    for entry in history:
        for added in entry.get("labelsAdded") or []:
            if not watched_labels.intersection(added.get("labelIds") or []):
                continue
            record = _to_change_record(added.get("message"))
            if record is not None:
                records.append(record)

        for added in entry.get("messagesAdded") or []:
            record = _to_change_record(added.get("message"))
            if record is not None:
                records.append(record)
    return records


def dedupe_records(records: Iterable[ChangeRecord]) -> list[ChangeRecord]:
    """Ordered de-duplication by identity; the first occurrence wins."""
    seen: set[str] = set()
    unique: list[ChangeRecord] = []
    for record in records:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        unique.append(record)
    return unique


class DeltaReconciler:
    """Advance one mailbox's cursor and process the messages in between."""

    def __init__(
        self,
        source: ChangeSource,
        cursor_store: CursorStore,
        sink: ArtifactSink,
        notifier: Notifier,
        *,
        watched_labels: Iterable[str],
        label_filter: str | None = None,
        commit_mode: CursorCommitMode = "before_fetch",
        metrics: SyncMetrics | None = None,
    ) -> None:
        self._source = source
        self._cursor_store = cursor_store
        self._sink = sink
        self._notifier = notifier
        self._watched_labels = frozenset(watched_labels)
        self._label_filter = label_filter
        self._commit_mode = commit_mode
        self._metrics = metrics

    @property
    def cursor_store(self) -> CursorStore:
        return self._cursor_store

    async def handle(self, event: ChangeEvent) -> ReconciliationResult:
        """Load the stored cursor and reconcile up to *event*."""
        previous = await self._cursor_store.load()
        return await self.reconcile(previous, event)

    async def reconcile(
        self,
        previous: SyncCursor | None,
        event: ChangeEvent,
    ) -> ReconciliationResult:
        started = time.monotonic()
        with tracer.start_as_current_span("mailwatch.sync.reconcile") as span:
            span.set_attribute("mailwatch.history_id", event.history_id)
            try:
                return await self._reconcile(previous, event)
            finally:
                if self._metrics is not None:
                    self._metrics.observe_reconcile(time.monotonic() - started)

    async def _reconcile(
        self,
        previous: SyncCursor | None,
        event: ChangeEvent,
    ) -> ReconciliationResult:
        new_cursor = SyncCursor.from_event(event)

        if previous is None:
            logger.info("No previous history found, storing historyId %s", event.history_id)
            await self._cursor_store.write(new_cursor)
            return ReconciliationResult(new_history_id=event.history_id, first_run=True)

        start_history_id = previous.history_id
        logger.info(
            "Reconciling history from %s to %s", start_history_id, event.history_id
        )

        if self._commit_mode == "before_fetch":
            await self._cursor_store.write(new_cursor)

        try:
            response = await self._fetch_history(start_history_id)
        except HistoryExpiredError:
            logger.warning(
                "History from %s is no longer available; resuming from %s",
                start_history_id,
                event.history_id,
            )
            if self._commit_mode == "after_pass":
                await self._cursor_store.write(new_cursor)
            return ReconciliationResult(
                start_history_id=start_history_id,
                new_history_id=event.history_id,
                history_expired=True,
            )

        records = dedupe_records(
            collect_change_records(response.get("history") or [], self._watched_labels)
        )

        processed_ids: list[str] = []
        skipped_ids: list[str] = []
        for record in records:
            if await self._process_record(record):
                processed_ids.append(record.record_id)
            else:
                skipped_ids.append(record.identity)

        logger.info(
            "Messages found: %d | Processed Messages: %d", len(records), len(processed_ids)
        )
        if processed_ids:
            logger.info("Processed msgIds: %s", ", ".join(processed_ids))

        await self._sink.store_history_snapshot(start_history_id, response)

        if self._commit_mode == "after_pass":
            await self._cursor_store.write(new_cursor)

        return ReconciliationResult(
            start_history_id=start_history_id,
            new_history_id=event.history_id,
            records_found=len(records),
            records_processed=len(processed_ids),
            processed_ids=processed_ids,
            skipped_ids=skipped_ids,
        )

    async def _fetch_history(self, start_history_id: str) -> dict[str, Any]:
        with tracer.start_as_current_span("mailwatch.sync.fetch_history"):
            try:
                return await self._source.list_history(
                    start_history_id, label_id=self._label_filter
                )
            except HistoryExpiredError:
                raise
            except Exception as exc:
                logger.error("Failed to list history from %s: %s", start_history_id, exc)
                raise DeltaFetchError(
                    f"Failed to list history from {start_history_id}: {exc}"
                ) from exc

    def _record_outcome(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_record(outcome)

    async def _process_record(self, record: ChangeRecord) -> bool:
        """Fetch, extract, store and notify one record.

        Returns True when the record was extracted and handed downstream.
        """
        with tracer.start_as_current_span("mailwatch.sync.process_record") as span:
            span.set_attribute("mailwatch.record_id", record.identity)

            if not record.record_id:
                logger.warning("Change for threadId %s carries no msgId, skipping", record.thread_id)
                self._record_outcome("fetch_missing")
                return False

            try:
                raw = await self._source.get_message(record.record_id)
            except Exception as exc:
                logger.error("Failed to fetch msgId %s: %s", record.record_id, exc)
                self._record_outcome("fetch_error")
                if self._metrics is not None:
                    self._metrics.record_error(get_error_type(exc), operation="fetch_message")
                return False

            if raw is None:
                logger.warning("No message found for msgId %s, skipping", record.record_id)
                self._record_outcome("fetch_missing")
                return False

            try:
                canonical = extract_record(raw)
            except Exception as exc:
                logger.error(
                    "Failed to extract msgId %s: %s", record.record_id, exc, exc_info=True
                )
                self._record_outcome("extract_error")
                if self._metrics is not None:
                    self._metrics.record_error(get_error_type(exc), operation="extract")
                return False

            if canonical is None:
                self._record_outcome("skipped_headerless")
                return False

            await self._sink.store_raw(record.record_id, raw)
            await self._sink.store_record(record.record_id, canonical)
            await notify_best_effort(
                self._notifier,
                format_summary(canonical),
                record_id=record.record_id,
                metrics=self._metrics,
            )
            self._record_outcome("processed")
            return True
