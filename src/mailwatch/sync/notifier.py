"""Downstream notification of newly synced messages.

The downstream channel is opaque: anything with ``async notify(text)`` will
do. Notification is non-critical, so :func:`notify_best_effort` never raises.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from mailwatch.metrics import SyncMetrics, get_error_type
from mailwatch.sync.models import CanonicalRecord

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, text: str) -> None: ...


def sender_display_name(from_header: str) -> str:
    """``"Alice Smith <alice@example.com>"`` -> ``"Alice Smith"``."""
    return from_header.split("<", 1)[0].strip()


def format_summary(record: CanonicalRecord) -> str:
    return f"{sender_display_name(record.from_)}: {record.subject}\n\n{record.snippet}"


class LogNotifier:
    """Writes summaries to the log. Used when no downstream channel is configured."""

    async def notify(self, text: str) -> None:
        logger.info("Sending notification: %s", text)


class WebhookNotifier:
    """POSTs ``{"text": summary}`` to an HTTP endpoint."""

    def __init__(self, url: str, http_client: httpx.AsyncClient) -> None:
        self._url = url
        self._http_client = http_client

    async def notify(self, text: str) -> None:
        response = await self._http_client.post(self._url, json={"text": text})
        response.raise_for_status()


async def notify_best_effort(
    notifier: Notifier,
    text: str,
    *,
    record_id: str = "",
    metrics: SyncMetrics | None = None,
) -> bool:
    """Send *text*; log and swallow any failure."""
    try:
        await notifier.notify(text)
    except Exception as exc:
        logger.warning("Notification failed for msgId %s: %s", record_id, exc)
        if metrics is not None:
            metrics.record_notifier_send(status="error")
            metrics.record_error(get_error_type(exc), operation="notify")
        return False

    if metrics is not None:
        metrics.record_notifier_send(status="success")
    return True
