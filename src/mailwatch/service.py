"""Invocation entrypoint and Pub/Sub push webhook service.

:func:`process_notification` is the transport-independent entrypoint: raw
notification bytes in, :class:`ReconciliationResult` or a single
:class:`SyncError` out.

:func:`create_app` wraps it in a FastAPI app:

- ``POST {push_path}``: Pub/Sub push delivery (optional bearer token)
- ``GET /health``: liveness plus the last cursor commit and invocation
- ``GET /metrics``: Prometheus exposition

Decode failures answer 400 so Pub/Sub dead-letters them without retrying a
payload that can never parse; every other sync failure answers 500 and is
redelivered.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Literal

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from pydantic import BaseModel

from mailwatch.config import MailwatchConfig
from mailwatch.connectors.credentials import build_token_provider
from mailwatch.connectors.gmail import GmailClient
from mailwatch.core.logging import sync_log_context
from mailwatch.metrics import SyncMetrics, get_error_type
from mailwatch.storage.objects import build_object_store
from mailwatch.sync.cursor import CursorStore
from mailwatch.sync.errors import EventDecodeError, SyncError
from mailwatch.sync.events import decode_change_event, decode_push_envelope
from mailwatch.sync.models import ReconciliationResult
from mailwatch.sync.notifier import LogNotifier, Notifier, WebhookNotifier
from mailwatch.sync.reconciler import DeltaReconciler
from mailwatch.sync.sink import ArtifactSink

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 30.0


class HealthStatus(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"]
    uptime_seconds: float
    last_cursor_save_at: str | None
    last_history_id: str | None
    last_invocation_at: str | None
    last_invocation_status: str | None
    timestamp: str


def _isoformat(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, UTC).isoformat()


async def process_notification(
    reconciler: DeltaReconciler,
    data: bytes | str,
) -> ReconciliationResult:
    """Run one sync invocation for a raw Gmail notification payload.

    Raises:
        SyncError: the invocation stopped; ``stage`` says where
    """
    event = decode_change_event(data)
    with sync_log_context(event.email_address, event.history_id):
        logger.info(
            "Processing notification for %s historyId=%s",
            event.email_address,
            event.history_id,
        )
        try:
            return await reconciler.handle(event)
        except SyncError:
            raise
        except Exception as exc:
            logger.error(
                "Unexpected failure reconciling historyId %s", event.history_id, exc_info=True
            )
            raise SyncError(f"Unexpected failure: {exc}") from exc


def build_notifier(config: MailwatchConfig, http_client: httpx.AsyncClient) -> Notifier:
    if config.notify_webhook_url:
        return WebhookNotifier(config.notify_webhook_url, http_client)
    return LogNotifier()


def build_gmail_client(
    config: MailwatchConfig,
    http_client: httpx.AsyncClient,
    metrics: SyncMetrics | None = None,
    scopes: list[str] | None = None,
) -> GmailClient:
    token_provider = build_token_provider(
        config.gmail_secret,
        subject=config.watch_account,
        http_client=http_client,
        scopes=scopes,
    )
    return GmailClient(http_client, token_provider, metrics=metrics)


def build_reconciler(
    config: MailwatchConfig,
    http_client: httpx.AsyncClient,
    metrics: SyncMetrics | None = None,
) -> DeltaReconciler:
    """Wire the shared Gmail client, object store and notifier into a reconciler."""
    store = build_object_store(config)
    return DeltaReconciler(
        build_gmail_client(config, http_client, metrics),
        CursorStore(store, config.cursor_key, metrics=metrics),
        ArtifactSink(
            store,
            root_folder=config.root_folder,
            records_folder=config.records_folder,
            debug_folder=config.debug_folder,
            metrics=metrics,
        ),
        build_notifier(config, http_client),
        watched_labels=config.watched_labels,
        label_filter=config.history_label_filter,
        commit_mode=config.cursor_commit_mode,
        metrics=metrics,
    )


class SyncService:
    """Serializes push invocations for one mailbox and tracks their outcome."""

    def __init__(self, reconciler: DeltaReconciler, metrics: SyncMetrics | None = None) -> None:
        self._reconciler = reconciler
        self._metrics = metrics
        self._lock = asyncio.Lock()
        self._start_time = time.time()
        self.last_invocation_at: float | None = None
        self.last_invocation_status: str | None = None

    def _finish(self, status: str) -> None:
        self.last_invocation_status = status
        if self._metrics is not None:
            self._metrics.record_notification(status)

    async def handle_push(self, body: Any) -> ReconciliationResult:
        """Decode a Pub/Sub push body and reconcile it."""
        async with self._lock:
            self.last_invocation_at = time.time()
            try:
                data = decode_push_envelope(body)
                result = await process_notification(self._reconciler, data)
            except EventDecodeError as exc:
                logger.warning("Rejected push notification: %s", exc)
                self._finish("decode_error")
                raise
            except SyncError as exc:
                logger.error("Sync invocation failed: %s", exc)
                if self._metrics is not None:
                    self._metrics.record_error(get_error_type(exc), operation=exc.stage)
                self._finish("error")
                raise

            self._finish("success")
            return result

    def health_status(self) -> HealthStatus:
        cursor_store = self._reconciler.cursor_store
        status: Literal["healthy", "unhealthy"] = "healthy"
        if self.last_invocation_status == "error":
            status = "unhealthy"

        return HealthStatus(
            status=status,
            uptime_seconds=time.time() - self._start_time,
            last_cursor_save_at=_isoformat(cursor_store.last_saved_at),
            last_history_id=cursor_store.last_history_id,
            last_invocation_at=_isoformat(self.last_invocation_at),
            last_invocation_status=self.last_invocation_status,
            timestamp=datetime.now(UTC).isoformat(),
        )


def create_app(config: MailwatchConfig, reconciler: DeltaReconciler | None = None) -> FastAPI:
    """Build the push webhook app.

    With no *reconciler*, the lifespan builds one around a shared
    ``httpx.AsyncClient`` that lives as long as the app.
    """
    metrics = SyncMetrics(config.endpoint_identity)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if reconciler is not None:
            yield
            return

        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as http_client:
            app.state.service = SyncService(
                build_reconciler(config, http_client, metrics), metrics
            )
            logger.info(
                "mailwatch service ready",
                extra={"account": config.watch_account, "path": config.push_path},
            )
            yield

    app = FastAPI(title="mailwatch", lifespan=lifespan)
    if reconciler is not None:
        app.state.service = SyncService(reconciler, metrics)

    @app.post(config.push_path)
    async def push(request: Request) -> JSONResponse:
        """Handle incoming Pub/Sub push notifications."""
        if config.webhook_token:
            auth_header = request.headers.get("Authorization", "")
            if auth_header != f"Bearer {config.webhook_token}":
                logger.warning("Webhook request with invalid or missing auth token")
                return JSONResponse({"status": "unauthorized"}, status_code=401)

        try:
            body = await request.json()
        except ValueError:
            body = None

        service: SyncService = request.app.state.service
        try:
            result = await service.handle_push(body)
        except EventDecodeError as exc:
            return JSONResponse(
                {"status": "error", "stage": exc.stage, "message": str(exc)}, status_code=400
            )
        except SyncError as exc:
            return JSONResponse(
                {"status": "error", "stage": exc.stage, "message": str(exc)}, status_code=500
            )

        return JSONResponse({"status": "ok", "result": result.model_dump()})

    @app.get("/health")
    async def health(request: Request) -> HealthStatus:
        return request.app.state.service.health_status()

    @app.get("/metrics")
    async def prometheus_metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app
