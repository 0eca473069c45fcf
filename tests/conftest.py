"""Shared test fixtures for the mailwatch test suite."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest

from mailwatch import metrics as mailwatch_metrics
from mailwatch.config import MailwatchConfig
from mailwatch.metrics import SyncMetrics
from mailwatch.storage.objects import LocalObjectStore

ENDPOINT_IDENTITY = "gmail:user:user@example.com"


@pytest.fixture(autouse=True)
def clear_metrics() -> None:
    """Clear metrics before each test to avoid interference."""
    # Prometheus metrics are cumulative; reset the labeled children directly.
    for collector in [
        mailwatch_metrics.notifications_total,
        mailwatch_metrics.source_api_calls_total,
        mailwatch_metrics.cursor_saves_total,
        mailwatch_metrics.records_total,
        mailwatch_metrics.artifact_writes_total,
        mailwatch_metrics.notifier_sends_total,
        mailwatch_metrics.errors_total,
        mailwatch_metrics.reconcile_latency_seconds,
    ]:
        collector._metrics.clear()


@pytest.fixture
def authorized_user_secret() -> str:
    """Base64 authorized_user credentials document."""
    info = {
        "type": "authorized_user",
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
        "refresh_token": "test-refresh-token",
    }
    return base64.b64encode(json.dumps(info).encode("utf-8")).decode("ascii")


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def config(storage_dir: Path, authorized_user_secret: str) -> MailwatchConfig:
    """Create test config with local storage under tmp_path."""
    return MailwatchConfig(
        watch_account="user@example.com",
        label_ids=("INBOX",),
        gmail_secret=authorized_user_secret,
        storage_dir=storage_dir,
        root_folder="mail/",
    )


@pytest.fixture
def object_store(storage_dir: Path) -> LocalObjectStore:
    return LocalObjectStore(storage_dir)


@pytest.fixture
def metrics() -> SyncMetrics:
    return SyncMetrics(ENDPOINT_IDENTITY)
