"""Runtime configuration for mailwatch.

All settings are resolved once from environment variables into a frozen
:class:`MailwatchConfig` and passed by reference to the components that need
them. The sync core never reads the environment itself.

Environment variables:
- MAILWATCH_WATCH_ACCOUNT (required; mailbox address to sync)
- MAILWATCH_LABEL_IDS (required; comma-separated watched label ids)
- MAILWATCH_GMAIL_SECRET (required; base64 Google credentials JSON)
- MAILWATCH_STORAGE_BACKEND (optional, "local" or "gcs", default "local")
- MAILWATCH_STORAGE_DIR (optional, default "./data"; local backend root)
- MAILWATCH_GCS_BUCKET (required when MAILWATCH_STORAGE_BACKEND=gcs)
- MAILWATCH_ROOT_FOLDER (optional, default "")
- MAILWATCH_HISTORY_FILE_NAME (optional, default "history.json")
- MAILWATCH_RECORDS_FOLDER (optional, default "emails/")
- MAILWATCH_DEBUG_FOLDER (optional, default "debug/")
- MAILWATCH_CURSOR_COMMIT_MODE (optional, "before_fetch" or "after_pass")
- MAILWATCH_PUBSUB_TOPIC (optional; required by ``mailwatch start-watch``)
- MAILWATCH_LABEL_FILTER_ACTION (optional, "include" or "exclude")
- MAILWATCH_NOTIFY_WEBHOOK_URL (optional; POST target for summaries)
- MAILWATCH_WEBHOOK_TOKEN (optional; bearer token required on the push endpoint)
- MAILWATCH_PUSH_PATH (optional, default "/gmail/push")
- MAILWATCH_PORT (optional, default 40083)
- LOG_LEVEL / LOG_FORMAT / LOG_ROOT (optional logging controls)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

CursorCommitMode = Literal["before_fetch", "after_pass"]


def _normalize_folder(value: str) -> str:
    """Folder prefixes are joined by plain concatenation, so they end with '/'."""
    value = value.strip()
    if value and not value.endswith("/"):
        value += "/"
    return value


def _parse_int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw}") from exc


def _require(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ValueError(f"{name} environment variable is required")
    return value


class MailwatchConfig(BaseModel):
    """Resolved settings for one watched mailbox."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Mailbox identity
    watch_account: str
    label_ids: tuple[str, ...]
    gmail_secret: str

    # Storage layout
    storage_backend: Literal["local", "gcs"] = "local"
    storage_dir: Path = Path("./data")
    gcs_bucket: str | None = None
    root_folder: str = ""
    history_file_name: str = "history.json"
    records_folder: str = "emails/"
    debug_folder: str = "debug/"

    # Sync behavior
    cursor_commit_mode: CursorCommitMode = "before_fetch"

    # Watch registration
    pubsub_topic: str | None = None
    label_filter_action: Literal["include", "exclude"] = "include"

    # Downstream notification
    notify_webhook_url: str | None = None

    # Push endpoint
    webhook_token: str | None = None
    push_path: str = "/gmail/push"
    port: int = 40083

    # Logging
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_root: Path | None = None

    @field_validator("label_ids")
    @classmethod
    def _validate_label_ids(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(label.strip() for label in value if label.strip())
        if not cleaned:
            raise ValueError("label_ids must contain at least one label id")
        return cleaned

    @field_validator("root_folder", "records_folder", "debug_folder")
    @classmethod
    def _validate_folder(cls, value: str) -> str:
        return _normalize_folder(value)

    @property
    def watched_labels(self) -> frozenset[str]:
        return frozenset(self.label_ids)

    @property
    def history_label_filter(self) -> str | None:
        """Label id passed to ``history.list``.

        The Gmail API accepts a single ``labelId``; with several watched labels
        the list is left unfiltered and the label intersection does the work.
        """
        if len(self.label_ids) == 1:
            return self.label_ids[0]
        return None

    @property
    def cursor_key(self) -> str:
        return f"{self.root_folder}{self.history_file_name}"

    @property
    def endpoint_identity(self) -> str:
        return f"gmail:user:{self.watch_account}"

    @classmethod
    def _load_env_config(cls) -> dict[str, Any]:
        """Load config values from environment variables."""
        backend = os.environ.get("MAILWATCH_STORAGE_BACKEND", "local").strip().lower()
        if backend not in ("local", "gcs"):
            raise ValueError(f"MAILWATCH_STORAGE_BACKEND must be 'local' or 'gcs', got: {backend}")

        gcs_bucket = os.environ.get("MAILWATCH_GCS_BUCKET", "").strip() or None
        if backend == "gcs" and not gcs_bucket:
            raise ValueError("MAILWATCH_GCS_BUCKET is required when MAILWATCH_STORAGE_BACKEND=gcs")

        commit_mode = os.environ.get("MAILWATCH_CURSOR_COMMIT_MODE", "before_fetch").strip()
        if commit_mode not in ("before_fetch", "after_pass"):
            raise ValueError(
                "MAILWATCH_CURSOR_COMMIT_MODE must be 'before_fetch' or 'after_pass', "
                f"got: {commit_mode}"
            )

        log_root = os.environ.get("LOG_ROOT", "").strip()

        return {
            "watch_account": _require("MAILWATCH_WATCH_ACCOUNT"),
            "label_ids": tuple(_require("MAILWATCH_LABEL_IDS").split(",")),
            "gmail_secret": _require("MAILWATCH_GMAIL_SECRET"),
            "storage_backend": backend,
            "storage_dir": Path(os.environ.get("MAILWATCH_STORAGE_DIR", "./data")),
            "gcs_bucket": gcs_bucket,
            "root_folder": os.environ.get("MAILWATCH_ROOT_FOLDER", ""),
            "history_file_name": os.environ.get("MAILWATCH_HISTORY_FILE_NAME", "history.json"),
            "records_folder": os.environ.get("MAILWATCH_RECORDS_FOLDER", "emails/"),
            "debug_folder": os.environ.get("MAILWATCH_DEBUG_FOLDER", "debug/"),
            "cursor_commit_mode": commit_mode,
            "pubsub_topic": os.environ.get("MAILWATCH_PUBSUB_TOPIC", "").strip() or None,
            "label_filter_action": os.environ.get("MAILWATCH_LABEL_FILTER_ACTION", "include"),
            "notify_webhook_url": os.environ.get("MAILWATCH_NOTIFY_WEBHOOK_URL", "").strip()
            or None,
            "webhook_token": os.environ.get("MAILWATCH_WEBHOOK_TOKEN", "").strip() or None,
            "push_path": os.environ.get("MAILWATCH_PUSH_PATH", "/gmail/push"),
            "port": _parse_int("MAILWATCH_PORT", "40083"),
            "log_level": os.environ.get("LOG_LEVEL", "INFO"),
            "log_format": os.environ.get("LOG_FORMAT", "text"),
            "log_root": Path(log_root) if log_root else None,
        }

    @classmethod
    def from_env(cls, **overrides: Any) -> MailwatchConfig:
        """Build config from the environment; keyword overrides win."""
        config_kwargs = cls._load_env_config()
        config_kwargs.update(overrides)
        return cls(**config_kwargs)
