"""CLI for mailwatch: run the push service and manage the Gmail watch."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click
import httpx
import uvicorn

from mailwatch import __version__
from mailwatch.config import MailwatchConfig
from mailwatch.connectors.credentials import InvalidGoogleCredentialsError
from mailwatch.connectors.gmail import GmailClient
from mailwatch.core.logging import configure_logging
from mailwatch.metrics import SyncMetrics
from mailwatch.service import (
    HTTP_TIMEOUT_SECONDS,
    build_gmail_client,
    build_reconciler,
    create_app,
    process_notification,
)
from mailwatch.storage.objects import build_object_store
from mailwatch.sync.cursor import CursorStore
from mailwatch.sync.errors import SyncError
from mailwatch.sync.models import SyncCursor


def _load_config() -> MailwatchConfig:
    try:
        config = MailwatchConfig.from_env()
    except ValueError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=config.log_level,
        fmt=config.log_format,
        log_root=config.log_root,
    )
    return config


def _run(coro):
    """Run *coro*; Gmail, credential and sync failures exit with status 1."""
    try:
        return asyncio.run(coro)
    except InvalidGoogleCredentialsError as exc:
        click.echo(f"Invalid Gmail credentials: {exc}", err=True)
    except httpx.HTTPError as exc:
        click.echo(f"Gmail request failed: {exc}", err=True)
    except SyncError as exc:
        click.echo(f"Sync failed: {exc}", err=True)
    sys.exit(1)


def _read_payload(data: str) -> str:
    """``--data`` takes inline JSON or ``@path`` to a file holding it."""
    if data.startswith("@"):
        return Path(data[1:]).read_text(encoding="utf-8")
    return data


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """mailwatch: Gmail push notification history sync."""


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind")
@click.option("--port", type=int, default=None, help="Port (defaults to MAILWATCH_PORT)")
def serve(host: str, port: int | None) -> None:
    """Run the Pub/Sub push webhook service."""
    config = _load_config()
    port = port or config.port
    click.echo(f"mailwatch listening on {host}:{port}{config.push_path}")
    uvicorn.run(create_app(config), host=host, port=port, log_level="warning")


@cli.command("start-watch")
def start_watch() -> None:
    """Stop any existing Gmail watch, then start a new one."""
    config = _load_config()
    if not config.pubsub_topic:
        click.echo("MAILWATCH_PUBSUB_TOPIC environment variable is required", err=True)
        sys.exit(1)

    response, seeded_history_id = _run(_start_watch(config))
    click.echo(
        f"Watch started for {config.watch_account}: "
        f"historyId={response.get('historyId')} expiration={response.get('expiration')}"
    )
    if seeded_history_id is not None:
        click.echo(f"Initialized cursor at historyId={seeded_history_id}")


@cli.command("stop-watch")
def stop_watch() -> None:
    """Stop Gmail push notifications for the watched mailbox."""
    config = _load_config()
    _run(_stop_watch(config))
    click.echo(f"Watch stopped for {config.watch_account}")


@cli.command()
@click.option(
    "--data",
    required=True,
    help='Notification JSON, e.g. \'{"emailAddress": "a@b.c", "historyId": 1}\', or @file',
)
def process(data: str) -> None:
    """Run one sync invocation for a raw notification payload."""
    config = _load_config()
    try:
        payload = _read_payload(data)
    except OSError as exc:
        click.echo(f"Cannot read payload: {exc}", err=True)
        sys.exit(1)

    result = _run(_process(config, payload))

    click.echo(json.dumps(result.model_dump(), indent=2))


async def _start_watch(config: MailwatchConfig) -> tuple[dict, str | None]:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as http_client:
        gmail = build_gmail_client(config, http_client)
        await gmail.stop()
        response = await gmail.watch(
            config.pubsub_topic,
            list(config.label_ids),
            label_filter_action=config.label_filter_action,
        )
        return response, await _seed_cursor(config, gmail)


async def _seed_cursor(config: MailwatchConfig, gmail: GmailClient) -> str | None:
    """Store the mailbox's current historyId unless a cursor already exists."""
    cursor_store = CursorStore(build_object_store(config), config.cursor_key)
    if await cursor_store.exists():
        return None
    profile = await gmail.get_profile()
    cursor = SyncCursor(email_address=config.watch_account, history_id=profile["historyId"])
    await cursor_store.write(cursor)
    return cursor.history_id


async def _stop_watch(config: MailwatchConfig) -> None:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as http_client:
        await build_gmail_client(config, http_client).stop()


async def _process(config: MailwatchConfig, payload: str):
    metrics = SyncMetrics(config.endpoint_identity)
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as http_client:
        reconciler = build_reconciler(config, http_client, metrics)
        return await process_notification(reconciler, payload)
