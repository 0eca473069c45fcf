"""Gmail API client for history-based delta sync.

Wraps the handful of Gmail REST endpoints the sync engine needs:

- ``users.history.list``: changes since a historyId (all pages)
- ``users.messages.get``: full message payload by id
- ``users.getProfile``: current mailbox historyId
- ``users.watch`` / ``users.stop``: Pub/Sub push registration

One :class:`GmailClient` is built per process and shared across invocations:
it owns a single ``httpx.AsyncClient`` and a token provider.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mailwatch.connectors.credentials import TokenProvider, format_google_error
from mailwatch.metrics import SyncMetrics, get_error_type

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"

# Safety valve against a server that keeps handing out page tokens.
MAX_HISTORY_PAGES = 500


class HistoryExpiredError(Exception):
    """The start historyId is older than Gmail's history retention window."""

    def __init__(self, start_history_id: str):
        self.start_history_id = start_history_id
        super().__init__(f"History ID {start_history_id} is too old or invalid")


class GmailClient:
    """Authenticated Gmail API client for one mailbox."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider,
        *,
        user_id: str = "me",
        metrics: SyncMetrics | None = None,
        base_url: str = GMAIL_API_BASE,
    ) -> None:
        self._http_client = http_client
        self._token_provider = token_provider
        self._user_id = user_id
        self._metrics = metrics
        self._base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self._base_url}/users/{self._user_id}/{path}"

    async def _headers(self) -> dict[str, str]:
        token = await self._token_provider.get_token()
        return {"Authorization": f"Bearer {token}"}

    def _record(self, api_method: str, status: str) -> None:
        if self._metrics is not None:
            self._metrics.record_source_api_call(api_method=api_method, status=status)

    def _log_failure(self, api_method: str, response: httpx.Response, **context: Any) -> None:
        google_error = format_google_error(response)
        ctx = " ".join(f"{key}={value}" for key, value in context.items())
        if google_error:
            logger.error(
                "Gmail %s failed status=%s %s details=%s",
                api_method,
                response.status_code,
                ctx,
                google_error,
            )
        else:
            logger.error("Gmail %s failed status=%s %s", api_method, response.status_code, ctx)

    async def list_history(
        self,
        start_history_id: str,
        *,
        label_id: str | None = None,
    ) -> dict[str, Any]:
        """Fetch every history page since *start_history_id*.

        Returns a single response-shaped dict: ``{"history": [...all pages...],
        "historyId": <latest>}``. ``history`` is absent when there were no
        changes, matching the Gmail API.

        Raises:
            HistoryExpiredError: Gmail answered 404 for the start id on the
                first page; a 404 on a later page is an ordinary HTTP error
            httpx.HTTPError: any other transport or API failure
        """
        history: list[dict[str, Any]] = []
        latest_history_id: str | None = None
        page_token: str | None = None

        for _ in range(MAX_HISTORY_PAGES):
            params: dict[str, Any] = {"startHistoryId": start_history_id}
            if label_id:
                params["labelId"] = label_id
            if page_token:
                params["pageToken"] = page_token

            try:
                response = await self._http_client.get(
                    self._url("history"),
                    params=params,
                    headers=await self._headers(),
                )
            except Exception as exc:
                self._record("history.list", "error")
                if self._metrics is not None:
                    self._metrics.record_error(get_error_type(exc), operation="fetch_history")
                raise

            if response.status_code == 404 and page_token:
                logger.warning(
                    "Gmail rejected history pageToken %s (startHistoryId=%s); "
                    "discarding %d entries from earlier pages",
                    page_token,
                    start_history_id,
                    len(history),
                )
            elif response.status_code == 404:
                google_error = format_google_error(response)
                logger.warning(
                    "History ID %s is too old, Gmail returned 404%s",
                    start_history_id,
                    f" details: {google_error}" if google_error else "",
                )
                self._record("history.list", "expired")
                raise HistoryExpiredError(start_history_id)

            if response.is_error:
                self._log_failure("history.list", response, startHistoryId=start_history_id)
                self._record("history.list", "error")
            response.raise_for_status()
            self._record("history.list", "success")

            data = response.json()
            history.extend(data.get("history") or [])
            latest_history_id = data.get("historyId", latest_history_id)
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        else:
            logger.warning(
                "Stopped following history pages after %d pages (startHistoryId=%s)",
                MAX_HISTORY_PAGES,
                start_history_id,
            )

        result: dict[str, Any] = {}
        if history:
            result["history"] = history
        if latest_history_id is not None:
            result["historyId"] = latest_history_id
        return result

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Fetch a full message; ``None`` when Gmail has no such message."""
        try:
            response = await self._http_client.get(
                self._url(f"messages/{message_id}"),
                params={"format": "full"},
                headers=await self._headers(),
            )
        except Exception as exc:
            self._record("messages.get", "error")
            if self._metrics is not None:
                self._metrics.record_error(get_error_type(exc), operation="fetch_message")
            raise

        if response.status_code == 404:
            self._record("messages.get", "not_found")
            return None
        if response.is_error:
            self._log_failure("messages.get", response, id=message_id)
            self._record("messages.get", "error")
        response.raise_for_status()
        self._record("messages.get", "success")

        data = response.json()
        return data or None

    async def get_profile(self) -> dict[str, Any]:
        """Fetch the mailbox profile (includes the current historyId)."""
        response = await self._http_client.get(
            self._url("profile"),
            headers=await self._headers(),
        )
        if response.is_error:
            self._log_failure("profile.get", response)
            self._record("profile.get", "error")
        response.raise_for_status()
        self._record("profile.get", "success")
        return response.json()

    async def watch(
        self,
        topic_name: str,
        label_ids: list[str],
        label_filter_action: str = "include",
    ) -> dict[str, Any]:
        """Register Pub/Sub push notifications for the mailbox."""
        response = await self._http_client.post(
            self._url("watch"),
            headers=await self._headers(),
            json={
                "topicName": topic_name,
                "labelIds": label_ids,
                "labelFilterAction": label_filter_action,
            },
        )
        if response.is_error:
            self._log_failure("watch", response, topic=topic_name)
            self._record("watch", "error")
        response.raise_for_status()
        self._record("watch", "success")
        return response.json()

    async def stop(self) -> None:
        """Stop any push notifications registered for the mailbox."""
        response = await self._http_client.post(
            self._url("stop"),
            headers=await self._headers(),
        )
        if response.is_error:
            self._log_failure("stop", response)
            self._record("stop", "error")
        response.raise_for_status()
        self._record("stop", "success")
