"""Google credential decoding and access-token providers.

``MAILWATCH_GMAIL_SECRET`` holds a base64-encoded Google credentials JSON
document. Two document types are accepted:

- ``service_account``: domain-wide delegation; tokens are minted for the
  watched mailbox (``subject``) via google-auth.
- ``authorized_user``: an OAuth client id/secret plus a refresh token;
  tokens are refreshed against Google's token endpoint with httpx.

Secret material is never logged.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)

GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Refresh a little before Google's stated expiry.
_EXPIRY_SKEW = timedelta(seconds=60)


class InvalidGoogleCredentialsError(ValueError):
    """Raised when the configured secret cannot be decoded into usable credentials."""


class TokenProvider(Protocol):
    """Anything that can hand out a bearer token for Gmail API calls."""

    async def get_token(self) -> str: ...


class AuthorizedUserInfo(BaseModel):
    """OAuth client credentials plus a long-lived refresh token."""

    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_secret: str
    refresh_token: str
    token_uri: str = TOKEN_URI


def format_google_error(response: httpx.Response) -> str | None:
    """Summarize a Google error body as ``key=value`` pairs, or ``None``.

    Handles both the Gmail API shape (``{"error": {"code", "status",
    "errors": [{"reason"}], "message"}}``) and the OAuth token endpoint
    shape (``{"error": "invalid_grant", "error_description": ...}``).
    """
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None

    if isinstance(error, str) and error:
        description = payload.get("error_description")
        if description:
            return f"error={error}, description={description}"
        return f"error={error}"

    if not isinstance(error, dict):
        return None

    reason = next(
        (
            item["reason"]
            for item in error.get("errors") or []
            if isinstance(item, dict) and item.get("reason")
        ),
        None,
    )
    fields = {
        "code": error.get("code"),
        "status": error.get("status"),
        "reason": reason,
        "message": error.get("message"),
    }
    summary = ", ".join(f"{key}={value}" for key, value in fields.items() if value)
    return summary or None


def decode_secret(secret: str) -> dict[str, Any]:
    """Decode a base64 credentials document into a dict."""
    try:
        decoded = base64.b64decode(secret.strip(), validate=True).decode("utf-8")
        info = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidGoogleCredentialsError(
            "Gmail secret is not base64-encoded credentials JSON"
        ) from exc

    if not isinstance(info, dict):
        raise InvalidGoogleCredentialsError("Gmail secret must decode to a JSON object")
    return info


class AuthorizedUserTokenProvider:
    """Refresh-token flow against Google's OAuth token endpoint."""

    def __init__(self, info: AuthorizedUserInfo, http_client: httpx.AsyncClient) -> None:
        self._info = info
        self._http_client = http_client
        self._access_token: str | None = None
        self._token_expires_at: datetime | None = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Get valid OAuth access token (refresh if expired)."""
        async with self._lock:
            if self._access_token and self._token_expires_at:
                if datetime.now(UTC) < self._token_expires_at:
                    return self._access_token

            response = await self._http_client.post(
                self._info.token_uri,
                data={
                    "client_id": self._info.client_id,
                    "client_secret": self._info.client_secret,
                    "refresh_token": self._info.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            if response.is_error:
                google_error = format_google_error(response)
                if google_error:
                    logger.error(
                        "OAuth token refresh failed status=%s details=%s",
                        response.status_code,
                        google_error,
                    )
                else:
                    logger.error("OAuth token refresh failed status=%s", response.status_code)
            response.raise_for_status()
            token_data = response.json()

            self._access_token = token_data["access_token"]
            expires_in = int(token_data.get("expires_in", 3600))
            self._token_expires_at = datetime.now(UTC) + timedelta(seconds=expires_in) - _EXPIRY_SKEW

            logger.debug("Refreshed OAuth access token (expires in %ds)", expires_in)
            return self._access_token


class ServiceAccountTokenProvider:
    """Domain-wide delegated service account credentials (google-auth)."""

    def __init__(self, info: dict[str, Any], subject: str, scopes: list[str]) -> None:
        from google.oauth2 import service_account

        try:
            self._credentials = service_account.Credentials.from_service_account_info(
                info, scopes=scopes, subject=subject
            )
        except (ValueError, KeyError) as exc:
            raise InvalidGoogleCredentialsError(
                f"Invalid service account credentials: {exc}"
            ) from exc
        self._lock = asyncio.Lock()

    def _refresh(self) -> None:
        from google.auth.transport.requests import Request

        self._credentials.refresh(Request())

    async def get_token(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                # google-auth refresh is blocking (requests transport)
                await asyncio.to_thread(self._refresh)
                logger.debug("Refreshed service account access token")
            return self._credentials.token


def build_token_provider(
    secret: str,
    *,
    subject: str,
    http_client: httpx.AsyncClient,
    scopes: list[str] | None = None,
) -> TokenProvider:
    """Build a token provider from a base64 credentials secret."""
    info = decode_secret(secret)
    cred_type = info.get("type")

    if cred_type == "service_account":
        logger.info("Using service account credentials for %s", subject)
        return ServiceAccountTokenProvider(
            info, subject=subject, scopes=scopes or [GMAIL_READONLY_SCOPE]
        )

    if cred_type == "authorized_user":
        try:
            user_info = AuthorizedUserInfo.model_validate(info)
        except ValidationError as exc:
            raise InvalidGoogleCredentialsError(
                "authorized_user credentials need client_id, client_secret and refresh_token"
            ) from exc
        logger.info("Using authorized user credentials for %s", subject)
        return AuthorizedUserTokenProvider(user_info, http_client)

    raise InvalidGoogleCredentialsError(
        f"Unsupported credentials type: {cred_type!r} "
        "(expected 'service_account' or 'authorized_user')"
    )
