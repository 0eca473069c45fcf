"""Tests for Google credential decoding and token providers."""

from __future__ import annotations

import base64
import json
import logging
from unittest.mock import MagicMock, patch

import httpx
import pytest

from mailwatch.connectors.credentials import (
    AuthorizedUserInfo,
    AuthorizedUserTokenProvider,
    InvalidGoogleCredentialsError,
    ServiceAccountTokenProvider,
    build_token_provider,
    decode_secret,
    format_google_error,
)

pytestmark = pytest.mark.unit


def _encode(info: dict) -> str:
    return base64.b64encode(json.dumps(info).encode("utf-8")).decode("ascii")


class TestDecodeSecret:
    """Tests for decode_secret."""

    def test_decodes_json_object(self) -> None:
        assert decode_secret(_encode({"type": "authorized_user"})) == {"type": "authorized_user"}

    def test_rejects_non_base64(self) -> None:
        with pytest.raises(InvalidGoogleCredentialsError, match="not base64-encoded"):
            decode_secret("%%%")

    def test_rejects_non_object(self) -> None:
        secret = base64.b64encode(b"[1]").decode("ascii")
        with pytest.raises(InvalidGoogleCredentialsError, match="JSON object"):
            decode_secret(secret)


class TestFormatGoogleError:
    """Tests for format_google_error."""

    def test_api_error_shape(self) -> None:
        response = httpx.Response(
            403,
            json={
                "error": {
                    "code": 403,
                    "status": "PERMISSION_DENIED",
                    "errors": [{"reason": "insufficientPermissions"}],
                    "message": "Insufficient Permission",
                }
            },
        )
        assert format_google_error(response) == (
            "code=403, status=PERMISSION_DENIED, reason=insufficientPermissions, "
            "message=Insufficient Permission"
        )

    def test_oauth_error_shape(self) -> None:
        response = httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Token revoked"}
        )
        assert format_google_error(response) == "error=invalid_grant, description=Token revoked"

    def test_non_json_body(self) -> None:
        assert format_google_error(httpx.Response(502, text="<html>")) is None


class TestAuthorizedUserTokenProvider:
    """Tests for the refresh-token flow."""

    @pytest.fixture
    def info(self) -> AuthorizedUserInfo:
        return AuthorizedUserInfo(
            client_id="cid", client_secret="csecret", refresh_token="rtoken"
        )

    async def test_refreshes_and_caches_token(self, info: AuthorizedUserInfo) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = AuthorizedUserTokenProvider(info, client)
            assert await provider.get_token() == "tok-1"
            assert await provider.get_token() == "tok-1"

        assert len(calls) == 1
        form = dict(httpx.QueryParams(calls[0].content.decode("utf-8")))
        assert form == {
            "client_id": "cid",
            "client_secret": "csecret",
            "refresh_token": "rtoken",
            "grant_type": "refresh_token",
        }

    async def test_refresh_failure_logs_details_without_secret(
        self, info: AuthorizedUserInfo, caplog: pytest.LogCaptureFixture
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = AuthorizedUserTokenProvider(info, client)
            with caplog.at_level(logging.ERROR):
                with pytest.raises(httpx.HTTPStatusError):
                    await provider.get_token()

        assert "OAuth token refresh failed status=400 details=error=invalid_grant" in caplog.text
        assert "csecret" not in caplog.text
        assert "rtoken" not in caplog.text


class TestBuildTokenProvider:
    """Tests for build_token_provider."""

    async def test_authorized_user(self, authorized_user_secret: str) -> None:
        async with httpx.AsyncClient() as client:
            provider = build_token_provider(
                authorized_user_secret, subject="u@example.com", http_client=client
            )
        assert isinstance(provider, AuthorizedUserTokenProvider)

    async def test_authorized_user_missing_fields(self) -> None:
        secret = _encode({"type": "authorized_user", "client_id": "cid"})
        async with httpx.AsyncClient() as client:
            with pytest.raises(InvalidGoogleCredentialsError, match="refresh_token"):
                build_token_provider(secret, subject="u@example.com", http_client=client)

    async def test_service_account_uses_subject(self) -> None:
        secret = _encode({"type": "service_account", "client_email": "sa@p.iam"})
        with patch(
            "google.oauth2.service_account.Credentials.from_service_account_info"
        ) as from_info:
            async with httpx.AsyncClient() as client:
                provider = build_token_provider(
                    secret, subject="u@example.com", http_client=client
                )

        assert isinstance(provider, ServiceAccountTokenProvider)
        _, kwargs = from_info.call_args
        assert kwargs["subject"] == "u@example.com"
        assert kwargs["scopes"] == ["https://www.googleapis.com/auth/gmail.readonly"]

    async def test_unknown_type(self) -> None:
        async with httpx.AsyncClient() as client:
            with pytest.raises(InvalidGoogleCredentialsError, match="Unsupported credentials"):
                build_token_provider(
                    _encode({"type": "external_account"}),
                    subject="u@example.com",
                    http_client=client,
                )


class TestServiceAccountTokenProvider:
    """Tests for the service-account provider."""

    async def test_refreshes_only_when_invalid(self) -> None:
        credentials = MagicMock()
        credentials.valid = False
        credentials.token = "sa-token"

        def refresh(request) -> None:
            credentials.valid = True

        credentials.refresh.side_effect = refresh

        with patch(
            "google.oauth2.service_account.Credentials.from_service_account_info",
            return_value=credentials,
        ):
            provider = ServiceAccountTokenProvider({}, subject="u@example.com", scopes=["s"])

        assert await provider.get_token() == "sa-token"
        assert await provider.get_token() == "sa-token"
        credentials.refresh.assert_called_once()

    def test_invalid_info(self) -> None:
        with patch(
            "google.oauth2.service_account.Credentials.from_service_account_info",
            side_effect=ValueError("missing fields"),
        ):
            with pytest.raises(InvalidGoogleCredentialsError, match="missing fields"):
                ServiceAccountTokenProvider({}, subject="u@example.com", scopes=["s"])
