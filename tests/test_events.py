"""Tests for inbound push decoding."""

from __future__ import annotations

import base64
import json

import pytest

from mailwatch.sync.errors import EventDecodeError
from mailwatch.sync.events import decode_change_event, decode_push_envelope
from mailwatch.sync.models import ChangeEvent

pytestmark = pytest.mark.unit


def _envelope(data: bytes | str) -> dict:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return {
        "message": {"data": base64.b64encode(data).decode("ascii"), "messageId": "1"},
        "subscription": "projects/p/subscriptions/s",
    }


class TestDecodeChangeEvent:
    """Tests for decode_change_event."""

    def test_numeric_history_id_is_coerced_to_string(self) -> None:
        event = decode_change_event(b'{"emailAddress": "a@example.com", "historyId": 456}')
        assert event == ChangeEvent(email_address="a@example.com", history_id="456")

    def test_string_history_id(self) -> None:
        event = decode_change_event('{"historyId": "789"}')
        assert event.history_id == "789"
        assert event.email_address is None

    def test_extra_fields_are_ignored(self) -> None:
        event = decode_change_event(json.dumps({"historyId": 1, "other": True}))
        assert event.history_id == "1"

    def test_invalid_json(self) -> None:
        with pytest.raises(EventDecodeError, match="Invalid JSON message received") as exc_info:
            decode_change_event(b"not json")
        assert exc_info.value.stage == "decode"

    def test_non_object_json(self) -> None:
        with pytest.raises(EventDecodeError, match="Message must be a JSON object"):
            decode_change_event(b"[1, 2, 3]")

    @pytest.mark.parametrize(
        "payload",
        ['{"emailAddress": "a@example.com"}', '{"historyId": ""}', '{"historyId": null}'],
    )
    def test_missing_history_id(self, payload: str) -> None:
        with pytest.raises(EventDecodeError):
            decode_change_event(payload)

    def test_non_utf8_bytes(self) -> None:
        with pytest.raises(EventDecodeError, match="not UTF-8"):
            decode_change_event(b"\xff\xfe")


class TestDecodePushEnvelope:
    """Tests for decode_push_envelope."""

    def test_returns_decoded_data(self) -> None:
        payload = '{"emailAddress": "a@example.com", "historyId": 12}'
        assert decode_push_envelope(_envelope(payload)) == payload.encode("utf-8")

    @pytest.mark.parametrize(
        "body",
        [None, [], {}, {"message": "x"}, {"message": {}}, {"message": {"data": ""}}],
    )
    def test_structural_errors(self, body) -> None:
        with pytest.raises(EventDecodeError):
            decode_push_envelope(body)

    def test_invalid_base64(self) -> None:
        with pytest.raises(EventDecodeError, match="not valid base64"):
            decode_push_envelope({"message": {"data": "!!not-base64!!"}})
