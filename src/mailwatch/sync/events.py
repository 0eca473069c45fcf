"""Decoding of inbound Gmail push notifications.

Pub/Sub push delivers a JSON envelope::

    {"message": {"data": "<base64>", "messageId": "...", ...}, "subscription": "..."}

``message.data`` base64-decodes to the Gmail notification
``{"emailAddress": "...", "historyId": 12345}``. Any deviation is a structural
error: the invocation stops before touching the cursor.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

from pydantic import ValidationError

from mailwatch.sync.errors import EventDecodeError
from mailwatch.sync.models import ChangeEvent

logger = logging.getLogger(__name__)


def decode_push_envelope(body: Any) -> bytes:
    """Unwrap the Pub/Sub push framing and return the raw message bytes."""
    if not isinstance(body, dict):
        raise EventDecodeError("Push body must be a JSON object")

    message = body.get("message")
    if not isinstance(message, dict):
        raise EventDecodeError("Push body has no 'message' object")

    data = message.get("data")
    if not isinstance(data, str) or not data:
        raise EventDecodeError("Push message has no 'data' payload")

    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EventDecodeError(f"Push message data is not valid base64: {exc}") from exc


def decode_change_event(data: bytes | str) -> ChangeEvent:
    """Parse raw notification bytes into a :class:`ChangeEvent`."""
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EventDecodeError(f"Notification payload is not UTF-8: {exc}") from exc
    else:
        text = data

    logger.debug("Raw notification received: %s", text)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse notification payload: %r", text)
        raise EventDecodeError(f"Invalid JSON message received: {exc.msg}") from exc

    if not isinstance(payload, dict):
        logger.error("Invalid notification format: %r", payload)
        raise EventDecodeError("Message must be a JSON object")

    try:
        return ChangeEvent.model_validate(payload)
    except ValidationError as exc:
        raise EventDecodeError(f"Notification is missing a usable historyId: {exc}") from exc
