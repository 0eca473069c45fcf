"""Normalize a raw Gmail message into a :class:`CanonicalRecord`.

Only the top-level payload and its direct parts are inspected. Bodies are
copied in Gmail's base64url transfer encoding; decoding is left to consumers.
"""

from __future__ import annotations

import logging
from typing import Any

from mailwatch.sync.models import CanonicalRecord, RawRecord

logger = logging.getLogger(__name__)

_HEADER_FIELDS = {"To": "to", "From": "from_", "Subject": "subject"}


def _body_data(part: dict[str, Any]) -> str:
    body = part.get("body") or {}
    return body.get("data") or ""


def extract_record(raw: RawRecord) -> CanonicalRecord | None:
    """Build the canonical view of *raw*.

    Returns ``None`` when the payload carries no header list; such messages
    are skipped rather than treated as errors.

    Repeated ``To``/``From``/``Subject`` headers and repeated ``text/plain`` /
    ``text/html`` parts resolve to the last occurrence.
    """
    payload = raw.get("payload") or {}
    headers = payload.get("headers")
    if headers is None:
        logger.debug("Header is not defined for msgId: %s", raw.get("id"))
        return None

    fields: dict[str, str] = {
        "id": raw.get("id") or "",
        "snippet": raw.get("snippet") or "",
    }

    mime_type = payload.get("mimeType") or ""
    parts = payload.get("parts")
    if "plain" in mime_type:
        fields["body_text"] = _body_data(payload)
    elif not parts:
        logger.debug(
            "Parts is not defined for msgId: %s mimeType: %s", raw.get("id"), mime_type
        )
        fields["body_text"] = _body_data(payload)
    else:
        for part in parts:
            part_type = part.get("mimeType")
            if part_type == "text/plain":
                fields["body_text"] = _body_data(part)
            elif part_type == "text/html":
                fields["body_html"] = _body_data(part)

    for header in headers:
        field = _HEADER_FIELDS.get(header.get("name"))
        if field is not None:
            fields[field] = header.get("value") or ""

    return CanonicalRecord(**fields)
