"""Data model for the history sync engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Full message resource as returned by ``users.messages.get``; passed through
# untouched to the artifact sink.
RawRecord = dict[str, Any]


def _coerce_history_id(value: Any) -> Any:
    # Gmail push notifications carry historyId as a JSON number.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


class ChangeEvent(BaseModel):
    """Inbound notification: the mailbox changed and is now at ``history_id``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    email_address: str | None = Field(default=None, alias="emailAddress")
    history_id: str = Field(alias="historyId", min_length=1)

    @field_validator("history_id", mode="before")
    @classmethod
    def _validate_history_id(cls, value: Any) -> Any:
        return _coerce_history_id(value)


class SyncCursor(BaseModel):
    """Durable synchronization position for one mailbox.

    Stored as the notification object that produced it, e.g.
    ``{"emailAddress": "a@example.com", "historyId": "456"}``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    email_address: str | None = Field(default=None, alias="emailAddress")
    history_id: str = Field(alias="historyId", min_length=1)

    @field_validator("history_id", mode="before")
    @classmethod
    def _validate_history_id(cls, value: Any) -> Any:
        return _coerce_history_id(value)

    @classmethod
    def from_event(cls, event: ChangeEvent) -> SyncCursor:
        return cls(email_address=event.email_address, history_id=event.history_id)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class ChangeRecord(BaseModel):
    """One unit of change (a message) named by the change list."""

    model_config = ConfigDict(frozen=True)

    record_id: str = ""
    thread_id: str = ""

    @property
    def identity(self) -> str:
        """Dedup key: the record id, falling back to the thread id."""
        return self.record_id or self.thread_id


class CanonicalRecord(BaseModel):
    """Flat, normalized view of a Gmail message.

    Bodies keep Gmail's base64url transfer encoding.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = ""
    from_: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    snippet: str = ""
    body_text: str = Field(default="", alias="bodyText")
    body_html: str = Field(default="", alias="bodyHtml")

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class ReconciliationResult(BaseModel):
    """Outcome of one reconcile pass, for logging and callers."""

    start_history_id: str | None = None
    new_history_id: str
    first_run: bool = False
    history_expired: bool = False
    records_found: int = 0
    records_processed: int = 0
    processed_ids: list[str] = Field(default_factory=list)
    skipped_ids: list[str] = Field(default_factory=list)
