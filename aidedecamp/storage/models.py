"""
Data models for the conversation and the webhook wire format.
These define the shape of data flowing through the core.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4

USER = "user"
ASSISTANT = "assistant"
SENDERS = (USER, ASSISTANT)

THINKING = "Thinking..."


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single visible chat message. Updated only by whole replacement."""
    sender: str                 # "user" or "assistant"
    text: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=_now)

    def __post_init__(self):
        if self.sender not in SENDERS:
            raise ValueError(f"unknown sender {self.sender!r}")

    @property
    def is_from_user(self) -> bool:
        return self.sender == USER

    @property
    def is_placeholder(self) -> bool:
        return self.sender == ASSISTANT and self.text == THINKING

    def with_text(self, text: str) -> Message:
        """Same identity, new text."""
        return replace(self, text=text)

    def to_openai_format(self) -> dict:
        """Export in OpenAI messages array format."""
        return {"role": self.sender, "content": self.text}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender": self.sender,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        ts = data.get("timestamp")
        return cls(
            id=data.get("id") or uuid4().hex,
            sender=data.get("sender", ASSISTANT),
            text=data.get("text", ""),
            timestamp=datetime.fromisoformat(ts) if ts else _now(),
        )


@dataclass(frozen=True)
class ToolCall:
    """A finalized tool call, reassembled from streamed fragments."""
    id: str
    name: str
    raw_arguments: str = ""

    def to_openai_format(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments},
        }


# ---------------------------------------------------------------------------
# Webhook response envelope
# ---------------------------------------------------------------------------

def _number(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


@dataclass
class Aggregations:
    total_calories: float | None = None
    average_calories: float | None = None
    total_value: float | None = None
    total_workouts: int | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> Aggregations | None:
        if not isinstance(data, dict):
            return None
        return cls(
            total_calories=_number(data.get("total_calories")),
            average_calories=_number(data.get("average_calories")),
            total_value=_number(data.get("total_value")),
            total_workouts=_number(data.get("total_workouts")),
        )


@dataclass
class DateRange:
    start: str = ""
    end: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> DateRange | None:
        if not isinstance(data, dict):
            return None
        return cls(start=str(data.get("from", "")), end=str(data.get("to", "")))


@dataclass
class ResponseMetadata:
    count: int = 0
    aggregations: Aggregations | None = None
    date_range: DateRange | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> ResponseMetadata | None:
        if not isinstance(data, dict):
            return None
        count = data.get("count", 0)
        return cls(
            count=count if isinstance(count, int) and not isinstance(count, bool) else 0,
            aggregations=Aggregations.from_dict(data.get("aggregations")),
            date_range=DateRange.from_dict(data.get("date_range")),
        )


@dataclass
class EventEnvelope:
    """Decoded webhook response: {success, request_id, data, metadata, error}."""
    success: bool
    request_id: str | None = None
    data: list[dict] = field(default_factory=list)
    metadata: ResponseMetadata | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> EventEnvelope:
        """Raises ValueError when the payload is not an envelope."""
        if not isinstance(payload, dict) or not isinstance(payload.get("success"), bool):
            raise ValueError("response is not an envelope with a boolean 'success'")
        records = payload.get("data") or []
        if not isinstance(records, list):
            raise ValueError("'data' must be an array")
        return cls(
            success=payload["success"],
            request_id=payload.get("request_id"),
            data=[r for r in records if isinstance(r, dict)],
            metadata=ResponseMetadata.from_dict(payload.get("metadata")),
            error=payload.get("error"),
        )
