"""
Event records built from logEvent arguments.

One class per event_type, each declaring which fields it knows and which of
those are numeric. Anything else the model sends rides along in `extra`.
The client clock, not the model, decides date and hour.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

DATE_FORMAT = "%Y-%m-%d"
HOUR_FORMAT = "%H:%M"


def to_number(value) -> int | float | None:
    """
    Numbers pass through; numeric strings ("250", "12.5") are parsed;
    anything else is None. Integral strings become int.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def format_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class EventRecord:
    event_type: str
    date: str
    hour: str
    fields: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict)

    KNOWN_FIELDS: ClassVar[tuple[str, ...]] = ()
    NUMERIC_FIELDS: ClassVar[tuple[str, ...]] = ()
    PRIMARY_FIELD: ClassVar[str | None] = None

    @classmethod
    def from_arguments(cls, arguments: dict, now: datetime | None = None) -> EventRecord:
        """
        Build the record for arguments["event_type"].

        Raises KeyError if event_type is missing or blank.
        """
        event_type = arguments.get("event_type")
        if not isinstance(event_type, str) or not event_type.strip():
            raise KeyError("event_type")
        event_type = event_type.strip()

        now = now or datetime.now()
        record_cls = EVENT_TYPES.get(event_type, OtherEvent)

        fields: dict = {}
        extra: dict = {}
        for key, value in arguments.items():
            if key in ("event_type", "date", "hour"):
                continue
            if key in record_cls.NUMERIC_FIELDS:
                number = to_number(value)
                if number is not None:
                    fields[key] = number
            elif key in record_cls.KNOWN_FIELDS:
                fields[key] = value
            else:
                extra[key] = value

        return record_cls(
            event_type=event_type,
            date=now.strftime(DATE_FORMAT),
            hour=now.strftime(HOUR_FORMAT),
            fields=fields,
            extra=extra,
        )

    @property
    def comments(self) -> str:
        value = self.fields.get("comments", self.extra.get("comments", ""))
        return "" if value is None else str(value)

    def dedup_key(self) -> str:
        """event_type|comments|primary value. Equal keys mean "already logged"."""
        primary = self.fields.get(self.PRIMARY_FIELD) if self.PRIMARY_FIELD else None
        return f"{self.event_type}|{self.comments}|{format_value(primary)}"

    def to_payload(self) -> dict:
        """Flat mapping sent to the webhook."""
        payload = {"event_type": self.event_type, "date": self.date, "hour": self.hour}
        payload.update(self.extra)
        payload.update(self.fields)
        return payload


@dataclass
class MealEvent(EventRecord):
    KNOWN_FIELDS = ("calories", "proteins", "fat", "carbs", "comments")
    NUMERIC_FIELDS = ("calories", "proteins", "fat", "carbs")
    PRIMARY_FIELD = "calories"


@dataclass
class WorkoutEvent(EventRecord):
    KNOWN_FIELDS = ("workout", "exercise", "sets", "reps", "weight", "comments")
    NUMERIC_FIELDS = ("sets", "reps", "weight")
    PRIMARY_FIELD = "workout"


@dataclass
class ExpenseEvent(EventRecord):
    KNOWN_FIELDS = ("category", "value", "currency", "comments")
    NUMERIC_FIELDS = ("value",)
    PRIMARY_FIELD = "value"


@dataclass
class OtherEvent(EventRecord):
    """An event_type this client does not know. Passed through untouched."""
    KNOWN_FIELDS = ("comments",)


EVENT_TYPES: dict[str, type[EventRecord]] = {
    "meal": MealEvent,
    "workout": WorkoutEvent,
    "expense": ExpenseEvent,
}
