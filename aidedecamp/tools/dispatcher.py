"""
Tool call dispatcher: turns a finished tool call into a webhook operation
and the messages that fold its result back into the conversation.

    logEvent        -> normalize, de-duplicate, create on the webhook
    retrieveEvents  -> query the webhook, summarize the result for the model
    anything else   -> ValidationError(unknown_function), webhook untouched
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from aidedecamp.backends.webhook import WebhookGateway
from aidedecamp.errors import (
    MISSING_EVENT_TYPE,
    UNKNOWN_FUNCTION,
    AideError,
    ValidationError,
    user_message,
)
from aidedecamp.storage.models import EventEnvelope, ToolCall
from aidedecamp.tools.events import EventRecord, format_value
from aidedecamp.tools.schemas import LOG_EVENT, RETRIEVE_EVENTS

logger = logging.getLogger(__name__)

MAX_DETAIL_RECORDS = 20


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass
class DispatchResult:
    tool_call: ToolCall
    # Content of the role=tool message answering this call. None means the
    # call is left out of the follow-up turn entirely.
    tool_result: str | None = None


@dataclass
class LogAccepted(DispatchResult):
    record: EventRecord | None = None


@dataclass
class LogDuplicate(DispatchResult):
    record: EventRecord | None = None


@dataclass
class LogFailed(DispatchResult):
    record: EventRecord | None = None
    error: AideError | None = None


@dataclass
class RetrieveIssued(DispatchResult):
    filters: dict = field(default_factory=dict)
    envelope: EventEnvelope | None = None


def parse_arguments(raw: str) -> dict:
    """The model's argument JSON, or {} when it is not a JSON object."""
    try:
        parsed = json.loads(raw) if raw and raw.strip() else {}
    except json.JSONDecodeError as e:
        logger.warning("Tool call arguments are not valid JSON (%s): %.200s", e, raw)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Tool call arguments are not an object: %.200s", raw)
        return {}
    return parsed


def followup_messages(results: list[DispatchResult]) -> list[dict]:
    """
    The assistant tool_calls message plus one tool message per answered call.
    Duplicates contribute nothing, so an all-duplicate round yields [].
    """
    answered = [r for r in results if r.tool_result is not None]
    if not answered:
        return []
    messages: list[dict] = [{
        "role": "assistant",
        "content": "",
        "tool_calls": [r.tool_call.to_openai_format() for r in answered],
    }]
    for r in answered:
        messages.append({
            "role": "tool",
            "tool_call_id": r.tool_call.id,
            "name": r.tool_call.name,
            "content": r.tool_result,
        })
    return messages


def summarize_retrieval(envelope: EventEnvelope | None, filters: dict) -> str:
    """Plain-language digest of a retrieve response for the model to relay."""
    if envelope is None:
        return "An identical request is already in progress; no new data was fetched."

    meta = envelope.metadata
    count = meta.count if meta else len(envelope.data)

    scope = []
    if filters.get("event_type"):
        scope.append(f"type {filters['event_type']}")
    date_range = meta.date_range if meta else None
    start = (date_range.start if date_range else "") or filters.get("date_from", "")
    end = (date_range.end if date_range else "") or filters.get("date_to", "")
    if start or end:
        scope.append(f"from {start or 'the beginning'} to {end or 'today'}")

    noun = "record" if count == 1 else "records"
    lines = [f"Found {count} {noun}" + (f" ({', '.join(scope)})." if scope else ".")]
    if count == 0:
        lines.append("No matching events were logged.")

    aggs = meta.aggregations if meta else None
    if aggs:
        if aggs.total_calories is not None:
            lines.append(f"Total calories: {format_value(aggs.total_calories)} kcal.")
        if aggs.average_calories is not None:
            lines.append(f"Average calories: {round(aggs.average_calories, 1):g} kcal.")
        if aggs.total_value is not None:
            lines.append(f"Total value: {format_value(round(aggs.total_value, 2))}.")
        if aggs.total_workouts is not None:
            lines.append(f"Total workouts: {aggs.total_workouts}.")

    if filters.get("aggregation") == "details" and envelope.data:
        lines.append("Records:")
        for rec in envelope.data[:MAX_DETAIL_RECORDS]:
            head = f"- {rec.get('date', '?')} {rec.get('hour', '')}".rstrip()
            rest = ", ".join(
                f"{k}={format_value(v)}" for k, v in rec.items()
                if k not in ("id", "date", "hour") and v not in (None, "")
            )
            lines.append(f"{head}: {rest}" if rest else head)
        if len(envelope.data) > MAX_DETAIL_RECORDS:
            lines.append(f"... and {len(envelope.data) - MAX_DETAIL_RECORDS} more.")

    return "\n".join(lines)


def failure_message(tool_call: ToolCall, exc: BaseException) -> str:
    """User-visible text when a dispatch ends the turn."""
    if isinstance(exc, ValidationError):
        return user_message(exc)
    if tool_call.name == RETRIEVE_EVENTS:
        return f"Failed to retrieve your data. {user_message(exc)}"
    return user_message(exc)


class ToolDispatcher:
    """Routes finished tool calls to the webhook gateway."""

    def __init__(
        self,
        gateway: WebhookGateway,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.gateway = gateway
        self.clock = clock

    async def dispatch(self, tool_call: ToolCall, dedup: set[str]) -> DispatchResult:
        """
        Run one tool call.

        Raises ValidationError for an unknown function or a logEvent without
        event_type, and AideError if a retrieve fails. Log failures are
        reported back to the model as a tool result instead.
        """
        arguments = parse_arguments(tool_call.raw_arguments)
        logger.info("Dispatching %s(%s)", tool_call.name, tool_call.id)

        if tool_call.name == LOG_EVENT:
            return await self._log(tool_call, arguments, dedup)
        if tool_call.name == RETRIEVE_EVENTS:
            return await self._retrieve(tool_call, arguments)

        logger.warning("Model requested unknown function %r", tool_call.name)
        raise ValidationError(UNKNOWN_FUNCTION, tool_call.name)

    async def _log(self, tool_call: ToolCall, arguments: dict, dedup: set[str]) -> DispatchResult:
        try:
            record = EventRecord.from_arguments(arguments, now=self.clock())
        except KeyError:
            raise ValidationError(MISSING_EVENT_TYPE) from None

        key = record.dedup_key()
        if key in dedup:
            logger.info("Skipping duplicate %s event (%s)", record.event_type, key)
            return LogDuplicate(tool_call=tool_call, record=record)

        dedup.add(key)
        try:
            await self.gateway.create_event(record.to_payload())
        except AideError as e:
            # Not logged, so the same event may be tried again
            dedup.discard(key)
            logger.error("Logging %s event failed: %s", record.event_type, e)
            return LogFailed(
                tool_call=tool_call,
                record=record,
                error=e,
                tool_result=f"Failed to log the event: {user_message(e)}",
            )
        except BaseException:
            # Cancelled or crashed mid-create: not confirmed, so not a duplicate
            dedup.discard(key)
            raise

        return LogAccepted(
            tool_call=tool_call,
            record=record,
            tool_result=f"Event logged successfully on {record.date} at {record.hour}.",
        )

    async def _retrieve(self, tool_call: ToolCall, filters: dict) -> DispatchResult:
        envelope = await self.gateway.retrieve_events(filters)
        return RetrieveIssued(
            tool_call=tool_call,
            filters=filters,
            envelope=envelope,
            tool_result=summarize_retrieval(envelope, filters),
        )
