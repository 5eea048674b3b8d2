"""
Tests for event normalization, de-duplication and tool dispatch.
Run with: pytest tests/test_dispatcher.py
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from aidedecamp.errors import (
    MISSING_EVENT_TYPE,
    TIMEOUT,
    UNKNOWN_FUNCTION,
    NetworkError,
    ServerReportedError,
    ValidationError,
    user_message,
)
from aidedecamp.storage.models import EventEnvelope, ToolCall
from aidedecamp.tools.dispatcher import (
    LogAccepted,
    LogDuplicate,
    LogFailed,
    RetrieveIssued,
    ToolDispatcher,
    failure_message,
    followup_messages,
    parse_arguments,
    summarize_retrieval,
)
from aidedecamp.tools.events import (
    EventRecord,
    ExpenseEvent,
    MealEvent,
    OtherEvent,
    WorkoutEvent,
    to_number,
)


def _call(name: str, arguments: str, id: str = "call_1") -> ToolCall:
    return ToolCall(id=id, name=name, raw_arguments=arguments)


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.create_event = AsyncMock(return_value=EventEnvelope(success=True))
    gw.retrieve_events = AsyncMock(return_value=EventEnvelope.from_dict({
        "success": True,
        "data": [{"id": 1, "event_type": "meal", "date": "2025-09-06", "hour": "12:30", "calories": 600}],
        "metadata": {"count": 1, "aggregations": {"total_calories": 600.0}},
    }))
    return gw


@pytest.fixture
def dispatcher(gateway, fixed_now):
    return ToolDispatcher(gateway, clock=lambda: fixed_now)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw,expected", [
    (250, 250),
    (12.5, 12.5),
    ("250", 250),
    (" 12.5 ", 12.5),
    ("lots", None),
    ("", None),
    (True, None),
    (None, None),
    (float("nan"), None),
    ("inf", None),
])
def test_to_number(raw, expected):
    assert to_number(raw) == expected


def test_numeric_strings_are_coerced(fixed_now):
    """calories "250" is sent as the number 250."""
    record = EventRecord.from_arguments({"event_type": "meal", "calories": "250"}, now=fixed_now)
    assert isinstance(record, MealEvent)
    assert record.to_payload()["calories"] == 250


def test_unparseable_numeric_fields_are_dropped(fixed_now):
    record = EventRecord.from_arguments(
        {"event_type": "meal", "calories": "a lot", "comments": "pizza"}, now=fixed_now,
    )
    payload = record.to_payload()
    assert "calories" not in payload
    assert payload["comments"] == "pizza"


def test_date_and_hour_come_from_clock(fixed_now):
    """Model-supplied date/hour are ignored."""
    record = EventRecord.from_arguments(
        {"event_type": "workout", "date": "1999-01-01", "hour": "03:00", "workout": "legs"},
        now=fixed_now,
    )
    payload = record.to_payload()
    assert payload["date"] == "2025-09-07"
    assert payload["hour"] == "13:45"


def test_event_type_selects_record_class(fixed_now):
    assert isinstance(EventRecord.from_arguments({"event_type": "workout"}, now=fixed_now), WorkoutEvent)
    assert isinstance(EventRecord.from_arguments({"event_type": "expense"}, now=fixed_now), ExpenseEvent)
    other = EventRecord.from_arguments({"event_type": "sleep", "hours": 7}, now=fixed_now)
    assert isinstance(other, OtherEvent)
    assert other.to_payload()["hours"] == 7


@pytest.mark.parametrize("arguments", [{}, {"event_type": ""}, {"event_type": "  "}, {"event_type": 3}])
def test_missing_event_type_raises_key_error(arguments, fixed_now):
    with pytest.raises(KeyError):
        EventRecord.from_arguments(arguments, now=fixed_now)


def test_dedup_keys(fixed_now):
    """event_type|comments|primary field, formatted without trailing .0."""
    meal = EventRecord.from_arguments({"event_type": "meal", "calories": 250.0, "comments": "salad"}, now=fixed_now)
    expense = EventRecord.from_arguments({"event_type": "expense", "value": "12", "comments": "lunch"}, now=fixed_now)
    workout = EventRecord.from_arguments({"event_type": "workout", "workout": "push"}, now=fixed_now)
    other = EventRecord.from_arguments({"event_type": "note"}, now=fixed_now)

    assert meal.dedup_key() == "meal|salad|250"
    assert expense.dedup_key() == "expense|lunch|12"
    assert workout.dedup_key() == "workout||push"
    assert other.dedup_key() == "note||"


def test_parse_arguments_tolerates_garbage():
    assert parse_arguments('{"event_type": "meal"}') == {"event_type": "meal"}
    assert parse_arguments("") == {}
    assert parse_arguments("{not json") == {}
    assert parse_arguments("[1, 2]") == {}


# ---------------------------------------------------------------------------
# logEvent
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_log_event_creates_record(dispatcher, gateway):
    dedup: set[str] = set()
    result = await dispatcher.dispatch(
        _call("logEvent", '{"event_type": "meal", "calories": "250", "comments": "salad"}'),
        dedup,
    )

    assert isinstance(result, LogAccepted)
    assert result.tool_result == "Event logged successfully on 2025-09-07 at 13:45."
    gateway.create_event.assert_awaited_once_with({
        "event_type": "meal",
        "date": "2025-09-07",
        "hour": "13:45",
        "calories": 250,
        "comments": "salad",
    })
    assert dedup == {"meal|salad|250"}


@pytest.mark.asyncio
async def test_duplicate_in_session_is_not_created_again(dispatcher, gateway):
    """Two identical expenses in one session produce exactly one create."""
    dedup: set[str] = set()
    args = '{"event_type": "expense", "comments": "lunch", "value": 12}'

    first = await dispatcher.dispatch(_call("logEvent", args, id="a"), dedup)
    second = await dispatcher.dispatch(_call("logEvent", args, id="b"), dedup)

    assert isinstance(first, LogAccepted)
    assert isinstance(second, LogDuplicate)
    assert second.tool_result is None
    assert gateway.create_event.await_count == 1


@pytest.mark.asyncio
async def test_failed_create_releases_dedup_key(dispatcher, gateway):
    """A create that failed is reported to the model and may be retried."""
    gateway.create_event.side_effect = NetworkError(TIMEOUT)
    dedup: set[str] = set()

    result = await dispatcher.dispatch(_call("logEvent", '{"event_type": "meal", "calories": 100}'), dedup)

    assert isinstance(result, LogFailed)
    assert result.tool_result.startswith("Failed to log the event: ")
    assert dedup == set()


@pytest.mark.asyncio
async def test_cancelled_create_releases_dedup_key(dispatcher, gateway):
    """An event whose create never finished is not treated as logged."""
    started = asyncio.Event()

    async def slow_create(payload):
        started.set()
        await asyncio.Event().wait()

    gateway.create_event.side_effect = slow_create
    dedup: set[str] = set()
    call = _call("logEvent", '{"event_type": "expense", "comments": "lunch", "value": 12}')

    task = asyncio.create_task(dispatcher.dispatch(call, dedup))
    await started.wait()
    assert dedup == {"expense|lunch|12"}

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert dedup == set()


@pytest.mark.asyncio
async def test_log_without_event_type_is_a_validation_error(dispatcher, gateway):
    with pytest.raises(ValidationError) as exc_info:
        await dispatcher.dispatch(_call("logEvent", '{"calories": 100}'), set())
    assert exc_info.value.kind == MISSING_EVENT_TYPE
    gateway.create_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_unparseable_arguments_mean_missing_event_type(dispatcher):
    with pytest.raises(ValidationError) as exc_info:
        await dispatcher.dispatch(_call("logEvent", "{broken"), set())
    assert exc_info.value.kind == MISSING_EVENT_TYPE


@pytest.mark.asyncio
async def test_unknown_function(dispatcher, gateway):
    """Unknown names never reach the webhook."""
    with pytest.raises(ValidationError) as exc_info:
        await dispatcher.dispatch(_call("deleteEverything", "{}"), set())

    assert exc_info.value.kind == UNKNOWN_FUNCTION
    assert user_message(exc_info.value) == "Unknown function requested: deleteEverything."
    gateway.create_event.assert_not_awaited()
    gateway.retrieve_events.assert_not_awaited()


# ---------------------------------------------------------------------------
# retrieveEvents
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_retrieve_summarizes_response(dispatcher, gateway):
    result = await dispatcher.dispatch(
        _call("retrieveEvents", '{"event_type": "meal", "aggregation": "sum"}'), set(),
    )

    assert isinstance(result, RetrieveIssued)
    gateway.retrieve_events.assert_awaited_once_with({"event_type": "meal", "aggregation": "sum"})
    assert "Found 1 record (type meal)." in result.tool_result
    assert "Total calories: 600 kcal." in result.tool_result


@pytest.mark.asyncio
async def test_retrieve_failure_propagates(dispatcher, gateway):
    gateway.retrieve_events.side_effect = ServerReportedError("sheet locked")
    call = _call("retrieveEvents", '{"event_type": "meal"}')

    with pytest.raises(ServerReportedError) as exc_info:
        await dispatcher.dispatch(call, set())

    assert failure_message(call, exc_info.value) == "Failed to retrieve your data. sheet locked"


def test_summary_for_dropped_duplicate_request():
    assert "already in progress" in summarize_retrieval(None, {})


def test_summary_with_no_records():
    envelope = EventEnvelope.from_dict({"success": True, "data": [], "metadata": {"count": 0}})
    summary = summarize_retrieval(envelope, {"date_from": "2025-09-01", "date_to": "2025-09-07"})
    assert summary.splitlines() == [
        "Found 0 records (from 2025-09-01 to 2025-09-07).",
        "No matching events were logged.",
    ]


def test_summary_details_are_capped():
    records = [{"id": i, "date": "2025-09-01", "hour": "10:00", "calories": i} for i in range(25)]
    envelope = EventEnvelope.from_dict({"success": True, "data": records, "metadata": {"count": 25}})
    summary = summarize_retrieval(envelope, {"aggregation": "details"})

    lines = summary.splitlines()
    assert lines[1] == "Records:"
    assert lines[2] == "- 2025-09-01 10:00: calories=0"
    assert len([l for l in lines if l.startswith("- ")]) == 20
    assert lines[-1] == "... and 5 more."


# ---------------------------------------------------------------------------
# Follow-up messages
# ---------------------------------------------------------------------------

def test_followup_messages_pair_calls_with_results():
    call = _call("logEvent", '{"event_type": "meal"}', id="c1")
    messages = followup_messages([LogAccepted(tool_call=call, tool_result="done")])

    assert messages == [
        {"role": "assistant", "content": "", "tool_calls": [call.to_openai_format()]},
        {"role": "tool", "tool_call_id": "c1", "name": "logEvent", "content": "done"},
    ]


def test_followup_messages_skip_duplicates():
    dup = LogDuplicate(tool_call=_call("logEvent", "{}", id="d"))
    ok = LogAccepted(tool_call=_call("logEvent", "{}", id="o"), tool_result="done")

    assert followup_messages([dup]) == []
    messages = followup_messages([dup, ok])
    assert [tc["id"] for tc in messages[0]["tool_calls"]] == ["o"]
    assert len(messages) == 2


def test_validation_failure_message():
    call = _call("logEvent", "{}")
    err = ValidationError(MISSING_EVENT_TYPE)
    assert failure_message(call, err) == (
        "I couldn't detect what type of event to log. Try again with meal/workout/expense."
    )
