"""
Shared fixtures and stream-building helpers.
"""

import json
from datetime import datetime

import pytest

from aidedecamp.settings import Settings


def sse(payload) -> str:
    """One SSE data line for a dict payload (or a raw string)."""
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {body}\n"


def content_chunk(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]}


def tool_chunk(index: int, id=None, name=None, arguments=None) -> dict:
    fragment = {"index": index}
    if id is not None:
        fragment["id"] = id
        fragment["type"] = "function"
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    if function:
        fragment["function"] = function
    return {"choices": [{"index": 0, "delta": {"tool_calls": [fragment]}, "finish_reason": None}]}


def finish_chunk(reason: str) -> dict:
    return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


@pytest.fixture
def settings():
    return Settings(openai_key="sk-test-1234567890", webhook_url="http://hook.test/events")


@pytest.fixture
def fixed_now():
    return datetime(2025, 9, 7, 13, 45, 12)
