"""
Stream events: what one completion turn produces.

The SSE parser turns each frame into zero or more of these; the turn
assembler merges tool-call fragments and adds ToolCallReady once a call is
complete. Failures of the turn as a whole are raised, not yielded.
"""

from __future__ import annotations

from dataclasses import dataclass

from aidedecamp.storage.models import ToolCall


@dataclass(frozen=True)
class TextDelta:
    """A content fragment. snapshot is the full text streamed so far this turn."""
    text: str
    snapshot: str = ""


@dataclass(frozen=True)
class ToolCallDelta:
    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class ToolCallReady:
    tool_call: ToolCall


@dataclass(frozen=True)
class FinishReason:
    reason: str


@dataclass(frozen=True)
class StreamDone:
    pass


@dataclass(frozen=True)
class StreamError:
    """One frame could not be decoded. The turn carries on without it."""
    cause: Exception
    payload: str = ""


StreamEvent = TextDelta | ToolCallDelta | ToolCallReady | FinishReason | StreamDone | StreamError
