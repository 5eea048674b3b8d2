"""
Server-sent-event parsing for chat-completion streams.

Three layers, each usable on its own:
  SSELineBuffer     bytes from the network -> complete text lines
  parse_frame()     one line -> StreamEvents (TextDelta, ToolCallDelta, ...)
  TurnAssembler     StreamEvents -> running text + finalized tool calls

Network reads may split a frame anywhere, including inside a multi-byte
character, so lines are cut on b"\\n" before decoding.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from aidedecamp.backends.events import (
    FinishReason,
    StreamDone,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallReady,
)
from aidedecamp.storage.models import ToolCall

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
TOOL_CALLS_FINISH = "tool_calls"


class SSELineBuffer:
    """Accumulates raw bytes and hands back only newline-terminated lines."""

    def __init__(self):
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        self._pending += chunk
        *complete, self._pending = self._pending.split(b"\n")
        return [line.decode("utf-8", errors="replace").strip() for line in complete]

    def flush(self) -> list[str]:
        """Whatever is left once the connection has closed."""
        rest, self._pending = self._pending, b""
        line = rest.decode("utf-8", errors="replace").strip()
        return [line] if line else []

    @property
    def pending(self) -> bytes:
        return self._pending


def parse_frame(line: str) -> list[StreamEvent]:
    """
    Turn one SSE line into events.

    Lines without the "data: " prefix (comments, event names, keep-alives,
    blank separators) produce nothing. Undecodable JSON produces a single
    StreamError so the caller can log and move on.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return []

    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return [StreamDone()]

    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError as e:
        return [StreamError(cause=e, payload=payload)]
    if not isinstance(chunk, dict) or not isinstance(chunk.get("choices", []), list):
        return [StreamError(cause=TypeError("frame is not a completion chunk"), payload=payload)]

    # Usage-only chunks carry an empty choices array
    if not chunk.get("choices"):
        return []
    choice = chunk["choices"][0]
    if not isinstance(choice, dict):
        return [StreamError(cause=TypeError("choice is not an object"), payload=payload)]

    events: list[StreamEvent] = []
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        delta = {}

    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(TextDelta(text=content))

    for fragment in delta.get("tool_calls") or []:
        if not isinstance(fragment, dict):
            continue
        function = fragment.get("function") or {}
        index = fragment.get("index")
        events.append(ToolCallDelta(
            index=index if isinstance(index, int) else 0,
            id=fragment.get("id"),
            name=function.get("name"),
            arguments=function.get("arguments"),
        ))

    finish = choice.get("finish_reason")
    if finish:
        events.append(FinishReason(reason=finish))

    return events


@dataclass
class _PartialCall:
    id: str | None = None
    name: str | None = None
    arguments: str = ""


class ToolCallAccumulator:
    """Merges tool-call fragments by the index the server assigns each call."""

    def __init__(self):
        self._calls: dict[int, _PartialCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def apply(self, delta: ToolCallDelta):
        acc = self._calls.setdefault(delta.index, _PartialCall())
        # id/name are set once; a later null never clears them
        if delta.id:
            acc.id = delta.id
        if delta.name:
            acc.name = delta.name
        if delta.arguments:
            acc.arguments += delta.arguments

    def finalize(self) -> list[ToolCall]:
        """Completed calls in index order. Clears the accumulator."""
        ready = []
        for index in sorted(self._calls):
            acc = self._calls[index]
            if not acc.id or not acc.name:
                logger.warning(
                    "Dropping incomplete tool call at index %d (id=%r, name=%r)",
                    index, acc.id, acc.name,
                )
                continue
            ready.append(ToolCall(id=acc.id, name=acc.name, raw_arguments=acc.arguments))
        self._calls.clear()
        return ready


class TurnAssembler:
    """
    Per-turn state on top of parse_frame().

    Tool calls are finalized exactly once: on finish_reason "tool_calls", or
    at end of stream if the server never sent that reason. The [DONE] frame
    that follows a "tool_calls" finish finds the accumulator empty.
    """

    def __init__(self):
        self.text = ""
        self.finish_reason: str | None = None
        self.done = False
        self.tool_calls: list[ToolCall] = []
        self._accumulator = ToolCallAccumulator()

    def feed_line(self, line: str) -> list[StreamEvent]:
        out: list[StreamEvent] = []
        for event in parse_frame(line):
            out.extend(self.feed(event))
        return out

    def feed(self, event: StreamEvent) -> list[StreamEvent]:
        if self.done:
            return []

        if isinstance(event, TextDelta):
            self.text += event.text
            return [TextDelta(text=event.text, snapshot=self.text)]

        if isinstance(event, ToolCallDelta):
            self._accumulator.apply(event)
            return [event]

        if isinstance(event, FinishReason):
            self.finish_reason = event.reason
            out: list[StreamEvent] = [event]
            if event.reason == TOOL_CALLS_FINISH:
                out.extend(self._finalize())
            return out

        if isinstance(event, StreamDone):
            return self.finish()

        if isinstance(event, StreamError):
            logger.warning("Dropping malformed SSE frame (%s): %.200s", event.cause, event.payload)
            return [event]

        return [event]

    def finish(self) -> list[StreamEvent]:
        """End of turn: flush any unfinalized tool calls, then StreamDone."""
        if self.done:
            return []
        out = self._finalize()
        self.done = True
        out.append(StreamDone())
        return out

    def _finalize(self) -> list[StreamEvent]:
        ready = self._accumulator.finalize()
        self.tool_calls.extend(ready)
        return [ToolCallReady(tool_call=tc) for tc in ready]
