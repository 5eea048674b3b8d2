"""
Completion stream client: one streaming chat-completion request per turn.

Speaks the OpenAI chat-completions SSE protocol:
  POST {endpoint}  stream=true, tools=[logEvent, retrieveEvents], tool_choice=auto
  <- data: {...delta...}\\n ... data: [DONE]\\n

stream_turn() is an async generator of StreamEvents. Returning normally
means the turn completed; a failure is raised as an AideError subclass.
Leaving the generator early (break / aclose / task cancel) closes the
connection.
"""

from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Iterable

import httpx

from aidedecamp.backends.events import StreamEvent
from aidedecamp.backends.sse import SSELineBuffer, TurnAssembler
from aidedecamp.config import get_config
from aidedecamp.errors import ApiError, classify_transport_error
from aidedecamp.storage.models import Message
from aidedecamp.tools.schemas import TOOLS, system_message

logger = logging.getLogger(__name__)


class CompletionStreamClient:
    """Streams one assistant turn from an OpenAI-compatible endpoint."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        temperature: float = 0.7,
        connect_timeout: float = 60,
        read_timeout: float = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint
        self.model = model
        self.temperature = temperature
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._transport = transport

    @classmethod
    def from_config(cls, cfg: dict | None = None, **kwargs) -> CompletionStreamClient:
        oa = (cfg or get_config()).get("openai", {})
        return cls(
            endpoint=oa.get("endpoint", "https://api.openai.com/v1/chat/completions"),
            model=oa.get("model", "gpt-4.1"),
            temperature=oa.get("temperature", 0.7),
            connect_timeout=oa.get("connect_timeout", 60),
            read_timeout=oa.get("read_timeout", 300),
            **kwargs,
        )

    def build_messages(
        self,
        history: Iterable[Message],
        extra_messages: Iterable[dict] = (),
    ) -> list[dict]:
        """System prompt + visible history (placeholders dropped) + tool exchange."""
        chat = [m.to_openai_format() for m in history if not m.is_placeholder]
        return [system_message(), *chat, *extra_messages]

    def build_body(
        self,
        history: Iterable[Message],
        extra_messages: Iterable[dict] = (),
    ) -> dict:
        return {
            "model": self.model,
            "messages": self.build_messages(history, extra_messages),
            "temperature": self.temperature,
            "stream": True,
            "tools": TOOLS,
            "tool_choice": "auto",
        }

    async def stream_turn(
        self,
        history: Iterable[Message],
        api_key: str,
        extra_messages: Iterable[dict] = (),
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream one turn, yielding TextDelta / ToolCallDelta / ToolCallReady /
        FinishReason / StreamError events and a final StreamDone.

        Raises ApiError on HTTP status >= 400 (body is not read) and
        NetworkError on transport failures.
        """
        body = self.build_body(history, extra_messages)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "text/event-stream",
        }
        t0 = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    self.endpoint,
                    json=body,
                    headers=headers,
                ) as resp:
                    if resp.status_code >= 400:
                        logger.warning(
                            "Completion endpoint returned HTTP %d after %.0fms",
                            resp.status_code,
                            (time.monotonic() - t0) * 1000,
                        )
                        raise ApiError(resp.status_code)

                    buffer = SSELineBuffer()
                    turn = TurnAssembler()
                    async for chunk in resp.aiter_bytes():
                        for line in buffer.feed(chunk):
                            for event in turn.feed_line(line):
                                yield event
                            if turn.done:
                                # [DONE] seen: leaving the context closes the connection
                                logger.debug(
                                    "Turn complete in %.0fms (%d chars, %d tool calls)",
                                    (time.monotonic() - t0) * 1000,
                                    len(turn.text),
                                    len(turn.tool_calls),
                                )
                                return

                    # Connection closed without [DONE]
                    for line in buffer.flush():
                        for event in turn.feed_line(line):
                            yield event
                    if not turn.done:
                        logger.debug("Stream ended without [DONE]; finishing turn")
                        for event in turn.finish():
                            yield event
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            err = classify_transport_error(e)
            logger.warning("Completion stream failed (%s): %s", err.kind, e)
            raise err from e


async def collect_turn(stream: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    """Drain a turn into a list. Handy for non-interactive callers and tests."""
    return [event async for event in stream]
