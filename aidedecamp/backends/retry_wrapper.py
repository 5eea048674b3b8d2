"""
Retry wrapper for the completion stream client with exponential backoff.

Retried (transient):
- connection timeout, DNS failure, connection refused/lost, no connectivity
- HTTP 429, 500, 502, 503, 504

Not retried (permanent):
- 401 and every other status
- anything after a tool call was already handed to the caller, since a
  replayed turn would dispatch it again
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Iterable

from aidedecamp.backends.events import StreamEvent, ToolCallReady
from aidedecamp.backends.openai_stream import CompletionStreamClient
from aidedecamp.errors import AideError, is_retryable
from aidedecamp.storage.models import Message

logger = logging.getLogger(__name__)


class RetryingStreamClient:
    """
    Wraps a CompletionStreamClient with retry-and-backoff.

    Drop-in for the wrapped client: same stream_turn() signature.
    Backoff is backoff_base * 2**(n-1) seconds before retry n (1s, 2s, 4s...).
    """

    def __init__(
        self,
        client: CompletionStreamClient,
        max_retries: int = 2,
        backoff_base: float = 1.0,
    ):
        self.client = client
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    @classmethod
    def from_config(cls, client: CompletionStreamClient, cfg: dict) -> RetryingStreamClient:
        oa = cfg.get("openai", {})
        return cls(
            client,
            max_retries=oa.get("max_retries", 2),
            backoff_base=oa.get("backoff_base", 1.0),
        )

    def _is_retryable(self, exc: BaseException) -> bool:
        return is_retryable(exc)

    def _backoff_seconds(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return self.backoff_base * (2 ** (attempt - 1))

    async def stream_turn(
        self,
        history: Iterable[Message],
        api_key: str,
        extra_messages: Iterable[dict] = (),
    ) -> AsyncIterator[StreamEvent]:
        history = list(history)
        extra_messages = list(extra_messages)

        for attempt in range(self.max_retries + 1):
            dispatched_tool_call = False
            try:
                async for event in self.client.stream_turn(history, api_key, extra_messages):
                    if isinstance(event, ToolCallReady):
                        dispatched_tool_call = True
                    yield event
                return
            except AideError as e:
                if not self._is_retryable(e) or dispatched_tool_call:
                    logger.debug("Stream failure is not retryable: %s", e)
                    raise

                if attempt < self.max_retries:
                    backoff = self._backoff_seconds(attempt + 1)
                    logger.warning(
                        "Completion stream transient failure, retry in %.1fs (%d/%d): %s",
                        backoff,
                        attempt + 1,
                        self.max_retries,
                        e,
                    )
                    await asyncio.sleep(backoff)
                    continue

                logger.error(
                    "Completion stream exhausted %d retries: %s", self.max_retries, e
                )
                raise


def stream_turn_with_retry(
    client: CompletionStreamClient,
    history: Iterable[Message],
    api_key: str,
    extra_messages: Iterable[dict] = (),
    max_retries: int = 2,
    backoff_base: float = 1.0,
) -> AsyncIterator[StreamEvent]:
    """One-off retrying turn without keeping a wrapper around."""
    wrapper = RetryingStreamClient(client, max_retries=max_retries, backoff_base=backoff_base)
    return wrapper.stream_turn(history, api_key, extra_messages)
