"""
Turn orchestrator: drives one conversation through its turns.

    Idle → AwaitingFirstTurn → (ToolDispatchPending → AwaitingFollowupTurn)* → Idle

send() appends the user message and a "Thinking..." placeholder, streams the
assistant turn into the placeholder, dispatches any tool calls, and streams
follow-up turns with the tool results folded in until the model answers in
plain text. Any failure lands as text in the placeholder with the error flag
set; the conversation stays usable and retry() replays the last user message.

Everything runs on one event loop, so stream reads, backoff timers and store
mutations are serialized. Callers must not send() while is_loading is set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable
from uuid import uuid4

from aidedecamp.backends.events import TextDelta, ToolCallReady
from aidedecamp.backends.openai_stream import CompletionStreamClient
from aidedecamp.backends.retry_wrapper import RetryingStreamClient
from aidedecamp.backends.webhook import WebhookGateway
from aidedecamp.config import get_config
from aidedecamp.errors import AideError, user_message
from aidedecamp.flight_recorder import (
    CANCELLED,
    COMPLETE,
    FAILED,
    FIRST_TOKEN,
    FOLLOWUP_STARTED,
    TOOL_CALL,
    TOOL_DISPATCHED,
    TurnRecord,
    TurnRecorder,
)
from aidedecamp.hooks import ERROR, MESSAGES_CHANGED, STREAM_STARTED, SUCCESS, TICK, HookManager
from aidedecamp.settings import Settings
from aidedecamp.storage.conversation import ConversationStore
from aidedecamp.storage.models import ASSISTANT, THINKING, USER, Message, ToolCall
from aidedecamp.storage.snapshot import SnapshotStore
from aidedecamp.tools.dispatcher import (
    DispatchResult,
    ToolDispatcher,
    failure_message,
    followup_messages,
)

logger = logging.getLogger(__name__)

IDLE = "idle"
AWAITING_FIRST_TURN = "awaiting_first_turn"
TOOL_DISPATCH_PENDING = "tool_dispatch_pending"
AWAITING_FOLLOWUP_TURN = "awaiting_followup_turn"

DEFAULT_MAX_TOOL_ROUNDS = 4
TOO_MANY_ROUNDS = "I stopped after too many function calls in one turn."


class TurnOrchestrator:
    """
    Owns the conversation store, the session dedup set and the loading /
    error flags the presentation layer renders.
    """

    def __init__(
        self,
        stream_client: CompletionStreamClient | RetryingStreamClient,
        dispatcher: ToolDispatcher,
        settings_provider: Callable[[], Settings] = Settings.load,
        store: ConversationStore | None = None,
        hooks: HookManager | None = None,
        recorder: TurnRecorder | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ):
        self.stream_client = stream_client
        self.dispatcher = dispatcher
        self.settings_provider = settings_provider
        self.store = store or ConversationStore()
        self.hooks = hooks or HookManager()
        self.recorder = recorder
        self.max_tool_rounds = max_tool_rounds

        self.session_id = uuid4().hex
        self.dedup: set[str] = set()
        self.state = IDLE
        self.is_loading = False
        self.alert_message: str | None = None
        self.last_error: BaseException | None = None
        self._error_message_id: str | None = None
        self._task: asyncio.Task | None = None
        self._cancel_requested = False

    # ------------------------------------------------------------------
    # Construction from config
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        cfg: dict | None = None,
        settings_provider: Callable[[], Settings] = Settings.load,
    ) -> TurnOrchestrator:
        """Wire the full stack: retrying stream client, webhook, hooks, snapshot, recorder."""
        cfg = cfg or get_config()
        settings = settings_provider()

        stream_client = RetryingStreamClient.from_config(CompletionStreamClient.from_config(cfg), cfg)
        dispatcher = ToolDispatcher(WebhookGateway.from_config(settings.webhook_url, cfg))

        conv_cfg = cfg.get("conversation", {})
        snapshot = SnapshotStore(conv_cfg.get("snapshot_path", "./data/conversation.json"))
        store = ConversationStore(
            max_messages=conv_cfg.get("max_messages", 30),
            messages=snapshot.load(),
        )

        hooks_cfg = cfg.get("hooks", {})
        hooks = HookManager(
            hooks_dir=hooks_cfg.get("directory"),
            hook_configs=hooks_cfg.get("hooks", []),
        )
        hooks.register("snapshot", on_messages_changed=snapshot.on_messages_changed)

        fr_cfg = cfg.get("flight_recorder", {})
        recorder = None
        if fr_cfg.get("enabled", True):
            recorder = TurnRecorder(
                max_records=fr_cfg.get("max_records", 200),
                retention_hours=fr_cfg.get("retention_hours", 24),
            )

        return cls(
            stream_client,
            dispatcher,
            settings_provider=settings_provider,
            store=store,
            hooks=hooks,
            recorder=recorder,
        )

    # ------------------------------------------------------------------
    # Presentation-facing API
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return self.store.messages

    @property
    def has_error(self) -> bool:
        return self._error_message_id is not None

    async def send(self, text: str) -> bool:
        """
        Start a turn for `text`. Returns False when nothing was sent
        (blank input, missing settings, or the turn was cancelled).
        """
        trimmed = text.strip()
        if not trimmed:
            return False
        if self.is_loading:
            logger.warning("send() while a turn is in flight; the caller should wait")

        settings = self._check_settings()
        if settings is None:
            return False

        self._clear_error()
        self.store.append(Message(sender=USER, text=trimmed))
        self._durable_change()
        return await self._start_turn(settings, kind="send")

    async def retry(self) -> bool:
        """Drop the last error message and replay the turn for the preceding user message."""
        if self._error_message_id is None or self.is_loading:
            return False
        if self.store.last_user_message() is None:
            return False

        settings = self._check_settings()
        if settings is None:
            return False

        self.store.remove(self._error_message_id)
        self._clear_error()
        self._durable_change()
        return await self._start_turn(settings, kind="retry")

    def cancel(self) -> bool:
        """Cancel the in-flight turn, if any."""
        if self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        self._task.cancel()
        return True

    def new_session(self):
        """Forget everything: messages, dedup keys, error state and the snapshot."""
        self.cancel()
        self.store.clear()
        self.dedup.clear()
        self._clear_error()
        self.alert_message = None
        self.session_id = uuid4().hex
        self._durable_change()
        logger.info("New session %s", self.session_id)

    # ------------------------------------------------------------------
    # Turn machinery
    # ------------------------------------------------------------------

    def _check_settings(self) -> Settings | None:
        settings = self.settings_provider()
        missing = settings.missing_message()
        if missing:
            self.alert_message = missing
            return None
        self.alert_message = None
        self.dispatcher.gateway.url = settings.webhook_url
        return settings

    async def _start_turn(self, settings: Settings, kind: str) -> bool:
        placeholder = self.store.append(Message(sender=ASSISTANT, text=THINKING))
        record = self.recorder.start(self.session_id, kind) if self.recorder else None

        self.is_loading = True
        self._cancel_requested = False
        self._task = asyncio.create_task(self._run_turn(settings.openai_key, placeholder.id, record))
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                return False
            raise
        finally:
            self._task = None

    async def _run_turn(self, api_key: str, placeholder_id: str, record: TurnRecord | None) -> bool:
        extra: list[dict] = []
        rounds = 0
        shown = ""
        self.state = AWAITING_FIRST_TURN
        self.hooks.emit(STREAM_STARTED, message_id=placeholder_id)

        try:
            while True:
                tool_calls, text = await self._stream_once(api_key, placeholder_id, extra, record)
                shown = text or shown
                if not tool_calls:
                    self._finish_success(placeholder_id, shown, record)
                    return True

                rounds += 1
                if rounds > self.max_tool_rounds:
                    logger.warning("Giving up after %d tool rounds", self.max_tool_rounds)
                    self._finish_success(placeholder_id, text or TOO_MANY_ROUNDS, record)
                    return True

                self.state = TOOL_DISPATCH_PENDING
                results = await self._dispatch_all(tool_calls, placeholder_id, record)
                if results is None:
                    return False

                extra.extend(followup_messages(results))
                self.state = AWAITING_FOLLOWUP_TURN
                if record:
                    record.mark(FOLLOWUP_STARTED, round=rounds)
        except asyncio.CancelledError:
            self._finish_cancelled(placeholder_id, record)
            raise
        except AideError as e:
            self._finish_error(placeholder_id, f"Error: {user_message(e)}", e, record)
            return False
        except Exception as e:
            logger.exception("Unexpected failure in turn")
            self._finish_error(placeholder_id, f"Error: {user_message(e)}", e, record)
            return False

    async def _stream_once(
        self,
        api_key: str,
        placeholder_id: str,
        extra: list[dict],
        record: TurnRecord | None,
    ) -> tuple[list[ToolCall], str]:
        """One streamed turn. Text snapshots go straight into the placeholder."""
        tool_calls: list[ToolCall] = []
        text = ""
        history = [m for m in self.store.messages if m.id != placeholder_id]

        async for event in self.stream_client.stream_turn(history, api_key, extra):
            if isinstance(event, TextDelta):
                text = event.snapshot
                if record and not record.has(FIRST_TOKEN):
                    record.mark(FIRST_TOKEN)
                self.store.replace(placeholder_id, text)
                self.hooks.emit(TICK, message_id=placeholder_id, text=text)
            elif isinstance(event, ToolCallReady):
                tool_calls.append(event.tool_call)
                if record:
                    record.mark(TOOL_CALL, name=event.tool_call.name)
        return tool_calls, text

    async def _dispatch_all(
        self,
        tool_calls: list[ToolCall],
        placeholder_id: str,
        record: TurnRecord | None,
    ) -> list[DispatchResult] | None:
        """Dispatch in arrival order. None means the turn was ended with an error."""
        results = []
        for tool_call in tool_calls:
            try:
                result = await self.dispatcher.dispatch(tool_call, self.dedup)
            except AideError as e:
                self._finish_error(placeholder_id, failure_message(tool_call, e), e, record)
                return None
            if record:
                record.mark(TOOL_DISPATCHED, name=tool_call.name, outcome=type(result).__name__)
            results.append(result)
        return results

    # ------------------------------------------------------------------
    # Endings
    # ------------------------------------------------------------------

    def _finish_success(self, placeholder_id: str, text: str, record: TurnRecord | None):
        if text:
            self.store.replace(placeholder_id, text)
        else:
            # Nothing streamed: don't leave "Thinking..." behind
            self.store.remove(placeholder_id)
        self._settle()
        if record:
            record.mark(COMPLETE, chars=len(text))
        self.hooks.emit(SUCCESS, message_id=placeholder_id, text=text)
        self._durable_change()

    def _finish_error(
        self,
        placeholder_id: str,
        text: str,
        error: BaseException,
        record: TurnRecord | None,
    ):
        logger.error("Turn failed: %s", error)
        if self.store.replace(placeholder_id, text) is None:
            # Placeholder was evicted; surface the error as a fresh message
            placeholder_id = self.store.append(Message(sender=ASSISTANT, text=text)).id
        self.last_error = error
        self._error_message_id = placeholder_id
        self._settle()
        if record:
            record.mark(FAILED, error=type(error).__name__)
        self.hooks.emit(ERROR, message_id=placeholder_id, text=text, error=error)
        self._durable_change()

    def _finish_cancelled(self, placeholder_id: str, record: TurnRecord | None):
        placeholder = self.store.get(placeholder_id)
        if placeholder is not None and placeholder.is_placeholder:
            self.store.remove(placeholder_id)
        self._settle()
        if record:
            record.mark(CANCELLED)
        logger.info("Turn cancelled")
        self._durable_change()

    def _settle(self):
        self.state = IDLE
        self.is_loading = False

    def _clear_error(self):
        self.last_error = None
        self._error_message_id = None

    def _durable_change(self):
        self.hooks.emit(MESSAGES_CHANGED, messages=self.store.messages)
