"""
Conversation store: the ordered, bounded list of visible messages.

Owned by the orchestrator. Appending past max_messages evicts from the front.
Every mutation notifies the registered listeners with the new message list.
"""

from __future__ import annotations

import logging
from typing import Callable

from aidedecamp.storage.models import Message

logger = logging.getLogger(__name__)

Listener = Callable[[list[Message]], None]


class ConversationStore:
    """Insertion-ordered messages with unique ids and a length cap."""

    def __init__(self, max_messages: int = 30, messages: list[Message] | None = None):
        if max_messages < 1:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._messages: list[Message] = []
        self._listeners: list[Listener] = []
        for msg in messages or []:
            self._append(msg)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def _notify(self):
        snapshot = self.messages
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Conversation listener %r failed: %s", listener, e)

    def _append(self, message: Message):
        if any(m.id == message.id for m in self._messages):
            raise ValueError(f"duplicate message id {message.id}")
        self._messages.append(message)
        overflow = len(self._messages) - self.max_messages
        if overflow > 0:
            del self._messages[:overflow]

    def append(self, message: Message) -> Message:
        self._append(message)
        self._notify()
        return message

    def get(self, message_id: str) -> Message | None:
        for msg in self._messages:
            if msg.id == message_id:
                return msg
        return None

    def replace(self, message_id: str, text: str) -> Message | None:
        """Swap the message with this id for a copy carrying new text. None if evicted."""
        for i, msg in enumerate(self._messages):
            if msg.id == message_id:
                updated = msg.with_text(text)
                self._messages[i] = updated
                self._notify()
                return updated
        return None

    def remove(self, message_id: str) -> bool:
        for i, msg in enumerate(self._messages):
            if msg.id == message_id:
                del self._messages[i]
                self._notify()
                return True
        return False

    def clear(self):
        self._messages.clear()
        self._notify()

    def last_user_message(self) -> Message | None:
        for msg in reversed(self._messages):
            if msg.is_from_user:
                return msg
        return None
