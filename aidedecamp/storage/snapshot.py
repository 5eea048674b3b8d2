"""
Snapshot store: the conversation persisted as a single JSON file.

A passive subscriber: the orchestrator's store calls save() on every change,
load() runs once at startup, delete() runs on new session.
Placeholder "Thinking..." entries are never restored.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from aidedecamp.storage.models import Message

logger = logging.getLogger(__name__)


class SnapshotStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> list[Message]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable snapshot %s: %s", self.path, e)
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring snapshot %s: expected a JSON array", self.path)
            return []

        messages = []
        for entry in raw:
            try:
                msg = Message.from_dict(entry)
            except (TypeError, ValueError, AttributeError) as e:
                logger.debug("Skipping bad snapshot entry %r: %s", entry, e)
                continue
            if not msg.is_placeholder:
                messages.append(msg)
        logger.info("Loaded %d messages from %s", len(messages), self.path)
        return messages

    def save(self, messages: list[Message]):
        """Overwrite the snapshot (write to a temp file, then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps([m.to_dict() for m in messages], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp.replace(self.path)

    def delete(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def on_messages_changed(self, context: dict):
        """Hook callback: an emptied conversation removes the file, anything else overwrites it."""
        messages = [m for m in context.get("messages") or [] if not m.is_placeholder]
        if not context.get("messages"):
            self.delete()
        else:
            self.save(messages)
