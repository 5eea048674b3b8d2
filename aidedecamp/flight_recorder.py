"""
Flight recorder: per-turn milestone timelines.

Each user send (or retry) opens a TurnRecord:
  Turn Started → First Token → Tool Call → Tool Dispatched → Followup Started → Complete/Failed

Kept in an in-memory LRU. For live debugging from the CLI, not history.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from uuid import uuid4

logger = logging.getLogger(__name__)

TURN_STARTED = "Turn Started"
FIRST_TOKEN = "First Token"
TOOL_CALL = "Tool Call"
TOOL_DISPATCHED = "Tool Dispatched"
FOLLOWUP_STARTED = "Followup Started"
COMPLETE = "Complete"
FAILED = "Failed"
CANCELLED = "Cancelled"

TERMINAL = (COMPLETE, FAILED, CANCELLED)


class TurnRecord:
    """Timeline for one user turn, including its follow-up rounds."""

    __slots__ = ("id", "session_id", "kind", "start_time", "milestones", "outcome")

    def __init__(self, session_id: str = "", kind: str = "send"):
        self.id: str = uuid4().hex[:12]
        self.session_id = session_id
        self.kind = kind
        self.start_time: float = time.monotonic()
        self.milestones: list[dict] = []
        self.outcome: str | None = None

    @property
    def closed(self) -> bool:
        return self.outcome is not None

    def mark(self, stage: str, **details):
        """Record a milestone. Ignored once the turn reached an outcome."""
        if self.closed:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "elapsed_ms": round((time.monotonic() - self.start_time) * 1000, 2),
            "stage": stage,
        }
        details = {k: v for k, v in details.items() if v is not None}
        if details:
            entry["details"] = details
        self.milestones.append(entry)
        if stage in TERMINAL:
            self.outcome = stage

    def has(self, stage: str) -> bool:
        return any(m["stage"] == stage for m in self.milestones)

    @property
    def total_ms(self) -> float:
        return self.milestones[-1]["elapsed_ms"] if self.milestones else 0.0

    @property
    def time_to_first_token_ms(self) -> float | None:
        for m in self.milestones:
            if m["stage"] == FIRST_TOKEN:
                return m["elapsed_ms"]
        return None

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "kind": self.kind,
            "outcome": self.outcome,
            "total_ms": round(self.total_ms, 2),
            "first_token_ms": self.time_to_first_token_ms,
            "milestones": self.milestones,
        }

    def render_text(self) -> str:
        lines = [f"TURN {self.id} ({self.kind}) → {self.outcome or 'in flight'}"]
        for m in self.milestones:
            line = f"  [{m['elapsed_ms']:8.1f}ms] {m['stage']}"
            if m.get("details"):
                line += "  (" + ", ".join(f"{k}={v}" for k, v in m["details"].items()) + ")"
            lines.append(line)
        return "\n".join(lines)


class TurnRecorder:
    """LRU of recent TurnRecords with time-based retention."""

    def __init__(self, max_records: int = 200, retention_hours: float = 24):
        self.max_records = max_records
        self.retention_seconds = retention_hours * 3600
        self._records: OrderedDict[str, TurnRecord] = OrderedDict()

    def start(self, session_id: str = "", kind: str = "send") -> TurnRecord:
        self.evict_stale()
        record = TurnRecord(session_id=session_id, kind=kind)
        record.mark(TURN_STARTED)
        while len(self._records) >= self.max_records:
            self._records.popitem(last=False)
        self._records[record.id] = record
        return record

    def get(self, record_id: str) -> TurnRecord | None:
        return self._records.get(record_id)

    def recent(self, n: int = 10) -> list[TurnRecord]:
        return list(self._records.values())[-n:]

    def evict_stale(self):
        cutoff = time.monotonic() - self.retention_seconds
        stale = [rid for rid, rec in self._records.items() if rec.start_time < cutoff]
        for rid in stale:
            del self._records[rid]
        if stale:
            logger.debug("Flight recorder evicted %d stale turns", len(stale))

    def __len__(self) -> int:
        return len(self._records)
