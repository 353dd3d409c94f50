"""Append-only JSONL journal for signal and position events."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterator
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class JournalEvent(str, Enum):
    CYCLE_START = "cycle_start"
    CANDLE_SYNC = "candle_sync"
    HARD_FILTER = "hard_filter"
    AI_DECISION = "ai_decision"
    SIGNAL = "signal"
    POSITION_OPEN = "position_open"
    POSITION_SKIP = "position_skip"
    POSITION_CLOSE = "position_close"
    MONITOR_TICK = "monitor_tick"
    PROVIDER_SWITCH = "provider_switch"
    CYCLE_END = "cycle_end"
    ERROR = "error"


class JournalStore:
    """One JSONL file per UTC day; lines are never rewritten."""

    def __init__(self, journal_dir: Path) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)

    def append(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            event = JournalEvent(event_type)
        except ValueError as exc:
            raise ValueError(f"unsupported_event_type: {event_type}") from exc
        written_at = datetime.now(UTC)
        line = json.dumps(
            {"timestamp": written_at.isoformat(), "event_type": event.value, "payload": payload},
            ensure_ascii=True,
            default=_json_default,
        )
        with self.path_for(written_at.date()).open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def load_recent(self, limit: int, *, event_type: str | None = None) -> list[dict[str, Any]]:
        """Most recent events in chronological order, optionally of one type."""
        if limit <= 0:
            return []
        picked: list[dict[str, Any]] = []
        for record in self._iter_newest_first():
            if event_type is None or record.get("event_type") == event_type:
                picked.append(record)
                if len(picked) == limit:
                    break
        picked.reverse()
        return picked

    def event_counts(self, day: date | None = None) -> dict[str, int]:
        """Number of events per type written on ``day`` (UTC today by default)."""
        path = self.path_for(day or datetime.now(UTC).date())
        if not path.exists():
            return {}
        counts = Counter(record["event_type"] for record in _read_records(path))
        return dict(sorted(counts.items()))

    def path_for(self, day: date) -> Path:
        return self._journal_dir / f"{day.isoformat()}.jsonl"

    def _iter_newest_first(self) -> Iterator[dict[str, Any]]:
        for path in sorted(self._journal_dir.glob("*.jsonl"), reverse=True):
            yield from reversed(list(_read_records(path)))


def _read_records(path: Path) -> Iterator[dict[str, Any]]:
    with path.open(encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield json.loads(line)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)
