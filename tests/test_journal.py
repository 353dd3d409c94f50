from __future__ import annotations

import json
from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from ai_signals.journal.store import JournalStore


def test_append_and_load_recent_in_order(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    journal.append("cycle_start", {"instrument": "BTC/USDT", "timeframe": "1h"})
    journal.append("signal", {"final_action": "WAIT", "timestamp": datetime(2024, 1, 1, tzinfo=UTC)})
    journal.append("cycle_end", {"instrument": "BTC/USDT"})

    rows = journal.load_recent(2)

    assert [r["event_type"] for r in rows] == ["signal", "cycle_end"]
    assert rows[0]["payload"]["timestamp"] == "2024-01-01T00:00:00+00:00"


def test_load_recent_filters_by_event_type(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    for action in ("WAIT", "BUY", "WAIT"):
        journal.append("signal", {"final_action": action})
        journal.append("monitor_tick", {"open": 0, "closed": 0})

    rows = journal.load_recent(10, event_type="signal")

    assert [r["payload"]["final_action"] for r in rows] == ["WAIT", "BUY", "WAIT"]
    assert journal.load_recent(0) == []


def test_unknown_event_type_is_rejected(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)

    with pytest.raises(ValueError):
        journal.append("order_submitted", {})


def test_event_counts_for_today(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    journal.append("cycle_start", {"instrument": "BTC/USDT"})
    journal.append("signal", {"final_action": "WAIT"})
    journal.append("signal", {"final_action": "BUY"})

    assert journal.event_counts() == {"cycle_start": 1, "signal": 2}
    assert journal.event_counts(date(2000, 1, 1)) == {}


def test_load_recent_spans_daily_files(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    older = journal.path_for(date(2024, 1, 1))
    older.write_text(
        json.dumps({"timestamp": "2024-01-01T00:00:00+00:00", "event_type": "signal", "payload": {}})
        + "\n",
        encoding="utf-8",
    )
    journal.append("signal", {"final_action": "BUY"})

    rows = journal.load_recent(5, event_type="signal")

    assert [r["timestamp"][:10] for r in rows][0] == "2024-01-01"
    assert len(rows) == 2
