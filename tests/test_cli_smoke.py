from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest
from click.testing import CliRunner

from ai_signals import __version__
from ai_signals.main import cli
from ai_signals.types import CycleResult, TradingSignal


class _FakeOrchestrator:
    instances: list[_FakeOrchestrator] = []

    def __init__(self, settings: object) -> None:
        self.settings = settings
        self.run_kwargs: dict[str, Any] = {}
        self.shut_down = False
        _FakeOrchestrator.instances.append(self)

    async def start(self, *, start_health_checks: bool = True) -> None:
        return None

    async def run_all_signals(self, **kwargs: Any) -> CycleResult:
        self.run_kwargs = kwargs
        signal = TradingSignal(
            instrument="BTC/USDT",
            timeframe="1h",
            final_action="WAIT",
            confidence=0.0,
            reason="hard filter not met",
            hard_filter_passed=False,
            candidate_action="NEUTRAL",
            timestamp=datetime.now(UTC),
        )
        return CycleResult(status="completed", signals=[signal], elapsed_ms=1.0)

    async def run_monitor_cycle(self) -> list[object]:
        return []

    def status(self) -> dict[str, Any]:
        return {
            "ai": {
                "active_service": "gemini",
                "providers": {
                    "gemini": {"ready": True, "cost_per_call": 0.0002, "last_error": None},
                },
            }
        }

    async def shutdown(self) -> None:
        self.shut_down = True


@pytest.fixture(autouse=True)
def _fake_orchestrator(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeOrchestrator.instances.clear()
    monkeypatch.setattr("ai_signals.main.build_orchestrator", _FakeOrchestrator)


def test_cli_once_smoke() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["once", "--dry-run", "-s", "BTC/USDT", "-t", "1h"])

    assert result.exit_code == 0
    assert "BTC/USDT" in result.output
    orchestrator = _FakeOrchestrator.instances[0]
    assert orchestrator.run_kwargs == {
        "dry_run": True,
        "instruments": ["BTC/USDT"],
        "timeframes": ["1h"],
    }
    assert orchestrator.shut_down


def test_cli_monitor_smoke() -> None:
    result = CliRunner().invoke(cli, ["monitor"])

    assert result.exit_code == 0


def test_cli_providers_lists_active_service() -> None:
    result = CliRunner().invoke(cli, ["providers"])

    assert result.exit_code == 0
    assert "Active service: gemini" in result.output
    assert "[OK] gemini" in result.output


def test_cli_status_and_version() -> None:
    runner = CliRunner()

    status = runner.invoke(cli, ["status"])
    version = runner.invoke(cli, ["--version"])

    assert status.exit_code == 0
    assert "AI Signal Pipeline - Status" in status.output
    assert version.output.strip() == f"ai-signals version {__version__}"
