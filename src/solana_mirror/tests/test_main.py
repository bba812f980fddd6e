"""Tests for the command line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from solana_mirror import main as main_module
from solana_mirror.config.settings import get_app_config
from solana_mirror.datalake.schemas import MinimalChartPoint
from solana_mirror.exceptions import InvalidTimeframeError
from solana_mirror.monitoring.metrics import METRICS


class FakeService:
    def __init__(self, config=None) -> None:
        self.config = config

    def get_chart(self, address, timeframe, detailed=False):
        if timeframe == "bad":
            raise InvalidTimeframeError("Unsupported timeframe unit 'x'")
        return [MinimalChartPoint(timestamp=10, usd_value=1.5)]


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RPC", raising=False)
    monkeypatch.setattr(main_module, "WalletService", FakeService)
    get_app_config.cache_clear()
    METRICS.reset()
    yield
    get_app_config.cache_clear()


def test_chart_prints_json(capsys: pytest.CaptureFixture[str]) -> None:
    assert main_module.main(["chart", "wallet", "7d"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output == [{"timestamp": 10, "usdValue": 1.5}]
    assert METRICS.get("cli.chart.calls_total") == 1


def test_errors_go_to_stderr_with_status(capsys: pytest.CaptureFixture[str]) -> None:
    assert main_module.main(["chart", "wallet", "bad"]) == 1

    error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert error["error"] == "invalid_timeframe"
    assert error["status"] == 400


def test_parser_defaults() -> None:
    args = main_module.build_parser().parse_args(["balances", "wallet", "--no-positions"])
    assert args.command == "balances"
    assert args.no_positions is True

    chart = main_module.build_parser().parse_args(["chart", "wallet"])
    assert chart.timeframe == "30d"
    assert chart.detailed is False
