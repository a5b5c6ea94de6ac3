from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

import main as app_main
from utils.metrics import PerformanceSnapshot


def test_default_task_is_cycle():
    args = app_main.parse_args([])
    assert args.task == "cycle"
    assert args.config == "config/config.yml"


def test_config_accepted_after_subcommand():
    args = app_main.parse_args(["runner", "--config", "other.yml", "--max-cycles", "3", "--interval", "0.5"])
    assert args.config == "other.yml"
    assert args.max_cycles == 3
    assert args.interval == 0.5


def test_config_accepted_before_subcommand():
    args = app_main.parse_args(["--config", "other.yml", "stop", "--reason", "drill"])
    assert args.config == "other.yml"
    assert args.task == "stop"
    assert args.reason == "drill"


def test_missing_config_exits_with_code_2(tmp_path):
    with pytest.raises(SystemExit) as exc:
        app_main.main(["--config", str(tmp_path / "nope.yml"), "cycle"])
    assert exc.value.code == 2


def test_performance_task_renders_and_closes_engine(monkeypatch):
    calls: list[str] = []
    snap = PerformanceSnapshot(
        trades_today=2,
        portfolio_change=12.5,
        portfolio_change_pct=0.00125,
        win_rate=1.0,
        avg_return_per_trade=0.01,
        closed_trades=1,
    )

    class _FakeEngine:
        def performance_snapshot(self):
            calls.append("performance")
            return snap

        def close(self):
            calls.append("close")

    def _fake_from_config(cfg: Any, **kwargs):
        calls.append("build")
        return _FakeEngine()

    monkeypatch.setattr(app_main.TradingEngine, "from_config", staticmethod(_fake_from_config))
    cfg_path = Path(__file__).resolve().parents[1] / "config" / "config.yml"
    res = app_main.main(["performance", "--config", str(cfg_path)])
    assert res == snap.to_dict()
    assert calls == ["build", "performance", "close"]
