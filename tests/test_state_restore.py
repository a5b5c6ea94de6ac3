from datetime import timedelta
from pathlib import Path

import main as app_main
from engine.trading_engine import TradingEngine
from shared.config.config_loader import load_config
from shared.config.schema import EngineConfig, LedgerConfig
from shared.models.models import Order, OrderSide, OrderStatus
from shared.state.sqlite_ledger import SqliteLedger
from fakes import MARKET_NOW, FakeMarketData, RecordingAlertSink, uptrend_closes


def _cfg(tmp_path: Path) -> EngineConfig:
    return EngineConfig(symbols=["AAPL"], ledger=LedgerConfig(enabled=True, path=str(tmp_path / "ledger.sqlite3")))


def _engine(cfg: EngineConfig) -> TradingEngine:
    # 每次都是新的 broker/风控/账本连接，模拟 CLI 的独立进程
    return TradingEngine.from_config(
        cfg,
        market_data=FakeMarketData({"AAPL": uptrend_closes()}),
        alerts=RecordingAlertSink(),
        suppress_warnings=True,
    )


def test_paper_book_and_halt_survive_restart(tmp_path):
    cfg = _cfg(tmp_path)

    first = _engine(cfg)
    bought = first.execute_cycle(MARKET_NOW)
    assert bought.outcome_for("AAPL").reason == "filled"
    qty = bought.outcome_for("AAPL").order.quantity
    first.close()

    second = _engine(cfg)
    assert [(p.symbol, p.quantity) for p in second.ctx.broker.positions()] == [("AAPL", qty)]
    assert second.ctx.risk.trading_active
    stop = second.emergency_stop(reason="operator", now=MARKET_NOW + timedelta(minutes=1))
    assert not stop.already_flat
    assert [(o.symbol, o.side, o.quantity) for o in stop.closed] == [("AAPL", OrderSide.SELL, qty)]
    second.close()

    third = _engine(cfg)
    assert not third.ctx.risk.trading_active
    assert third.ctx.broker.positions() == []
    result = third.execute_cycle(MARKET_NOW + timedelta(minutes=5))
    assert not result.trading_active
    assert result.stop_retry is not None and result.stop_retry.ok
    assert result.outcome_for("AAPL").reason == "trading_halted"
    third.risk_reset()
    third.close()

    fourth = _engine(cfg)
    assert fourth.ctx.risk.trading_active
    fourth.close()


def test_breach_alert_without_reset_restores_halt(tmp_path):
    cfg = _cfg(tmp_path)
    ledger = SqliteLedger(cfg.ledger.path)
    ledger.append_alert("risk_limit_breached", {"daily_pnl_fraction": -0.06, "loss_limit": 0.05})
    ledger.close()

    engine = _engine(cfg)
    assert not engine.ctx.risk.trading_active
    assert engine.ctx.risk.snapshot().halt_reason == "risk_limit_breached"
    engine.close()


def test_cli_stop_and_reset_use_the_shared_ledger(tmp_path):
    ledger_path = tmp_path / "ledger.sqlite3"
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        "symbols: [AAPL]\n"
        "ledger:\n"
        "  enabled: true\n"
        f"  path: {ledger_path.as_posix()}\n",
        encoding="utf-8",
    )
    ledger = SqliteLedger(ledger_path)
    ledger.append_trade(
        Order(
            correlation_id="zg_seed",
            symbol="AAPL",
            side=OrderSide.BUY,
            quantity=5,
            status=OrderStatus.FILLED,
            price=100.0,
        )
    )
    ledger.close()

    stop = app_main.main(["stop", "--config", str(cfg_path), "--reason", "drill"])
    assert not stop.already_flat
    assert [(o.symbol, o.side, o.quantity) for o in stop.closed] == [("AAPL", OrderSide.SELL, 5)]

    halted = TradingEngine.from_config(load_config(str(cfg_path)))
    assert not halted.ctx.risk.trading_active
    assert halted.ctx.broker.positions() == []
    halted.close()

    state = app_main.main(["reset", "--config", str(cfg_path)])
    assert state.trading_active

    ledger = SqliteLedger(ledger_path)
    assert ledger.last_alert(["emergency_stop", "risk_reset"]).kind == "risk_reset"
    ledger.close()

    resumed = TradingEngine.from_config(load_config(str(cfg_path)))
    assert resumed.ctx.risk.trading_active
    resumed.close()
