import math
import threading
from datetime import datetime, timedelta, timezone

import pytest

from engine.signal_pipeline import OutcomeAction
from engine.trading_engine import TradingEngine
from shared.config.schema import EngineConfig, ExecutionConfig, LedgerConfig
from shared.errors import BrokerError
from shared.models.models import AccountState, OrderSide, OrderStatus, Position
from shared.state.ledger import InMemoryLedger
from fakes import (
    MARKET_NOW,
    FakeBroker,
    FakeMarketData,
    RecordingAlertSink,
    downtrend_closes,
    flat_closes,
    uptrend_closes,
)


def _engine(closes, *, broker=None, **cfg_kw):
    cfg = EngineConfig(
        symbols=list(closes),
        ledger=LedgerConfig(enabled=False),
        execution=cfg_kw.pop("execution", ExecutionConfig(broker_timeout_secs=2.0)),
        **cfg_kw,
    )
    broker = broker or FakeBroker()
    alerts = RecordingAlertSink()
    ledger = InMemoryLedger()
    engine = TradingEngine.from_config(
        cfg,
        market_data=FakeMarketData(closes),
        broker=broker,
        ledger=ledger,
        alerts=alerts,
        suppress_warnings=True,
    )
    return engine, broker, alerts, ledger


def test_buy_signal_submits_exactly_one_sized_order():
    closes = uptrend_closes()
    engine, broker, _, ledger = _engine({"AAPL": closes})
    result = engine.execute_cycle(MARKET_NOW)

    price = closes[-1]
    expected = min(math.floor(100_000 * 0.02 / (price * 0.02)), math.floor(100_000 / price * 0.95))
    assert len(broker.submit_calls) == 1
    symbol, side, qty, _ = broker.submit_calls[0]
    assert (symbol, side, qty) == ("AAPL", OrderSide.BUY, expected)

    outcome = result.outcome_for("AAPL")
    assert outcome.action is OutcomeAction.ORDER_SUBMITTED
    assert outcome.order.status is OrderStatus.FILLED
    assert result.trading_active
    assert len(ledger.recent_snapshots(timedelta(hours=1), now=MARKET_NOW)) == 2
    engine.close()


def test_every_symbol_gets_an_explicit_outcome():
    engine, broker, _, _ = _engine(
        {"AAPL": uptrend_closes(), "MSFT": flat_closes(), "NVDA": uptrend_closes(30), "TSLA": downtrend_closes()}
    )
    engine.ctx.market_data.errors["AMD"] = BrokerError("feed down", transient=True)
    engine.ctx.config.symbols = ["AAPL", "MSFT", "NVDA", "TSLA", "AMD"]

    result = engine.execute_cycle(MARKET_NOW)
    reasons = {o.symbol: (o.action, o.reason) for o in result.outcomes}
    assert reasons == {
        "AAPL": (OutcomeAction.ORDER_SUBMITTED, "filled"),
        "MSFT": (OutcomeAction.NO_ACTION, "hold"),
        "NVDA": (OutcomeAction.NO_ACTION, "insufficient_history"),
        "TSLA": (OutcomeAction.NO_ACTION, "no_position"),
        "AMD": (OutcomeAction.ERROR, "data_unavailable"),
    }
    assert len(broker.submit_calls) == 1
    engine.close()


def test_sell_signal_closes_existing_long():
    broker = FakeBroker(positions=[Position("TSLA", 7, 150.0)])
    engine, _, _, _ = _engine({"TSLA": downtrend_closes()}, broker=broker)
    result = engine.execute_cycle(MARKET_NOW)
    assert broker.submit_calls[0][:3] == ("TSLA", OrderSide.SELL, 7)
    assert result.outcome_for("TSLA").action is OutcomeAction.ORDER_SUBMITTED
    engine.close()


def test_buy_when_already_long_is_no_action():
    broker = FakeBroker(positions=[Position("AAPL", 5, 100.0)])
    engine, _, _, _ = _engine({"AAPL": uptrend_closes()}, broker=broker)
    result = engine.execute_cycle(MARKET_NOW)
    assert result.outcome_for("AAPL").reason == "already_long"
    assert broker.submit_calls == []
    engine.close()


def test_buying_power_is_shared_across_symbols_in_a_cycle():
    # 每个品种单独都买得起，但合计超出购买力
    closes = uptrend_closes()
    engine, broker, _, _ = _engine({"AAPL": closes, "MSFT": closes})
    engine.execute_cycle(MARKET_NOW)
    spent = sum(qty * closes[-1] for _, _, qty, _ in broker.submit_calls)
    assert spent <= 100_000
    engine.close()


def test_market_closed_has_no_side_effects():
    engine, broker, _, ledger = _engine({"AAPL": uptrend_closes()})
    saturday = datetime(2024, 1, 13, 15, 0, tzinfo=timezone.utc)
    result = engine.execute_cycle(saturday)
    assert result.market_closed
    assert result.outcomes == []
    assert broker.submit_calls == []
    assert ledger.recent_snapshots(timedelta(days=1), now=saturday) == []
    engine.close()


def test_daily_loss_breach_halts_and_flattens():
    broker = FakeBroker(
        account=AccountState(buying_power=10_000.0, cash=10_000.0, portfolio_value=10_000.0),
        positions=[Position("MSFT", 10, 100.0)],
    )
    engine, _, alerts, _ = _engine({"AAPL": uptrend_closes(), "MSFT": flat_closes()}, broker=broker)
    first = engine.execute_cycle(MARKET_NOW)
    assert first.trading_active
    broker.submit_calls.clear()

    broker.account = AccountState(buying_power=9_400.0, cash=9_400.0, portfolio_value=9_400.0)
    second = engine.execute_cycle(MARKET_NOW + timedelta(minutes=5))
    assert second.breach is not None
    assert second.breach.daily_pnl_fraction == pytest.approx(-0.06)
    assert not second.trading_active
    assert second.stop is not None and second.stop.ok
    assert "risk_limit_breached" in alerts.kinds()

    # 只有急停平仓，没有新开仓
    assert all(side is OrderSide.SELL for _, side, _, _ in broker.submit_calls)
    assert broker.positions() == []
    assert second.outcome_for("AAPL").reason == "emergency_stop"

    third = engine.execute_cycle(MARKET_NOW + timedelta(minutes=10))
    assert not third.trading_active
    assert third.outcome_for("AAPL").reason == "trading_halted"
    assert not any(side is OrderSide.BUY for _, side, _, _ in broker.submit_calls)
    engine.close()


def test_breach_close_error_does_not_abort_cycle_and_is_retried():
    broker = FakeBroker(
        account=AccountState(buying_power=10_000.0, cash=10_000.0, portfolio_value=10_000.0),
        positions=[Position("MSFT", 10, 100.0)],
    )
    engine, _, alerts, _ = _engine({"AAPL": flat_closes(), "MSFT": flat_closes()}, broker=broker)
    engine.execute_cycle(MARKET_NOW)

    broker.account = AccountState(buying_power=9_400.0, cash=9_400.0, portfolio_value=9_400.0)
    broker.script = [OSError("connection refused")]
    second = engine.execute_cycle(MARKET_NOW + timedelta(minutes=5))
    assert second.breach is not None
    assert not second.stop.ok
    assert "MSFT" in second.stop.failed
    assert engine.ctx.stop.unresolved_symbols == ["MSFT"]
    assert "emergency_stop_failed" in alerts.kinds()
    assert {o.symbol for o in second.outcomes} == {"AAPL", "MSFT"}

    third = engine.execute_cycle(MARKET_NOW + timedelta(minutes=10))
    assert third.stop_retry is not None and third.stop_retry.ok
    assert broker.positions() == []
    assert not engine.ctx.stop.active
    engine.close()


def test_risk_reset_resumes_trading_with_new_baseline():
    broker = FakeBroker(account=AccountState(buying_power=10_000.0, cash=10_000.0, portfolio_value=10_000.0))
    engine, _, _, _ = _engine({"AAPL": flat_closes()}, broker=broker)
    engine.execute_cycle(MARKET_NOW)
    broker.account = AccountState(buying_power=9_400.0, cash=9_400.0, portfolio_value=9_400.0)
    assert not engine.execute_cycle(MARKET_NOW + timedelta(minutes=5)).trading_active

    engine.risk_reset()
    result = engine.execute_cycle(MARKET_NOW + timedelta(minutes=10))
    assert result.trading_active
    assert result.daily_pnl_fraction == pytest.approx(0.0)
    engine.close()


def test_overlapping_tick_is_skipped():
    engine, _, _, _ = _engine({"AAPL": flat_closes()})
    md = engine.ctx.market_data
    md.gate = threading.Event()

    results = []
    t = threading.Thread(target=lambda: results.append(engine.execute_cycle(MARKET_NOW)))
    t.start()
    assert md.entered.wait(2)

    skipped = engine.execute_cycle(MARKET_NOW + timedelta(minutes=5))
    assert skipped.skipped
    assert skipped.outcomes == []

    md.gate.set()
    t.join(5)
    assert results and not results[0].skipped
    engine.close()


def test_manual_emergency_stop_and_performance_snapshot():
    broker = FakeBroker(positions=[Position("AAPL", 10, 90.0)])
    engine, _, _, _ = _engine({"AAPL": flat_closes()}, broker=broker)
    engine.execute_cycle(MARKET_NOW)

    stop = engine.emergency_stop(reason="operator", now=MARKET_NOW + timedelta(minutes=1))
    assert stop.ok
    assert not engine.ctx.risk.trading_active
    assert broker.positions() == []

    snap = engine.performance_snapshot(now=MARKET_NOW + timedelta(minutes=2))
    assert snap.trades_today == 1
    assert snap.portfolio_change == pytest.approx(0.0)
    engine.close()
