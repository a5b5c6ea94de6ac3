from broker.execution.emergency_stop import EmergencyStopController
from risk.manager import RiskManager
from shared.config.schema import RiskConfig
from shared.errors import BrokerError, BrokerRejected
from shared.models.models import OrderSide, Position
from shared.utils.bounded_call import BoundedCaller
from fakes import MARKET_NOW, FakeBroker, RecordingAlertSink, make_executor


def _controller(broker):
    risk = RiskManager(RiskConfig(), suppress_warnings=True)
    executor = make_executor(broker, risk=risk)
    alerts = RecordingAlertSink()
    stop = EmergencyStopController(
        broker=broker,
        executor=executor,
        risk=risk,
        alerts=alerts,
        caller=BoundedCaller(timeout=1.0),
    )
    return stop, risk, executor, alerts


def test_flat_account_still_halts_and_succeeds():
    broker = FakeBroker()
    stop, risk, executor, alerts = _controller(broker)
    result = stop.trigger(reason="manual", cycle_ts=MARKET_NOW)
    assert result.already_flat
    assert result.ok
    assert broker.submit_calls == []
    assert not risk.trading_active
    assert executor.entries_blocked
    assert "emergency_stop" in alerts.kinds()


def test_closes_every_position_with_opposite_side():
    broker = FakeBroker(positions=[Position("AAPL", 10, 100.0), Position("TSLA", -4, 200.0)])
    stop, risk, _, _ = _controller(broker)
    result = stop.trigger(cycle_ts=MARKET_NOW)
    assert result.ok
    calls = {(symbol, side, qty) for symbol, side, qty, _ in broker.submit_calls}
    assert calls == {("AAPL", OrderSide.SELL, 10), ("TSLA", OrderSide.BUY, 4)}
    assert broker.positions() == []
    assert not stop.active


def test_failed_close_is_alerted_and_retried_next_cycle():
    broker = FakeBroker(positions=[Position("AAPL", 10, 100.0), Position("MSFT", 5, 300.0)])
    broker.script = [BrokerRejected("market closed for symbol")]
    stop, _, _, alerts = _controller(broker)

    result = stop.trigger(cycle_ts=MARKET_NOW)
    assert not result.ok
    assert list(result.failed) == ["AAPL"]
    assert result.pending_retry == ["AAPL"]
    assert stop.unresolved_symbols == ["AAPL"]
    failed = [p for k, p in alerts.events if k == "emergency_stop_failed"]
    assert failed and failed[0]["symbol"] == "AAPL" and failed[0]["active_risk"] is True

    retry = stop.retry_pending(cycle_ts=MARKET_NOW)
    assert retry is not None and retry.ok
    assert [o.symbol for o in retry.closed] == ["AAPL"]
    # 重试使用新的 attempt 序号，correlation_id 不同
    assert broker.submit_calls[0][3] != broker.submit_calls[-1][3]
    assert stop.retry_pending(cycle_ts=MARKET_NOW) is None


def test_symbol_flattened_elsewhere_is_confirmed_on_retry():
    broker = FakeBroker(positions=[Position("AAPL", 10, 100.0)])
    broker.script = [BrokerError("503", transient=True), BrokerError("503", transient=True)]
    stop, _, _, _ = _controller(broker)
    assert not stop.trigger(cycle_ts=MARKET_NOW).ok

    broker._apply_fill("AAPL", OrderSide.SELL, 10)
    retry = stop.retry_pending(cycle_ts=MARKET_NOW)
    assert retry.confirmed_flat == ["AAPL"]
    assert not stop.active


def test_unreadable_positions_are_retried():
    broker = FakeBroker(positions=[Position("AAPL", 10, 100.0)])
    broker.position_errors = [BrokerRejected("positions endpoint down")]
    stop, risk, _, alerts = _controller(broker)

    result = stop.trigger(cycle_ts=MARKET_NOW)
    assert "*" in result.failed
    assert not risk.trading_active
    assert stop.active
    assert "emergency_stop_failed" in alerts.kinds()

    retry = stop.retry_pending(cycle_ts=MARKET_NOW)
    assert retry.ok
    assert broker.positions() == []


def test_unexpected_close_error_is_alerted_and_retried():
    broker = FakeBroker(positions=[Position("AAPL", 10, 100.0)])
    broker.open_errors = [OSError("socket closed")]
    stop, _, executor, alerts = _controller(broker)

    result = stop.trigger(cycle_ts=MARKET_NOW)
    assert list(result.failed) == ["AAPL"]
    assert result.failed["AAPL"].startswith("broker_error: OSError")
    assert stop.unresolved_symbols == ["AAPL"]
    assert not executor.has_open_order("AAPL")
    assert "emergency_stop_failed" in alerts.kinds()

    retry = stop.retry_pending(cycle_ts=MARKET_NOW)
    assert retry.ok
    assert broker.positions() == []


def test_unexpected_positions_error_is_alerted():
    broker = FakeBroker(positions=[Position("AAPL", 10, 100.0)])
    broker.position_errors = [ConnectionResetError("peer reset")]
    stop, _, _, alerts = _controller(broker)

    result = stop.trigger(cycle_ts=MARKET_NOW)
    assert result.failed["*"].startswith("broker_error: ConnectionResetError")
    assert stop.active
    assert "emergency_stop_failed" in alerts.kinds()
    assert stop.retry_pending(cycle_ts=MARKET_NOW).ok
