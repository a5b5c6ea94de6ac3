from datetime import date

import pytest

from risk.manager import RiskManager, RiskMode
from shared.config.schema import RiskConfig
from shared.errors import InvalidSizing, TradingHalted
from shared.models.models import AccountState
from sizing.risk_budget import PositionSizer


def _account(pv: float = 100_000.0, bp: float = 100_000.0) -> AccountState:
    return AccountState(buying_power=bp, cash=bp, portfolio_value=pv)


def _risk(**kw) -> RiskManager:
    return RiskManager(RiskConfig(**kw), suppress_warnings=True)


def test_quantity_is_capped_by_buying_power():
    decision = PositionSizer(risk_per_trade=0.02, stop_loss_pct=0.02).size(price=150.0, account=_account())
    # 风险预算给出 666 股，购买力 (95%) 只够 633 股
    assert decision.raw_qty == 666
    assert decision.affordable_qty == 633
    assert decision.quantity == 633
    assert decision.tradable


def test_quantity_uses_risk_budget_when_affordable():
    decision = PositionSizer(risk_per_trade=0.01, stop_loss_pct=0.05).size(price=50.0, account=_account())
    # 1000 / 2.5 = 400 股 < 1900 股
    assert decision.quantity == 400


def test_zero_buying_power_means_no_trade():
    decision = PositionSizer(risk_per_trade=0.02, stop_loss_pct=0.02).size(price=150.0, account=_account(bp=0.0))
    assert decision.quantity == 0
    assert not decision.tradable


def test_fractional_quantity_floors_to_no_trade():
    decision = PositionSizer(risk_per_trade=0.02, stop_loss_pct=0.02).size(price=5000.0, account=_account(pv=5000.0, bp=5000.0))
    assert decision.quantity == 0


@pytest.mark.parametrize("price", [0.0, -1.0, float("nan")])
def test_invalid_price_raises(price):
    with pytest.raises(InvalidSizing):
        PositionSizer(risk_per_trade=0.02, stop_loss_pct=0.02).size(price=price, account=_account())


def test_sizer_is_gated_by_risk_manager():
    risk = _risk()
    sizer = PositionSizer(risk_per_trade=0.02, stop_loss_pct=0.02, gate=risk)
    risk.update(-600.0, 10_000.0)
    assert risk.check() is not None
    with pytest.raises(TradingHalted):
        sizer.size(price=150.0, account=_account())


def test_loss_of_six_percent_halts_trading():
    risk = _risk(loss_limit=0.05)
    assert risk.update(-600.0, 10_000.0) == pytest.approx(-0.06)
    breach = risk.check()
    assert breach is not None
    assert breach.daily_pnl_fraction == pytest.approx(-0.06)
    assert risk.mode is RiskMode.HALTED
    assert not risk.trading_active
    # 迁移只报告一次
    assert risk.check() is None
    with pytest.raises(TradingHalted):
        risk.ensure_can_enter()


def test_breach_at_exact_limit_and_on_gain():
    at_limit = _risk(loss_limit=0.05)
    at_limit.update(-500.0, 10_000.0)
    assert at_limit.check() is not None

    on_gain = _risk(loss_limit=0.05)
    on_gain.update(600.0, 10_000.0)
    assert on_gain.check() is not None


def test_within_limit_stays_active():
    risk = _risk(loss_limit=0.05)
    risk.update(-400.0, 10_000.0)
    assert risk.check() is None
    assert risk.trading_active
    risk.ensure_can_enter()


def test_non_positive_portfolio_value_keeps_fraction():
    risk = _risk()
    risk.update(-100.0, 10_000.0)
    assert risk.update(-5_000.0, 0.0) == pytest.approx(-0.01)
    assert risk.daily_pnl_fraction == pytest.approx(-0.01)


def test_halt_is_sticky_until_reset():
    risk = _risk()
    risk.update(-600.0, 10_000.0)
    risk.check()
    risk.update(0.0, 10_000.0)
    assert risk.check() is None
    assert risk.start_session(date(2024, 1, 11))
    assert risk.mode is RiskMode.HALTED
    assert risk.daily_pnl_fraction == 0.0

    risk.reset()
    assert risk.mode is RiskMode.ACTIVE
    assert risk.snapshot().halt_reason is None
    risk.ensure_can_enter()


def test_start_session_is_idempotent_per_day():
    risk = _risk()
    assert risk.start_session(date(2024, 1, 10))
    risk.update(-100.0, 10_000.0)
    assert not risk.start_session(date(2024, 1, 10))
    assert risk.daily_pnl_fraction == pytest.approx(-0.01)


def test_manual_halt_reports_transition_once():
    risk = _risk()
    assert risk.halt("manual")
    assert not risk.halt("manual")
    assert risk.snapshot().halt_reason == "manual"
