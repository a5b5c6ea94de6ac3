"""单品种执行管线（Bars → Indicators → Signal → Sizing → Risk → Executor）。

每个品种的处理互相独立，可在线程池中并行；任何异常都被转换为结构化的
`SymbolOutcome`，只影响该品种本周期，不会中断整个周期。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from engine.context import EngineContext
from shared.errors import BrokerError, DataUnavailable, EmergencyStopActive, EngineError
from shared.models.models import AccountState, Order, OrderSide, OrderStatus, Position, Signal, Verdict
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("engine")


class OutcomeAction(str, Enum):
    ORDER_SUBMITTED = "ORDER_SUBMITTED"
    NO_ACTION = "NO_ACTION"
    ERROR = "ERROR"


@dataclass(frozen=True)
class SymbolOutcome:
    """单个品种本周期的结果：要么下了单，要么给出不下单的具体原因。"""

    symbol: str
    action: OutcomeAction
    reason: str
    signal: Signal | None = None
    order: Order | None = None
    detail: str | None = None


class BuyingPowerBudget:
    """周期内共享的购买力预算，避免并行品种基于同一快照重复占用资金。"""

    def __init__(self, buying_power: float):
        self._lock = threading.Lock()
        self._remaining = float(buying_power)

    @property
    def remaining(self) -> float:
        return self._remaining

    def view(self, account: AccountState) -> AccountState:
        return replace(account, buying_power=self._remaining)

    def reserve(self, amount: float) -> bool:
        with self._lock:
            if amount > self._remaining:
                return False
            self._remaining -= amount
            return True

    def release(self, amount: float) -> None:
        with self._lock:
            self._remaining += amount


@dataclass
class CycleState:
    """单个周期的共享输入。"""

    cycle_ts: datetime
    account: AccountState
    positions: dict[str, Position]
    budget: BuyingPowerBudget


def _outcome_for_error(symbol: str, exc: EngineError, signal: Signal | None) -> SymbolOutcome:
    action = OutcomeAction.ERROR if isinstance(exc, (DataUnavailable, BrokerError)) else OutcomeAction.NO_ACTION
    return SymbolOutcome(symbol=symbol, action=action, reason=exc.reason, signal=signal, detail=str(exc))


def _outcome_for_order(symbol: str, order: Order, signal: Signal) -> SymbolOutcome:
    if order.status in {OrderStatus.FILLED, OrderStatus.PENDING}:
        return SymbolOutcome(
            symbol=symbol,
            action=OutcomeAction.ORDER_SUBMITTED,
            reason=order.status.value.lower(),
            signal=signal,
            order=order,
        )
    return SymbolOutcome(
        symbol=symbol,
        action=OutcomeAction.ERROR,
        reason=order.reason_code or order.status.value.lower(),
        signal=signal,
        order=order,
        detail=order.reason,
    )


def fetch_bars(ctx: EngineContext, symbol: str):
    try:
        return ctx.caller.call(
            f"bars {symbol}", ctx.market_data.bars, symbol, ctx.config.execution.bar_limit
        )
    except BrokerError as exc:
        raise DataUnavailable(f"{symbol}: {exc}") from exc


def process_symbol(ctx: EngineContext, cycle: CycleState, symbol: str) -> SymbolOutcome:
    """处理单个品种；不抛出 EngineError。"""
    signal: Signal | None = None
    try:
        bars = fetch_bars(ctx, symbol)
        signal = ctx.signal_generator.generate(bars)
        _LOGGER.info("Signal %s %s @ %.4f", symbol, signal.verdict.value, signal.price)

        if signal.verdict is Verdict.HOLD:
            return SymbolOutcome(symbol=symbol, action=OutcomeAction.NO_ACTION, reason="hold", signal=signal)
        if signal.verdict is Verdict.SELL:
            return _handle_sell(ctx, cycle, signal)
        return _handle_buy(ctx, cycle, signal)
    except EngineError as exc:
        log = _LOGGER.warning if isinstance(exc, (DataUnavailable, BrokerError)) else _LOGGER.info
        log("Symbol %s no action (%s): %s", symbol, exc.reason, exc)
        return _outcome_for_error(symbol, exc, signal)


def _handle_sell(ctx: EngineContext, cycle: CycleState, signal: Signal) -> SymbolOutcome:
    pos = cycle.positions.get(signal.symbol)
    if pos is None or pos.quantity <= 0:
        return SymbolOutcome(symbol=signal.symbol, action=OutcomeAction.NO_ACTION, reason="no_position", signal=signal)
    order = ctx.executor.submit_exit(
        symbol=signal.symbol,
        side=OrderSide.SELL,
        quantity=pos.quantity,
        price=signal.price,
        cycle_ts=cycle.cycle_ts,
    )
    if order.status is OrderStatus.FILLED and order.price is not None:
        cycle.budget.release(order.price * order.quantity)
    return _outcome_for_order(signal.symbol, order, signal)


def _handle_buy(ctx: EngineContext, cycle: CycleState, signal: Signal) -> SymbolOutcome:
    symbol = signal.symbol
    pos = cycle.positions.get(symbol)
    if pos is not None and pos.quantity > 0:
        return SymbolOutcome(symbol=symbol, action=OutcomeAction.NO_ACTION, reason="already_long", signal=signal)
    if cycle.account.trading_blocked:
        return SymbolOutcome(symbol=symbol, action=OutcomeAction.NO_ACTION, reason="account_blocked", signal=signal)
    if ctx.executor.entries_blocked:
        raise EmergencyStopActive("emergency stop in progress")

    decision = ctx.sizer.size(price=signal.price, account=cycle.budget.view(cycle.account))
    if not decision.tradable:
        return SymbolOutcome(
            symbol=symbol,
            action=OutcomeAction.NO_ACTION,
            reason="insufficient_capital",
            signal=signal,
            detail=f"raw_qty={decision.raw_qty} affordable_qty={decision.affordable_qty}",
        )

    notional = decision.quantity * signal.price
    if not cycle.budget.reserve(notional):
        return SymbolOutcome(symbol=symbol, action=OutcomeAction.NO_ACTION, reason="insufficient_capital", signal=signal)
    try:
        order = ctx.executor.submit_entry(
            symbol=symbol,
            side=OrderSide.BUY,
            quantity=decision.quantity,
            price=signal.price,
            cycle_ts=cycle.cycle_ts,
        )
    except EngineError:
        cycle.budget.release(notional)
        raise
    if order.status in {OrderStatus.FAILED, OrderStatus.REJECTED}:
        cycle.budget.release(notional)
    return _outcome_for_order(symbol, order, signal)
