"""核心数据结构：Bar/Signal/AccountState/Position/Order。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Verdict(str, Enum):
    """信号结论。"""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderStatus(str, Enum):
    """订单状态；除 PENDING 外均为终态。"""

    PENDING = "PENDING"
    FILLED = "FILLED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


@dataclass(frozen=True)
class Bar:
    """K 线（一旦记录不可修改）。"""

    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class IndicatorSet:
    """最新一根 bar 上的指标值（每个周期重新计算，不持久化）。"""

    symbol: str
    timestamp: datetime
    price: float
    sma_20: float
    sma_50: float
    rsi_14: float
    macd: float
    macd_signal: float


@dataclass(frozen=True)
class Signal:
    """策略输出的信号（临时对象，不作为权威状态保存）。"""

    symbol: str
    timestamp: datetime
    price: float
    verdict: Verdict

    @property
    def actionable(self) -> bool:
        return self.verdict is not Verdict.HOLD


@dataclass(frozen=True)
class AccountState:
    """账户快照，由 broker 提供；每个周期重新读取。"""

    buying_power: float
    cash: float
    portfolio_value: float
    day_trade_count: int = 0
    trading_blocked: bool = False


@dataclass
class Position:
    """持仓快照（quantity 带符号）。"""

    symbol: str
    quantity: int
    cost_basis: float
    unrealized_pnl: float = 0.0

    @property
    def side(self) -> OrderSide:
        return OrderSide.BUY if self.quantity > 0 else OrderSide.SELL


@dataclass(frozen=True)
class Order:
    """订单记录。终态写入一次后不再修改（账本只追加）。"""

    correlation_id: str
    symbol: str
    side: OrderSide
    quantity: int
    type: str = "market"
    status: OrderStatus = OrderStatus.PENDING
    price: float | None = None
    reason: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def reason_code(self) -> str | None:
        """reason 形如 "broker_timeout: ..."，取冒号前的机器可读部分。"""
        if not self.reason:
            return None
        return self.reason.split(":", 1)[0].strip()
