"""按单笔风险预算计算股数：risk_amount / 每股止损额，再受购买力约束。"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from shared.errors import InvalidSizing
from shared.models.models import AccountState
from sizing.base import SizingDecision

# 预留 5% 购买力，吸收滑点与费用
BUYING_POWER_BUFFER = 0.95


class EntryGate(Protocol):
    def ensure_can_enter(self) -> None: ...


@dataclass(frozen=True)
class PositionSizer:
    """开仓 sizer。

    Parameters
    ----------
    gate:
        可选的开仓闸门（RiskManager）；熔断后 `size()` 直接抛出 TradingHalted。
    """

    risk_per_trade: float
    stop_loss_pct: float
    buffer: float = BUYING_POWER_BUFFER
    gate: EntryGate | None = None

    def size(self, *, price: float, account: AccountState) -> SizingDecision:
        """计算开仓股数。

        Raises
        ------
        TradingHalted
            gate 处于熔断状态。
        InvalidSizing
            价格或每股止损额 <= 0。
        """
        if self.gate is not None:
            self.gate.ensure_can_enter()
        if price is None or not math.isfinite(price) or price <= 0:
            raise InvalidSizing(f"price must be > 0, got {price}")
        risk_amount = account.portfolio_value * self.risk_per_trade
        stop_loss_amount = price * self.stop_loss_pct
        if stop_loss_amount <= 0:
            raise InvalidSizing(f"stop loss amount must be > 0, got {stop_loss_amount}")

        raw_qty = max(0, math.floor(risk_amount / stop_loss_amount))
        affordable_qty = max(0, math.floor(account.buying_power / price * self.buffer))
        qty = min(raw_qty, affordable_qty)
        if qty < 1:
            qty = 0
        return SizingDecision(
            quantity=int(qty),
            risk_amount=risk_amount,
            stop_loss_amount=stop_loss_amount,
            raw_qty=int(raw_qty),
            affordable_qty=int(affordable_qty),
        )
