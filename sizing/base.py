"""Sizer 抽象。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from shared.models.models import AccountState


@dataclass(frozen=True)
class SizingDecision:
    """仓位计算结果；quantity == 0 表示“不交易”（资金不足等正常情况）。"""

    quantity: int
    risk_amount: float
    stop_loss_amount: float
    raw_qty: int
    affordable_qty: int

    @property
    def tradable(self) -> bool:
        return self.quantity >= 1


class Sizer(Protocol):
    """Sizer：根据账户快照与价格给出开仓股数。"""

    def size(self, *, price: float, account: AccountState) -> SizingDecision: ...
