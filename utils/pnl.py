"""已实现盈亏：按 FIFO 把账本中的成交配对成完整交易。"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from shared.models.models import Order, OrderSide, OrderStatus


@dataclass(frozen=True)
class ClosedTrade:
    symbol: str
    quantity: int
    entry_price: float
    exit_price: float
    opened_at: datetime
    closed_at: datetime

    @property
    def pnl(self) -> float:
        return (self.exit_price - self.entry_price) * self.quantity

    @property
    def return_pct(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return self.exit_price / self.entry_price - 1.0


@dataclass
class _Lot:
    quantity: int
    price: float
    ts: datetime


def filled_orders(orders: Iterable[Order]) -> list[Order]:
    """只保留有成交价的 FILLED 记录，按成交时间排序；同一 correlation_id 只取一次。"""
    seen: set[str] = set()
    out: list[Order] = []
    for order in orders:
        if order.status is not OrderStatus.FILLED or order.price is None:
            continue
        if order.correlation_id in seen:
            continue
        seen.add(order.correlation_id)
        out.append(order)
    out.sort(key=lambda o: o.created_at)
    return out


def match_fifo(orders: Iterable[Order]) -> list[ClosedTrade]:
    """
    BUY 形成持仓批次，SELL 按先进先出消耗批次。

    没有对应批次的卖出数量（例如窗口之前建立的仓位）直接忽略。
    """
    lots: dict[str, deque[_Lot]] = {}
    closed: list[ClosedTrade] = []
    for order in filled_orders(orders):
        book = lots.setdefault(order.symbol, deque())
        if order.side is OrderSide.BUY:
            book.append(_Lot(quantity=order.quantity, price=float(order.price), ts=order.created_at))
            continue

        remaining = order.quantity
        while remaining > 0 and book:
            lot = book[0]
            take = min(remaining, lot.quantity)
            closed.append(
                ClosedTrade(
                    symbol=order.symbol,
                    quantity=take,
                    entry_price=lot.price,
                    exit_price=float(order.price),
                    opened_at=lot.ts,
                    closed_at=order.created_at,
                )
            )
            lot.quantity -= take
            remaining -= take
            if lot.quantity == 0:
                book.popleft()
    return closed
