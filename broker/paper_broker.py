"""模拟 broker（dry-run / paper）。

- 市价单按 `price_source(symbol)` 给出的最新价立即成交，只做本地记账；
- 不支持做空：卖出数量不能超过持仓；
- 买入金额超过现金直接拒单（BrokerRejected）。
"""

from __future__ import annotations

import threading
from typing import Callable, Iterable

from broker.abstract_broker import BrokerGateway, BrokerMode
from shared.errors import BrokerRejected
from shared.models.models import AccountState, Order, OrderSide, OrderStatus, Position
from shared.utils.logging import setup_logger


class PaperBroker(BrokerGateway):
    """纸面交易 broker：按最新价更新本地持仓与现金。"""

    def __init__(
        self,
        *,
        initial_cash: float,
        price_source: Callable[[str], float],
        mode: BrokerMode = BrokerMode.PAPER,
    ):
        self.mode = mode
        self.logger = setup_logger("paper-broker")
        self.price_source = price_source
        self.cash = float(initial_cash)
        self._holdings: dict[str, Position] = {}
        self._seen_correlation_ids: dict[str, Order] = {}
        self._lock = threading.Lock()

    def _mark(self, pos: Position) -> Position:
        price = float(self.price_source(pos.symbol))
        return Position(
            symbol=pos.symbol,
            quantity=pos.quantity,
            cost_basis=pos.cost_basis,
            unrealized_pnl=(price - pos.cost_basis) * pos.quantity,
        )

    def positions(self) -> list[Position]:
        with self._lock:
            held = [Position(p.symbol, p.quantity, p.cost_basis) for p in self._holdings.values() if p.quantity]
        return [self._mark(p) for p in held]

    def account_state(self) -> AccountState:
        with self._lock:
            cash = self.cash
            held = [(p.symbol, p.quantity) for p in self._holdings.values() if p.quantity]
        market_value = sum(qty * float(self.price_source(symbol)) for symbol, qty in held)
        return AccountState(
            buying_power=max(0.0, cash),
            cash=cash,
            portfolio_value=cash + market_value,
            day_trade_count=0,
            trading_blocked=False,
        )

    def open_orders(self, symbol: str) -> bool:
        # 市价单即时成交，不会留下挂单
        return False

    def _book(self, symbol: str, side: OrderSide, quantity: int, price: float) -> None:
        # 调用方持有 self._lock
        pos = self._holdings.get(symbol) or Position(symbol, 0, 0.0)
        if side is OrderSide.BUY:
            cost = price * quantity
            if cost > self.cash:
                raise BrokerRejected(f"insufficient cash: need {cost:.2f}, have {self.cash:.2f}")
            new_qty = pos.quantity + quantity
            pos.cost_basis = (pos.cost_basis * pos.quantity + price * quantity) / new_qty
            pos.quantity = new_qty
            self.cash -= cost
        else:
            if quantity > pos.quantity:
                raise BrokerRejected(f"cannot sell {quantity} {symbol}, holding {pos.quantity}")
            pos.quantity -= quantity
            self.cash += price * quantity
            if pos.quantity == 0:
                pos.cost_basis = 0.0

        if pos.quantity == 0:
            self._holdings.pop(symbol, None)
        else:
            self._holdings[symbol] = pos

    def replay(self, orders: Iterable[Order]) -> int:
        """按账本里的 FILLED 记录重建现金与持仓（CLI 每次调用都是新进程）。

        同一 correlation_id 只记一次；与当前账面冲突的记录跳过并告警。返回重放笔数。
        """
        applied = 0
        with self._lock:
            for order in orders:
                if order.status is not OrderStatus.FILLED or order.price is None:
                    continue
                if order.correlation_id in self._seen_correlation_ids:
                    continue
                try:
                    self._book(order.symbol, order.side, int(order.quantity), float(order.price))
                except BrokerRejected as exc:
                    self.logger.warning("Skip ledger fill %s during replay: %s", order.correlation_id, exc)
                    continue
                self._seen_correlation_ids[order.correlation_id] = order
                applied += 1
        if applied:
            self.logger.info("Paper book restored from %d ledger fills, cash=%.2f", applied, self.cash)
        return applied

    def submit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: int,
        order_type: str = "market",
        *,
        correlation_id: str,
    ) -> Order:
        if quantity < 1:
            raise BrokerRejected(f"quantity must be >= 1, got {quantity}")
        if order_type != "market":
            raise BrokerRejected(f"unsupported order type {order_type}")
        fill_price = float(self.price_source(symbol))

        with self._lock:
            seen = self._seen_correlation_ids.get(correlation_id)
            if seen is not None:
                return seen

            self._book(symbol, side, int(quantity), fill_price)
            order = Order(
                correlation_id=correlation_id,
                symbol=symbol,
                side=side,
                quantity=int(quantity),
                type=order_type,
                status=OrderStatus.FILLED,
                price=fill_price,
            )
            self._seen_correlation_ids[correlation_id] = order

        self.logger.info(
            "[%s ORDER] %s %s qty=%s price=%.4f cid=%s",
            self.mode.value,
            side.value.upper(),
            symbol,
            quantity,
            fill_price,
            correlation_id,
        )
        return order
