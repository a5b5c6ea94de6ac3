"""订单执行器。

职责：
- 把已通过 sizing/风控的决策翻译成一笔订单请求；
- 每个品种同一时刻最多一笔未完结订单（本地标记 + broker open_orders 双重检查）；
- 提交带超时，临时错误只重试一次，第二次失败记为 FAILED，不阻塞其它品种；
- 终态写入账本后清除标记；PENDING 订单保留标记，直到 `refresh_pending()` 观察到终态。
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone

from broker.abstract_broker import BrokerGateway
from risk.manager import RiskManager
from shared.errors import BrokerError, BrokerRejected, DuplicateOrder, EmergencyStopActive, InvalidSizing, TradingHalted
from shared.models.models import Order, OrderSide, OrderStatus
from shared.state.ledger import Ledger
from shared.utils.bounded_call import BoundedCaller
from shared.utils.client_order_id import make_correlation_id
from shared.utils.logging import setup_logger


class OrderExecutor:
    def __init__(
        self,
        *,
        broker: BrokerGateway,
        ledger: Ledger,
        risk: RiskManager,
        caller: BoundedCaller,
        order_type: str = "market",
    ):
        self.broker = broker
        self.ledger = ledger
        self.risk = risk
        self.caller = caller
        self.order_type = order_type
        self.logger = setup_logger("order-executor")

        self._guard = threading.Lock()
        self._symbol_locks: dict[str, threading.Lock] = {}
        self._open_markers: dict[str, str] = {}
        self._pending: dict[str, Order] = {}
        # 急停屏障：置位后本周期内不允许任何新开仓开始提交
        self._entries_blocked = threading.Event()

    # ---- 急停屏障 ----
    def block_entries(self) -> None:
        self._entries_blocked.set()

    def unblock_entries(self) -> None:
        self._entries_blocked.clear()

    @property
    def entries_blocked(self) -> bool:
        return self._entries_blocked.is_set()

    # ---- 每品种标记 ----
    def _lock_for(self, symbol: str) -> threading.Lock:
        with self._guard:
            lock = self._symbol_locks.get(symbol)
            if lock is None:
                lock = self._symbol_locks[symbol] = threading.Lock()
            return lock

    def has_open_order(self, symbol: str) -> bool:
        with self._lock_for(symbol):
            return symbol in self._open_markers

    def _reserve(self, symbol: str, correlation_id: str) -> None:
        with self._lock_for(symbol):
            if symbol in self._open_markers:
                raise DuplicateOrder(symbol)
            self._open_markers[symbol] = correlation_id

    def _release(self, symbol: str, correlation_id: str) -> None:
        with self._lock_for(symbol):
            if self._open_markers.get(symbol) == correlation_id:
                del self._open_markers[symbol]
            with self._guard:
                pending = self._pending.get(symbol)
                if pending is not None and pending.correlation_id == correlation_id:
                    del self._pending[symbol]

    def _ensure_entry_allowed(self) -> None:
        self.risk.ensure_can_enter()
        if self._entries_blocked.is_set():
            raise EmergencyStopActive("emergency stop in progress")

    # ---- 对外接口 ----
    def submit_entry(
        self,
        *,
        symbol: str,
        side: OrderSide,
        quantity: int,
        price: float,
        cycle_ts: datetime,
    ) -> Order:
        """提交开仓单（受风控闸门与急停屏障约束）。

        Raises
        ------
        TradingHalted
            已熔断或急停进行中。
        DuplicateOrder
            该品种已有未完结订单。
        """
        self._ensure_entry_allowed()
        return self._submit(
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            cycle_ts=cycle_ts,
            intent="entry",
            check_entry=True,
        )

    def submit_exit(
        self,
        *,
        symbol: str,
        side: OrderSide,
        quantity: int,
        price: float | None,
        cycle_ts: datetime,
        intent: str = "exit",
        attempt: int = 0,
    ) -> Order:
        """提交平仓单：只降低敞口，不经过风控闸门。"""
        return self._submit(
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            cycle_ts=cycle_ts,
            intent=intent,
            attempt=attempt,
            check_entry=False,
        )

    def _submit(
        self,
        *,
        symbol: str,
        side: OrderSide,
        quantity: int,
        price: float | None,
        cycle_ts: datetime,
        intent: str,
        attempt: int = 0,
        check_entry: bool,
    ) -> Order:
        if int(quantity) < 1:
            raise InvalidSizing(f"{symbol}: order quantity must be >= 1, got {quantity}")
        quantity = int(quantity)
        cid = make_correlation_id(
            cycle_ts=cycle_ts, symbol=symbol, side=side.value, quantity=quantity, intent=intent, attempt=attempt
        )
        self._reserve(symbol, cid)

        try:
            has_open = self.caller.call(f"open_orders {symbol}", self.broker.open_orders, symbol)
            if has_open:
                raise DuplicateOrder(symbol)
            if check_entry:
                # 急停可能在 open_orders 查询期间触发
                self._ensure_entry_allowed()
        except BaseException:
            self._release(symbol, cid)
            raise

        try:
            order = self.caller.call(
                f"submit {symbol}",
                self.broker.submit_order,
                symbol,
                side,
                quantity,
                self.order_type,
                correlation_id=cid,
            )
        except BrokerRejected as exc:
            order = self._failed_order(cid, symbol, side, quantity, price, OrderStatus.REJECTED, exc)
        except BrokerError as exc:
            order = self._failed_order(cid, symbol, side, quantity, price, OrderStatus.FAILED, exc)
        except Exception as exc:
            # 适配层抛出的非 BrokerError（连接断开等）同样记为 FAILED，标记随终态释放
            order = self._failed_order(cid, symbol, side, quantity, price, OrderStatus.FAILED, exc)
        else:
            if order.price is None and price is not None:
                order = replace(order, price=price)
            self.logger.info(
                "Order %s %s %s qty=%d status=%s cid=%s",
                intent,
                side.value.upper(),
                symbol,
                quantity,
                order.status.value,
                cid,
            )

        try:
            self.ledger.append_trade(order)
        finally:
            if order.status.is_terminal:
                self._release(symbol, cid)
            else:
                with self._guard:
                    self._pending[symbol] = order
        return order

    def _failed_order(
        self,
        cid: str,
        symbol: str,
        side: OrderSide,
        quantity: int,
        price: float | None,
        status: OrderStatus,
        exc: Exception,
    ) -> Order:
        self.logger.error("Order %s %s qty=%d %s: %s", side.value.upper(), symbol, quantity, status.value, exc)
        return Order(
            correlation_id=cid,
            symbol=symbol,
            side=side,
            quantity=quantity,
            type=self.order_type,
            status=status,
            price=price,
            reason=_failure_reason(exc),
        )

    def refresh_pending(self) -> list[Order]:
        """检查 PENDING 订单；观察到终态后写账本并清除标记，返回新终态订单。"""
        with self._guard:
            pending = list(self._pending.values())
        resolved: list[Order] = []
        for order in pending:
            try:
                status = self.caller.call(f"order_status {order.symbol}", self.broker.order_status, order.correlation_id)
                still_open = None
                if status is None:
                    still_open = self.caller.call(f"open_orders {order.symbol}", self.broker.open_orders, order.symbol)
            except Exception as exc:
                self.logger.warning("Pending order %s check failed: %s", order.correlation_id, exc)
                continue

            if status is not None and status.is_terminal:
                final = replace(order, status=status, created_at=datetime.now(timezone.utc))
                self.ledger.append_trade(final)
                self._release(order.symbol, order.correlation_id)
                resolved.append(final)
            elif status is None and not still_open:
                # broker 不提供状态查询：挂单消失即视为已完结，但终态未知，不写账本
                self.logger.warning(
                    "Pending order %s for %s no longer open, final status unknown.", order.correlation_id, order.symbol
                )
                self._release(order.symbol, order.correlation_id)
        return resolved


def _failure_reason(exc: Exception) -> str:
    """失败原因统一成 `code: msg`。"""
    if isinstance(exc, BrokerError):
        return f"{exc.reason}: {exc}"
    return f"broker_error: {exc!r}"
