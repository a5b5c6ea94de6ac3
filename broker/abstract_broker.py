"""Broker 抽象接口与运行模式定义。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from shared.models.models import AccountState, Order, OrderSide, OrderStatus, Position


class BrokerMode(Enum):
    """Broker 运行模式枚举。"""

    DRY_RUN = "dry-run"
    PAPER = "paper"


class BrokerGateway(ABC):
    """交易执行抽象层（券商协议本身不在本仓库范围内）。

    实现方约定：
    - `submit_order` 出错时抛出 `BrokerError` 子类；临时错误需设置 `transient=True`，
      以便执行层决定是否重试；
    - 账户快照每次调用都应返回最新值，引擎不会跨周期缓存。
    """

    @abstractmethod
    def account_state(self) -> AccountState:
        """获取账户快照。"""

    @abstractmethod
    def positions(self) -> list[Position]:
        """所有数量非零的持仓。"""

    @abstractmethod
    def open_orders(self, symbol: str) -> bool:
        """该品种是否存在未完结订单。"""

    @abstractmethod
    def submit_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: int,
        order_type: str = "market",
        *,
        correlation_id: str,
    ) -> Order:
        """提交订单，返回 FILLED/PENDING/REJECTED 状态的 Order。"""

    def order_status(self, correlation_id: str) -> OrderStatus | None:
        """查询订单最新状态；不支持查询的实现返回 None（执行层改用 open_orders 判断）。"""
        return None

    def get_position(self, symbol: str) -> Position | None:
        for pos in self.positions():
            if pos.symbol == symbol:
                return pos
        return None
