"""急停控制器（Emergency Stop）。

触发来源：操作员显式命令，或 RiskManager 熔断。
效果：
1. 风控进入 HALTED，执行器拉起急停屏障（本周期不再开始任何新开仓）；
2. 对每个非零持仓反向全量平仓，绕过 sizing 与风控闸门；
3. 平仓失败 → 告警，并在之后每个周期重试，直到 broker 报告该品种已平。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from broker.abstract_broker import BrokerGateway
from broker.execution.order_executor import OrderExecutor
from risk.manager import RiskManager
from shared.errors import BrokerError, DuplicateOrder
from shared.models.models import Order, OrderStatus, Position
from shared.utils.alerts import AlertSink
from shared.utils.bounded_call import BoundedCaller
from shared.utils.logging import setup_logger


@dataclass
class StopResult:
    """一次急停（或急停重试）的结果。"""

    reason: str
    closed: list[Order] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    pending_retry: list[str] = field(default_factory=list)
    confirmed_flat: list[str] = field(default_factory=list)
    already_flat: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.pending_retry


class EmergencyStopController:
    def __init__(
        self,
        *,
        broker: BrokerGateway,
        executor: OrderExecutor,
        risk: RiskManager,
        alerts: AlertSink,
        caller: BoundedCaller,
    ):
        self.broker = broker
        self.executor = executor
        self.risk = risk
        self.alerts = alerts
        self.caller = caller
        self.logger = setup_logger("emergency-stop")
        # symbol -> 已尝试次数；非空表示仍有未确认平仓的风险敞口
        self._unresolved: dict[str, int] = {}
        self._positions_unknown = False

    @property
    def unresolved_symbols(self) -> list[str]:
        return sorted(self._unresolved)

    @property
    def active(self) -> bool:
        return bool(self._unresolved) or self._positions_unknown

    def require_flat_check(self) -> None:
        """下次 `retry_pending` 对全部持仓确认是否已平（进程重启后恢复 HALTED 时使用）。"""
        self._positions_unknown = True

    def trigger(self, reason: str = "manual", cycle_ts: datetime | None = None) -> StopResult:
        """执行急停；无持仓时为空操作，但仍会进入 HALTED。"""
        cycle_ts = cycle_ts or datetime.now(timezone.utc)
        self.risk.halt(reason)
        self.executor.block_entries()
        self.logger.critical("EMERGENCY STOP triggered: %s", reason)
        self.alerts.notify("emergency_stop", {"reason": reason, "ts": cycle_ts.isoformat()})

        result = StopResult(reason=reason)
        positions = self._load_positions(result)
        if positions is None:
            return result

        open_positions = [p for p in positions if p.quantity != 0]
        if not open_positions:
            result.already_flat = True
            self.logger.info("Emergency stop: account already flat.")
            return result

        for pos in open_positions:
            self._close(pos, cycle_ts=cycle_ts, result=result)
        return result

    def retry_pending(self, cycle_ts: datetime | None = None) -> StopResult | None:
        """重试上次未确认平仓的品种；没有待处理项时返回 None。"""
        if not self.active:
            return None
        cycle_ts = cycle_ts or datetime.now(timezone.utc)
        result = StopResult(reason="emergency_retry")
        positions = self._load_positions(result)
        if positions is None:
            return result

        by_symbol = {p.symbol: p for p in positions if p.quantity != 0}
        if self._positions_unknown:
            # 上次连持仓都没拿到：这次对全部持仓执行平仓
            self._positions_unknown = False
            targets = list(by_symbol)
        else:
            targets = list(self._unresolved)

        for symbol in targets:
            pos = by_symbol.get(symbol)
            if pos is None:
                self._unresolved.pop(symbol, None)
                result.confirmed_flat.append(symbol)
                self.logger.info("Emergency stop: %s confirmed flat.", symbol)
                continue
            self._close(pos, cycle_ts=cycle_ts, result=result)
        return result

    def _load_positions(self, result: StopResult) -> list[Position] | None:
        try:
            return self.caller.call("positions", self.broker.positions)
        except Exception as exc:
            error = f"{exc.reason}: {exc}" if isinstance(exc, BrokerError) else f"broker_error: {exc!r}"
            self._positions_unknown = True
            result.failed["*"] = error
            self.logger.error("Emergency stop could not load positions: %s", error)
            self.alerts.notify("emergency_stop_failed", {"symbol": "*", "error": error})
            return None

    def _close(self, pos: Position, *, cycle_ts: datetime, result: StopResult) -> None:
        attempt = self._unresolved.get(pos.symbol, 0)
        side = pos.side.opposite()
        qty = abs(int(pos.quantity))
        try:
            order = self.executor.submit_exit(
                symbol=pos.symbol,
                side=side,
                quantity=qty,
                price=None,
                cycle_ts=cycle_ts,
                intent="emergency",
                attempt=attempt,
            )
        except (BrokerError, DuplicateOrder) as exc:
            self._mark_failed(pos.symbol, attempt, f"{exc.reason}: {exc}", result)
            return
        except Exception as exc:
            # 任何平仓异常都按失败处理：告警并留给下个周期重试
            self._mark_failed(pos.symbol, attempt, f"broker_error: {exc!r}", result)
            return

        if order.status is OrderStatus.FILLED:
            self._unresolved.pop(pos.symbol, None)
            result.closed.append(order)
            return
        if order.status is OrderStatus.PENDING:
            # 已提交但未成交：下个周期确认是否已平
            self._unresolved[pos.symbol] = attempt + 1
            result.closed.append(order)
            result.pending_retry.append(pos.symbol)
            return
        self._mark_failed(pos.symbol, attempt, order.reason or order.status.value, result)

    def _mark_failed(self, symbol: str, attempt: int, error: str, result: StopResult) -> None:
        self._unresolved[symbol] = attempt + 1
        result.failed[symbol] = error
        result.pending_retry.append(symbol)
        self.logger.error("Emergency close failed for %s (attempt %d): %s", symbol, attempt + 1, error)
        self.alerts.notify(
            "emergency_stop_failed",
            {"symbol": symbol, "attempt": attempt + 1, "error": error, "active_risk": True},
        )
