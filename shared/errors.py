"""引擎异常体系。

所有异常都继承 `EngineError`；`reason` 是写入周期结果的机器可读原因。
单个品种的数据/broker 异常只中止该品种本周期的处理，由 TradingEngine 统一转换为结构化结果。
"""

from __future__ import annotations


class EngineError(Exception):
    """引擎异常基类。"""

    reason = "error"


class DataUnavailable(EngineError):
    """行情源无法提供 bar。"""

    reason = "data_unavailable"


class InsufficientHistory(EngineError):
    """bar 数量不足以计算指标。"""

    reason = "insufficient_history"

    def __init__(self, symbol: str, have: int, need: int):
        super().__init__(f"{symbol}: need {need} bars, got {have}")
        self.symbol = symbol
        self.have = have
        self.need = need


class InvalidSizing(EngineError):
    """仓位计算参数非法（价格或止损额 <= 0）。"""

    reason = "invalid_sizing"


class DuplicateOrder(EngineError):
    """同一品种已有未完结订单。"""

    reason = "duplicate_order"

    def __init__(self, symbol: str):
        super().__init__(f"{symbol}: an order is already open")
        self.symbol = symbol


class BrokerError(EngineError):
    """broker 调用失败。

    Parameters
    ----------
    transient:
        是否为可重试的临时错误（超时、5xx 等）。
    """

    reason = "broker_error"

    def __init__(self, message: str, *, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class BrokerTimeout(BrokerError):
    reason = "broker_timeout"

    def __init__(self, message: str = "broker call timed out"):
        super().__init__(message, transient=True)


class BrokerRejected(BrokerError):
    reason = "broker_rejected"

    def __init__(self, message: str):
        super().__init__(message, transient=False)


class TradingHalted(EngineError):
    """熔断/急停后拒绝新开仓。"""

    reason = "trading_halted"


class RiskLimitBreached(EngineError):
    """日内亏损触及上限。"""

    reason = "risk_limit_breached"

    def __init__(self, daily_pnl_fraction: float, loss_limit: float):
        super().__init__(
            f"daily pnl {daily_pnl_fraction:+.4%} breached loss limit {loss_limit:.4%}"
        )
        self.daily_pnl_fraction = daily_pnl_fraction
        self.loss_limit = loss_limit


class EmergencyStopActive(TradingHalted):
    """急停进行中，本周期不再开始新开仓。"""

    reason = "emergency_stop"
