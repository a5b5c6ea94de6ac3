"""风险管理：日内盈亏比例 + 熔断状态机（ACTIVE/HALTED）。"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum

from shared.config.schema import RiskConfig
from shared.errors import RiskLimitBreached, TradingHalted
from shared.utils.logging import setup_logger


class RiskMode(str, Enum):
    ACTIVE = "ACTIVE"
    HALTED = "HALTED"


@dataclass(frozen=True)
class RiskState:
    """风控状态快照（只读）。"""

    trading_active: bool
    daily_pnl_fraction: float
    loss_limit: float
    risk_per_trade: float
    halt_reason: str | None = None
    session_day: date | None = None


class RiskManager:
    """风险管理器。

    Parameters
    ----------
    risk_cfg:
        风控配置（risk_per_trade/stop_loss_pct/loss_limit）。
    suppress_warnings:
        是否抑制 warning 日志（测试常用）。

    Notes
    -----
    - HALTED 是粘滞状态：跨日也不会自动恢复，只有 `reset()` 能回到 ACTIVE。
    - 所有状态迁移都在进程级锁内完成；锁只覆盖 check-and-set，不覆盖任何 I/O。
    """

    def __init__(self, risk_cfg: RiskConfig, suppress_warnings: bool = False):
        self.cfg = risk_cfg
        self.logger = setup_logger("risk")
        self.suppress_warnings = suppress_warnings
        self._lock = threading.Lock()

        self._mode = RiskMode.ACTIVE
        self._daily_pnl_fraction = 0.0
        self._halt_reason: str | None = None
        self._session_day: date | None = None

    @property
    def mode(self) -> RiskMode:
        return self._mode

    @property
    def trading_active(self) -> bool:
        return self._mode is RiskMode.ACTIVE

    @property
    def daily_pnl_fraction(self) -> float:
        return self._daily_pnl_fraction

    def snapshot(self) -> RiskState:
        with self._lock:
            return RiskState(
                trading_active=self._mode is RiskMode.ACTIVE,
                daily_pnl_fraction=self._daily_pnl_fraction,
                loss_limit=self.cfg.loss_limit,
                risk_per_trade=self.cfg.risk_per_trade,
                halt_reason=self._halt_reason,
                session_day=self._session_day,
            )

    def update(self, pnl: float, portfolio_value: float) -> float:
        """按当日盈亏（已实现 + 未实现）重算日内盈亏比例。

        Parameters
        ----------
        pnl:
            当日盈亏金额，例如 -600.0。
        portfolio_value:
            用作分母的组合价值；<= 0 时保持原比例不变。
        """
        if portfolio_value <= 0:
            if not self.suppress_warnings:
                self.logger.warning("Portfolio value %.2f <= 0, keep daily pnl fraction unchanged.", portfolio_value)
            return self._daily_pnl_fraction
        with self._lock:
            self._daily_pnl_fraction = pnl / portfolio_value
            return self._daily_pnl_fraction

    def check(self) -> RiskLimitBreached | None:
        """评估熔断。

        Returns
        -------
        RiskLimitBreached | None
            本次调用触发了 ACTIVE → HALTED 时返回 breach，否则 None。
        """
        with self._lock:
            fraction = self._daily_pnl_fraction
            if self._mode is not RiskMode.ACTIVE or abs(fraction) < self.cfg.loss_limit:
                return None
            self._mode = RiskMode.HALTED
            self._halt_reason = "risk_limit_breached"
        breach = RiskLimitBreached(fraction, self.cfg.loss_limit)
        self.logger.error("Daily loss limit reached, trading halted: %s", breach)
        return breach

    def ensure_can_enter(self) -> None:
        """新开仓前的闸门。

        Raises
        ------
        TradingHalted
            处于 HALTED。
        """
        if self._mode is RiskMode.HALTED:
            raise TradingHalted(f"trading halted ({self._halt_reason or 'unknown'})")

    def halt(self, reason: str) -> bool:
        """强制进入 HALTED（急停使用）；返回是否发生了状态迁移。"""
        with self._lock:
            if self._mode is RiskMode.HALTED:
                return False
            self._mode = RiskMode.HALTED
            self._halt_reason = reason
        self.logger.error("Trading halted: %s", reason)
        return True

    def reset(self) -> None:
        """操作员显式复位：HALTED → ACTIVE，并清零日内盈亏比例。"""
        with self._lock:
            was_halted = self._mode is RiskMode.HALTED
            self._mode = RiskMode.ACTIVE
            self._halt_reason = None
            self._daily_pnl_fraction = 0.0
        if not self.suppress_warnings:
            self.logger.warning("[RISK] Manual reset, trading resumed (was_halted=%s).", was_halted)

    def start_session(self, day: date) -> bool:
        """跨日：清零日内盈亏比例；不会解除 HALTED。返回是否确实换日。"""
        with self._lock:
            if self._session_day == day:
                return False
            self._session_day = day
            self._daily_pnl_fraction = 0.0
            halted = self._mode is RiskMode.HALTED
        if not self.suppress_warnings:
            self.logger.info("[RISK] Session %s started (halted=%s).", day.isoformat(), halted)
        return True
