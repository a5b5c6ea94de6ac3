"""周期交易引擎（TradingEngine）：每个 tick 执行一次完整决策周期。

一个周期：
交易时段闸门 → 重试急停残留 → 账户快照 → 并行处理各品种 → 刷新日内盈亏 → 熔断评估。
周期之间互不重叠；上一个周期未结束时到来的 tick 直接跳过（不排队）。
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from broker.execution.emergency_stop import StopResult
from engine.base_engine import BaseEngine, EngineResult
from engine.context import EngineContext, build_context
from engine.market_hours import is_market_open, session_start, trading_day
from engine.signal_pipeline import BuyingPowerBudget, CycleState, OutcomeAction, SymbolOutcome, process_symbol
from shared.config.schema import EngineConfig
from shared.errors import BrokerError, RiskLimitBreached
from shared.models.models import AccountState, Order
from shared.utils.logging import setup_logger
from utils.metrics import PerformanceSnapshot, compute_performance

# FIFO 配对回看窗口：覆盖隔夜持仓的建仓记录
PERFORMANCE_LOOKBACK = timedelta(days=30)
# 这些告警之后没有 risk_reset，说明上一个进程停在 HALTED
HALT_ALERTS = ("emergency_stop", "risk_limit_breached")
RESET_ALERT = "risk_reset"


@dataclass
class CycleResult:
    cycle_ts: datetime
    skipped: bool = False
    market_closed: bool = False
    outcomes: list[SymbolOutcome] = field(default_factory=list)
    account: AccountState | None = None
    daily_pnl_fraction: float = 0.0
    trading_active: bool = True
    breach: RiskLimitBreached | None = None
    stop: StopResult | None = None
    stop_retry: StopResult | None = None
    error: str | None = None

    def outcome_for(self, symbol: str) -> SymbolOutcome | None:
        for outcome in self.outcomes:
            if outcome.symbol == symbol:
                return outcome
        return None

    @property
    def orders(self) -> list[Order]:
        return [o.order for o in self.outcomes if o.order is not None]


class TradingEngine(BaseEngine):
    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.logger = setup_logger("engine")
        self._cycle_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._shutdown = threading.Event()

        self._session_day: date | None = None
        self._session_start_value: float | None = None
        self._rebase_session = False
        self._restore_halt()

    def _restore_halt(self) -> None:
        """从账本恢复熔断状态：HALTED 跨进程保持，直到操作员显式复位。"""
        last = self.ctx.ledger.last_alert(HALT_ALERTS + (RESET_ALERT,))
        if last is None or last.kind == RESET_ALERT:
            return
        reason = str(last.payload.get("reason") or last.kind)
        self.ctx.risk.halt(reason)
        # 上一个进程的急停是否平干净未知：下个周期按全部持仓重新确认
        self.ctx.stop.require_flat_check()
        self.logger.warning("Restored HALTED state from ledger (%s at %s).", reason, last.ts.isoformat())

    @classmethod
    def from_config(cls, cfg: EngineConfig, **overrides: Any) -> "TradingEngine":
        return cls(build_context(cfg, **overrides))

    # ---- 周期 ----
    def execute_cycle(self, now: datetime | None = None) -> CycleResult:
        """执行一个决策周期；与正在进行的周期重叠时返回 `skipped=True`。"""
        now = now or datetime.now(timezone.utc)
        if not self._cycle_lock.acquire(blocking=False):
            self.logger.warning("Previous cycle still running, tick at %s skipped.", now.isoformat())
            return CycleResult(cycle_ts=now, skipped=True, trading_active=self.ctx.risk.trading_active)
        try:
            return self._run_cycle(now)
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, now: datetime) -> CycleResult:
        ctx = self.ctx
        cfg = ctx.config
        if not is_market_open(now, cfg.market_hours):
            self.logger.info("Market closed at %s, nothing to do.", now.isoformat())
            return CycleResult(cycle_ts=now, market_closed=True, trading_active=ctx.risk.trading_active)

        # 急停屏障只对单个周期有效；HALTED 由风控自身保持
        ctx.executor.unblock_entries()
        ctx.executor.refresh_pending()
        result = CycleResult(cycle_ts=now)
        result.stop_retry = self._retry_stop(now)

        try:
            account = ctx.caller.call("account_state", ctx.broker.account_state)
        except BrokerError as exc:
            return self._abort(result, exc)

        ctx.ledger.append_account_snapshot(account, ts=now)
        result.account = account
        self._roll_session(now, account)

        breach = self._update_risk(account)
        if breach is not None:
            result.breach = breach
            result.stop = self._on_breach(breach, now)

        # 持仓在熔断处理之后读取，避免对急停刚平掉的品种再发平仓单
        try:
            positions = ctx.caller.call("positions", ctx.broker.positions)
        except BrokerError as exc:
            return self._abort(result, exc)

        cycle = CycleState(
            cycle_ts=now,
            account=account,
            positions={p.symbol: p for p in positions if p.quantity != 0},
            budget=BuyingPowerBudget(account.buying_power),
        )
        result.outcomes = self._process_symbols(cycle)

        self._end_of_cycle(now, result)
        result.daily_pnl_fraction = ctx.risk.daily_pnl_fraction
        result.trading_active = ctx.risk.trading_active
        self._log_summary(result)
        return result

    def _abort(self, result: CycleResult, exc: BrokerError) -> CycleResult:
        self.logger.error("Account snapshot unavailable, cycle aborted: %s", exc)
        result.error = f"{exc.reason}: {exc}"
        result.trading_active = self.ctx.risk.trading_active
        return result

    def _process_symbols(self, cycle: CycleState) -> list[SymbolOutcome]:
        symbols = list(self.ctx.config.symbols)
        workers = max(1, min(self.ctx.config.execution.max_workers, len(symbols)))
        outcomes: list[SymbolOutcome] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cycle") as pool:
            futures = [(symbol, pool.submit(process_symbol, self.ctx, cycle, symbol)) for symbol in symbols]
            for symbol, future in futures:
                try:
                    outcomes.append(future.result())
                except Exception as exc:  # noqa: BLE001 - 单品种故障不能中断整个周期
                    self.logger.exception("Unexpected failure while processing %s", symbol)
                    outcomes.append(
                        SymbolOutcome(symbol=symbol, action=OutcomeAction.ERROR, reason="internal_error", detail=str(exc))
                    )
        return outcomes

    def _end_of_cycle(self, now: datetime, result: CycleResult) -> None:
        try:
            account = self.ctx.caller.call("account_state", self.ctx.broker.account_state)
        except BrokerError as exc:
            self.logger.warning("End-of-cycle account refresh failed, keep previous pnl: %s", exc)
            return
        self.ctx.ledger.append_account_snapshot(account, ts=now)
        result.account = account
        breach = self._update_risk(account)
        if breach is not None:
            result.breach = breach
            stop = self._on_breach(breach, now)
            if result.stop is None:
                result.stop = stop

    # ---- 日内盈亏 / 熔断 ----
    def _roll_session(self, now: datetime, account: AccountState) -> None:
        hours = self.ctx.config.market_hours
        day = trading_day(now, hours)
        if self._rebase_session:
            self._rebase_session = False
            self._session_start_value = account.portfolio_value
            self.logger.info("Session baseline rebased to %.2f.", account.portfolio_value)
        if self._session_day == day and self._session_start_value is not None:
            return

        self._session_day = day
        self.ctx.risk.start_session(day)
        # 重启后从账本恢复当日首个快照作为基准
        since = session_start(now, hours)
        snapshots = sorted(self.ctx.ledger.recent_snapshots(now - since, now=now), key=lambda s: s.ts)
        reset = self.ctx.ledger.last_alert((RESET_ALERT,))
        if reset is not None and reset.ts >= since:
            # 当日已复位（可能来自另一个进程）：以复位之后的首个快照为基准
            snapshots = [s for s in snapshots if s.ts >= reset.ts]
        if snapshots:
            self._session_start_value = snapshots[0].state.portfolio_value
        else:
            self._session_start_value = account.portfolio_value
        self.logger.info("Trading day %s, session baseline %.2f.", day.isoformat(), self._session_start_value)

    def _update_risk(self, account: AccountState) -> RiskLimitBreached | None:
        base = self._session_start_value or 0.0
        pnl = account.portfolio_value - base
        fraction = self.ctx.risk.update(pnl, base)
        self.logger.info(
            "PnL(today=%.2f, fraction=%+.4f%%, portfolio=%.2f)", pnl, fraction * 100, account.portfolio_value
        )
        return self.ctx.risk.check()

    def _on_breach(self, breach: RiskLimitBreached, now: datetime) -> StopResult:
        self.ctx.alerts.notify(
            "risk_limit_breached",
            {
                "daily_pnl_fraction": breach.daily_pnl_fraction,
                "loss_limit": breach.loss_limit,
                "ts": now.isoformat(),
            },
        )
        return self.emergency_stop(reason="risk_limit_breached", now=now)

    def _retry_stop(self, now: datetime) -> StopResult | None:
        with self._stop_lock:
            retry = self.ctx.stop.retry_pending(cycle_ts=now)
        if retry is not None and not retry.ok:
            self.logger.error("Emergency stop still unresolved: %s", self.ctx.stop.unresolved_symbols)
        return retry

    # ---- 操作员接口 ----
    def emergency_stop(self, reason: str = "manual", now: datetime | None = None) -> StopResult:
        """立即急停：不等待当前周期，平掉所有持仓。"""
        now = now or datetime.now(timezone.utc)
        with self._stop_lock:
            return self.ctx.stop.trigger(reason=reason, cycle_ts=now)

    def risk_reset(self) -> None:
        """操作员复位：恢复 ACTIVE，并以下一周期的组合价值作为新的日内基准。"""
        self.ctx.risk.reset()
        self.ctx.executor.unblock_entries()
        self._rebase_session = True
        self.ctx.alerts.notify(RESET_ALERT, {"ts": datetime.now(timezone.utc).isoformat()})

    def performance_snapshot(self, now: datetime | None = None) -> PerformanceSnapshot:
        now = now or datetime.now(timezone.utc)
        since = session_start(now, self.ctx.config.market_hours)
        return compute_performance(
            trades=self.ctx.ledger.recent_trades(PERFORMANCE_LOOKBACK, now=now),
            snapshots=self.ctx.ledger.recent_snapshots(now - since, now=now),
            since=since,
        )

    # ---- 本地循环 ----
    def run(self, max_cycles: int | None = None, interval: float | None = None) -> EngineResult:
        """本地定时循环（生产环境通常由外部调度器调用 `execute_cycle`）。"""
        interval = self.ctx.config.cycle_interval_secs if interval is None else interval
        cycles = skipped = closed = 0
        orders: list[Order] = []
        self._shutdown.clear()
        while not self._shutdown.is_set():
            result = self.execute_cycle()
            cycles += 1
            skipped += int(result.skipped)
            closed += int(result.market_closed)
            orders.extend(result.orders)
            if max_cycles is not None and cycles >= max_cycles:
                self.logger.info("Reached max_cycles=%s, exiting runner.", max_cycles)
                break
            self._shutdown.wait(interval)

        return EngineResult(
            summary={
                "cycles": cycles,
                "skipped": skipped,
                "market_closed": closed,
                "orders": len(orders),
                "trading_active": self.ctx.risk.trading_active,
                "unresolved_stop_symbols": self.ctx.stop.unresolved_symbols,
            },
            artifacts={"orders": orders},
        )

    def request_shutdown(self) -> None:
        self._shutdown.set()

    def close(self) -> None:
        self.ctx.close()

    def _log_summary(self, result: CycleResult) -> None:
        counts: dict[str, int] = {}
        for outcome in result.outcomes:
            counts[outcome.action.value] = counts.get(outcome.action.value, 0) + 1
        self.logger.info(
            "Cycle %s done: %s | trading_active=%s",
            result.cycle_ts.isoformat(),
            counts or "no symbols",
            result.trading_active,
        )
