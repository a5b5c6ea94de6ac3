"""交易绩效快照（供仪表盘/CLI 读取）。"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from statistics import mean
from typing import Iterable, Sequence

from shared.models.models import Order
from shared.state.ledger import AccountSnapshot
from utils.pnl import ClosedTrade, filled_orders, match_fifo


@dataclass(frozen=True)
class PerformanceSnapshot:
    trades_today: int
    portfolio_change: float
    portfolio_change_pct: float
    win_rate: float
    avg_return_per_trade: float
    closed_trades: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_trade_metrics(closed: Sequence[ClosedTrade]) -> dict:
    """计算交易维度指标（胜率、平均单笔收益率、交易数）。"""
    if not closed:
        return {"win_rate": 0.0, "avg_return_per_trade": 0.0, "closed_trades": 0}
    wins = [t for t in closed if t.pnl > 0]
    return {
        "win_rate": len(wins) / len(closed),
        "avg_return_per_trade": mean(t.return_pct for t in closed),
        "closed_trades": len(closed),
    }


def compute_portfolio_change(snapshots: Sequence[AccountSnapshot]) -> tuple[float, float]:
    """首尾快照之间的组合价值变化（绝对值, 比例）。"""
    if not snapshots:
        return 0.0, 0.0
    ordered = sorted(snapshots, key=lambda s: s.ts)
    start = ordered[0].state.portfolio_value
    end = ordered[-1].state.portfolio_value
    change = end - start
    pct = change / start if start > 0 else 0.0
    return change, pct


def compute_performance(
    *,
    trades: Iterable[Order],
    snapshots: Sequence[AccountSnapshot],
    since: datetime,
) -> PerformanceSnapshot:
    """
    汇总 `since` 之后的绩效。

    `trades` 可以覆盖比 `since` 更长的窗口：更早的买入只用于 FIFO 配对，
    统计只计入 `since` 之后平仓的交易。
    """
    trades = list(trades)
    fills_today = [o for o in filled_orders(trades) if o.created_at >= since]
    closed_today = [t for t in match_fifo(trades) if t.closed_at >= since]
    change, pct = compute_portfolio_change([s for s in snapshots if s.ts >= since])
    metrics = compute_trade_metrics(closed_today)
    return PerformanceSnapshot(
        trades_today=len(fills_today),
        portfolio_change=change,
        portfolio_change_pct=pct,
        win_rate=metrics["win_rate"],
        avg_return_per_trade=metrics["avg_return_per_trade"],
        closed_trades=metrics["closed_trades"],
    )
