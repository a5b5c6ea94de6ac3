"""ZenithGuard 统一命令行入口。

子命令：

- `runner`：本地定时循环，每 `--interval` 秒执行一个决策周期。
  运行中可通过信号控制：SIGUSR1 急停，SIGUSR2 风控复位，SIGINT/SIGTERM 退出。
- `cycle`：只执行一个周期（供外部调度器调用）。
- `stop`：对配置的 broker 立即执行急停（平掉全部持仓）；HALTED 记入账本，之后的调用保持熔断。
- `reset`：操作员复位，解除 HALTED 并以下一周期的组合价值作为日内基准。
- `performance`：从账本读取当日绩效快照。
"""

from __future__ import annotations

import argparse
import signal
import threading
from dataclasses import dataclass
from typing import Any

from rich.console import Console
from rich.table import Table

from broker.execution.emergency_stop import StopResult
from engine.trading_engine import CycleResult, TradingEngine
from shared.config.config_loader import load_config
from utils.metrics import PerformanceSnapshot

console = Console()


@dataclass
class CliArgs:
    config: str
    task: str
    max_cycles: int | None = None
    interval: float | None = None
    reason: str = "manual"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zenithguard", description="ZenithGuard 周期交易决策与风控引擎")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument("--config", default=default, help="配置文件路径 (默认: config/config.yml)")

    # 允许 `main.py --config ... cycle` 与 `main.py cycle --config ...` 两种写法
    _add_config_arg(parser, default="config/config.yml")
    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="本地定时循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument("--max-cycles", type=int, default=None, help="跑多少个周期后退出")
    p_runner.add_argument("--interval", type=float, default=None, help="周期间隔秒数（默认取配置）")

    p_cycle = sub.add_parser("cycle", help="执行单个周期")
    _add_config_arg(p_cycle, default=argparse.SUPPRESS)

    p_stop = sub.add_parser("stop", help="急停：平掉全部持仓并停止开仓")
    _add_config_arg(p_stop, default=argparse.SUPPRESS)
    p_stop.add_argument("--reason", default="manual")

    p_reset = sub.add_parser("reset", help="风控复位：HALTED → ACTIVE")
    _add_config_arg(p_reset, default=argparse.SUPPRESS)

    p_perf = sub.add_parser("performance", help="当日绩效快照")
    _add_config_arg(p_perf, default=argparse.SUPPRESS)
    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "cycle",
        max_cycles=getattr(ns, "max_cycles", None),
        interval=getattr(ns, "interval", None),
        reason=str(getattr(ns, "reason", "manual")),
    )


def render_cycle(result: CycleResult) -> None:
    if result.skipped:
        console.print("[yellow]Cycle skipped: previous cycle still running[/yellow]")
        return
    if result.market_closed:
        console.print("[dim]Market closed, nothing to do[/dim]")
        return
    if result.error:
        console.print(f"[red]Cycle aborted: {result.error}[/red]")
        return

    table = Table(title=f"Cycle {result.cycle_ts.isoformat()}")
    for col in ("Symbol", "Signal", "Price", "Action", "Reason", "Qty"):
        table.add_column(col)
    for o in result.outcomes:
        table.add_row(
            o.symbol,
            o.signal.verdict.value if o.signal else "-",
            f"{o.signal.price:.2f}" if o.signal else "-",
            o.action.value,
            o.reason,
            str(o.order.quantity) if o.order else "-",
        )
    console.print(table)
    state = "[green]ACTIVE[/green]" if result.trading_active else "[red]HALTED[/red]"
    console.print(f"Trading {state} | daily pnl {result.daily_pnl_fraction:+.4%}")
    if result.stop is not None:
        render_stop(result.stop)


def render_stop(result: StopResult) -> None:
    if result.already_flat:
        console.print(f"[bold red]EMERGENCY STOP[/bold red] ({result.reason}): account already flat")
        return
    table = Table(title=f"Emergency stop ({result.reason})")
    table.add_column("Symbol")
    table.add_column("Status")
    table.add_column("Detail")
    for order in result.closed:
        table.add_row(order.symbol, order.status.value, f"{order.side.value} {order.quantity}")
    for symbol, error in result.failed.items():
        table.add_row(symbol, "[red]FAILED[/red]", error)
    console.print(table)
    if result.pending_retry:
        console.print(f"[red]Unresolved, retried next cycle: {', '.join(result.pending_retry)}[/red]")


def render_performance(snap: PerformanceSnapshot) -> None:
    table = Table(title="Performance (today)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Trades today", str(snap.trades_today))
    table.add_row("Closed trades", str(snap.closed_trades))
    table.add_row("Portfolio change", f"{snap.portfolio_change:+.2f} ({snap.portfolio_change_pct:+.2%})")
    table.add_row("Win rate", f"{snap.win_rate:.1%}")
    table.add_row("Avg return / trade", f"{snap.avg_return_per_trade:+.3%}")
    console.print(table)


def _install_signal_handlers(engine: TradingEngine) -> None:
    # 处理函数里不直接持锁：急停/复位放到独立线程执行
    def _in_thread(fn, *args) -> None:
        threading.Thread(target=fn, args=args, daemon=True).start()

    signal.signal(signal.SIGINT, lambda *_: engine.request_shutdown())
    signal.signal(signal.SIGTERM, lambda *_: engine.request_shutdown())
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda *_: _in_thread(engine.emergency_stop, "operator_signal"))
        signal.signal(signal.SIGUSR2, lambda *_: _in_thread(engine.risk_reset))


def main(argv: list[str] | None = None) -> Any:
    args = parse_args(argv)
    try:
        cfg = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        raise SystemExit(2) from exc

    engine = TradingEngine.from_config(cfg)
    try:
        if args.task == "runner":
            _install_signal_handlers(engine)
            return engine.run(max_cycles=args.max_cycles, interval=args.interval).summary

        if args.task == "cycle":
            result = engine.execute_cycle()
            render_cycle(result)
            return result

        if args.task == "stop":
            result = engine.emergency_stop(reason=args.reason)
            render_stop(result)
            return result

        if args.task == "reset":
            was_active = engine.ctx.risk.trading_active
            engine.risk_reset()
            console.print(f"[green]Risk reset[/green]: trading ACTIVE (was {'ACTIVE' if was_active else 'HALTED'})")
            return engine.ctx.risk.snapshot()

        if args.task == "performance":
            snap = engine.performance_snapshot()
            render_performance(snap)
            return snap.to_dict()
    finally:
        engine.close()

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
