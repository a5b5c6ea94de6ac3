"""引擎上下文：一次性组装所有协作者，显式传给每个操作（不使用全局单例）。"""

from __future__ import annotations

from dataclasses import dataclass

from broker.abstract_broker import BrokerGateway, BrokerMode
from broker.execution.emergency_stop import EmergencyStopController
from broker.execution.order_executor import OrderExecutor
from broker.paper_broker import PaperBroker
from market_data.loader import CsvMarketDataProvider
from market_data.provider import MarketDataProvider
from market_data.synthetic import SyntheticMarketDataProvider
from risk.manager import RiskManager
from shared.config.schema import EngineConfig
from shared.state.ledger import InMemoryLedger, Ledger
from shared.state.sqlite_ledger import SqliteLedger
from shared.utils.alerts import AlertDispatcher, AlertSink, LedgerAlertSink, LoggingAlertSink
from shared.utils.bounded_call import BoundedCaller
from shared.utils.logging import setup_logger
from sizing.risk_budget import PositionSizer
from strategy.trend_confluence import SignalGenerator


@dataclass
class EngineContext:
    config: EngineConfig
    market_data: MarketDataProvider
    broker: BrokerGateway
    ledger: Ledger
    alerts: AlertSink
    risk: RiskManager
    signal_generator: SignalGenerator
    sizer: PositionSizer
    executor: OrderExecutor
    stop: EmergencyStopController
    caller: BoundedCaller

    def close(self) -> None:
        self.caller.shutdown()
        self.ledger.close()


def _build_market_data(cfg: EngineConfig) -> MarketDataProvider:
    if cfg.data.source == "csv":
        return CsvMarketDataProvider(cfg.data.data_dir)
    return SyntheticMarketDataProvider(seed=cfg.data.seed)


def _build_ledger(cfg: EngineConfig) -> Ledger:
    if cfg.ledger.enabled:
        return SqliteLedger(cfg.ledger.path)
    return InMemoryLedger()


def build_context(
    cfg: EngineConfig,
    *,
    market_data: MarketDataProvider | None = None,
    broker: BrokerGateway | None = None,
    ledger: Ledger | None = None,
    alerts: AlertSink | None = None,
    suppress_warnings: bool = False,
) -> EngineContext:
    """按配置组装上下文；传入的协作者优先（测试/接入真实券商时使用）。"""
    logger = setup_logger("engine")
    market_data = market_data or _build_market_data(cfg)
    ledger = ledger or _build_ledger(cfg)
    if broker is None:
        mode = BrokerMode.DRY_RUN if cfg.mode == "dry-run" else BrokerMode.PAPER
        broker = PaperBroker(initial_cash=cfg.initial_cash, price_source=market_data.last_price, mode=mode)
        # CLI 每次调用都是新进程：从账本成交记录恢复纸面账户
        broker.replay(ledger.all_trades())
    if alerts is None:
        alerts = LoggingAlertSink()
    dispatcher = AlertDispatcher([alerts, LedgerAlertSink(ledger)])

    caller = BoundedCaller(
        timeout=cfg.execution.broker_timeout_secs,
        retries=1,
        max_workers=max(4, cfg.execution.max_workers * 2),
        logger=logger,
    )
    risk = RiskManager(cfg.risk, suppress_warnings=suppress_warnings)
    sizer = PositionSizer(
        risk_per_trade=cfg.risk.risk_per_trade,
        stop_loss_pct=cfg.risk.stop_loss_pct,
        gate=risk,
    )
    executor = OrderExecutor(
        broker=broker,
        ledger=ledger,
        risk=risk,
        caller=caller,
        order_type=cfg.execution.order_type,
    )
    stop = EmergencyStopController(broker=broker, executor=executor, risk=risk, alerts=dispatcher, caller=caller)
    return EngineContext(
        config=cfg,
        market_data=market_data,
        broker=broker,
        ledger=ledger,
        alerts=dispatcher,
        risk=risk,
        signal_generator=SignalGenerator(),
        sizer=sizer,
        executor=executor,
        stop=stop,
        caller=caller,
    )
