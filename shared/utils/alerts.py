"""告警出口（AlertSink）。

告警是 fire-and-forget：任何 sink 的失败都只记日志，绝不阻塞交易路径。
具体传输（邮件/IM）不在本仓库范围内，这里提供日志与账本两种落地方式。
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from shared.state.ledger import Ledger
from shared.utils.logging import setup_logger


class AlertSink(Protocol):
    def notify(self, kind: str, payload: dict[str, Any]) -> None: ...


class LoggingAlertSink:
    """把告警写到 `alerts` logger。"""

    def __init__(self) -> None:
        self.logger = setup_logger("alerts")

    def notify(self, kind: str, payload: dict[str, Any]) -> None:
        self.logger.warning("[ALERT] %s %s", kind, payload)


class LedgerAlertSink:
    """把告警追加到账本，便于事后审计。"""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def notify(self, kind: str, payload: dict[str, Any]) -> None:
        self.ledger.append_alert(kind, payload)


class AlertDispatcher:
    """扇出到多个 sink，并吞掉 sink 自身的异常。"""

    def __init__(self, sinks: Iterable[AlertSink]):
        self.sinks = list(sinks)
        self.logger = setup_logger("alerts")

    def notify(self, kind: str, payload: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink.notify(kind, payload)
            except Exception as exc:
                self.logger.error("Alert sink %s failed for %s: %s", type(sink).__name__, kind, exc)
