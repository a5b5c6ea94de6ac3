"""账本（Ledger）逻辑接口与内存实现。

账本只追加：订单、账户快照、告警三类事件。
同一 correlation_id 的每个状态最多写入一次（PENDING 之后再追加终态）。
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from shared.models.models import AccountState, Order


@dataclass(frozen=True)
class AccountSnapshot:
    ts: datetime
    state: AccountState


@dataclass(frozen=True)
class AlertRecord:
    ts: datetime
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)


class Ledger(ABC):
    """持久化账本接口；绩效指标的数据来源。"""

    @abstractmethod
    def append_trade(self, order: Order) -> bool:
        """追加订单记录；同一 (correlation_id, status) 重复写入返回 False。"""

    @abstractmethod
    def append_account_snapshot(self, state: AccountState, ts: datetime | None = None) -> None:
        ...

    @abstractmethod
    def append_alert(self, kind: str, payload: dict[str, Any], ts: datetime | None = None) -> None:
        ...

    @abstractmethod
    def recent_trades(self, window: timedelta, now: datetime | None = None) -> list[Order]:
        """返回 `now - window` 之后的订单记录（按写入顺序）。"""

    @abstractmethod
    def recent_snapshots(self, window: timedelta, now: datetime | None = None) -> list[AccountSnapshot]:
        ...

    @abstractmethod
    def recent_alerts(self, window: timedelta, now: datetime | None = None) -> list[AlertRecord]:
        ...

    @abstractmethod
    def all_trades(self) -> list[Order]:
        """全部订单记录（按写入顺序）；paper broker 重启时据此重建持仓。"""

    @abstractmethod
    def last_alert(self, kinds: Iterable[str]) -> AlertRecord | None:
        """kinds 中最后写入的一条告警；用写入顺序而不是 ts 判断先后。"""

    def close(self) -> None:
        return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryLedger(Ledger):
    """进程内账本（dry-run 与测试使用）。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._trades: list[Order] = []
        self._trade_keys: set[tuple[str, str]] = set()
        self._snapshots: list[AccountSnapshot] = []
        self._alerts: list[AlertRecord] = []

    def append_trade(self, order: Order) -> bool:
        key = (order.correlation_id, order.status.value)
        with self._lock:
            if key in self._trade_keys:
                return False
            self._trade_keys.add(key)
            self._trades.append(order)
        return True

    def append_account_snapshot(self, state: AccountState, ts: datetime | None = None) -> None:
        with self._lock:
            self._snapshots.append(AccountSnapshot(ts=ts or _utc_now(), state=state))

    def append_alert(self, kind: str, payload: dict[str, Any], ts: datetime | None = None) -> None:
        with self._lock:
            self._alerts.append(AlertRecord(ts=ts or _utc_now(), kind=kind, payload=dict(payload)))

    def recent_trades(self, window: timedelta, now: datetime | None = None) -> list[Order]:
        cutoff = (now or _utc_now()) - window
        with self._lock:
            return [o for o in self._trades if o.created_at >= cutoff]

    def recent_snapshots(self, window: timedelta, now: datetime | None = None) -> list[AccountSnapshot]:
        cutoff = (now or _utc_now()) - window
        with self._lock:
            return [s for s in self._snapshots if s.ts >= cutoff]

    def recent_alerts(self, window: timedelta, now: datetime | None = None) -> list[AlertRecord]:
        cutoff = (now or _utc_now()) - window
        with self._lock:
            return [a for a in self._alerts if a.ts >= cutoff]

    def all_trades(self) -> list[Order]:
        with self._lock:
            return list(self._trades)

    def last_alert(self, kinds: Iterable[str]) -> AlertRecord | None:
        wanted = set(kinds)
        with self._lock:
            for alert in reversed(self._alerts):
                if alert.kind in wanted:
                    return alert
        return None
