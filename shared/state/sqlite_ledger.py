"""SQLite 本地事件账本。

目标
----
- 订单、账户快照、告警可追溯，为绩效统计与审计提供可靠数据源。
- 重启后仍可从账本恢复当日成交，计算胜率等指标。

设计
----
- SQLite，append-only（三张表都只 INSERT，不 UPDATE）。
- 以 (correlation_id, status) 作为订单唯一键：每个状态只写一次。
- 工作线程共享同一连接，写入由锁串行化。
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

from shared.models.models import AccountState, Order, OrderSide, OrderStatus
from shared.state.ledger import AccountSnapshot, AlertRecord, Ledger
from shared.utils.logging import setup_logger


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    # 固定微秒位数，保证按字符串比较与时间顺序一致
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_iso(val: str) -> datetime:
    return datetime.fromisoformat(val.replace("Z", "+00:00"))


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str, allow_nan=False)


class SqliteLedger(Ledger):
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = setup_logger("ledger")
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trades (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              correlation_id TEXT NOT NULL,
              symbol TEXT NOT NULL,
              side TEXT NOT NULL,
              quantity INTEGER NOT NULL,
              order_type TEXT NOT NULL,
              status TEXT NOT NULL,
              price REAL,
              reason TEXT,
              created_at TEXT NOT NULL,
              UNIQUE (correlation_id, status)
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS account_snapshots (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              buying_power REAL NOT NULL,
              cash REAL NOT NULL,
              portfolio_value REAL NOT NULL,
              day_trade_count INTEGER NOT NULL,
              trading_blocked INTEGER NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              kind TEXT NOT NULL,
              payload_json TEXT NOT NULL
            );
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_created ON trades(created_at);")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_ts ON account_snapshots(ts);")

    def append_trade(self, order: Order) -> bool:
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO trades (
                      correlation_id, symbol, side, quantity, order_type, status, price, reason, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        order.correlation_id,
                        order.symbol,
                        order.side.value,
                        int(order.quantity),
                        order.type,
                        order.status.value,
                        float(order.price) if order.price is not None else None,
                        order.reason,
                        _iso(order.created_at),
                    ),
                )
            return True
        except sqlite3.IntegrityError:
            self.logger.warning(
                "Trade %s already recorded with status %s", order.correlation_id, order.status.value
            )
            return False

    def append_account_snapshot(self, state: AccountState, ts: datetime | None = None) -> None:
        ts = ts or datetime.now(timezone.utc)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO account_snapshots (
                  ts, buying_power, cash, portfolio_value, day_trade_count, trading_blocked
                ) VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    _iso(ts),
                    float(state.buying_power),
                    float(state.cash),
                    float(state.portfolio_value),
                    int(state.day_trade_count),
                    1 if state.trading_blocked else 0,
                ),
            )

    def append_alert(self, kind: str, payload: dict[str, Any], ts: datetime | None = None) -> None:
        ts = ts or datetime.now(timezone.utc)
        with self._lock:
            self._conn.execute(
                "INSERT INTO alerts (ts, kind, payload_json) VALUES (?, ?, ?);",
                (_iso(ts), str(kind), _json_dumps(payload)),
            )

    def _select_since(self, sql: str, window: timedelta, now: datetime | None) -> list[dict[str, Any]]:
        cutoff = _iso((now or datetime.now(timezone.utc)) - window)
        with self._lock:
            cur = self._conn.execute(sql, (cutoff,))
            cols = [c[0] for c in cur.description]
            rows = cur.fetchall()
        return [{cols[i]: row[i] for i in range(len(cols))} for row in rows]

    def recent_trades(self, window: timedelta, now: datetime | None = None) -> list[Order]:
        rows = self._select_since(
            "SELECT * FROM trades WHERE created_at >= ? ORDER BY id ASC;", window, now
        )
        return [_row_to_order(r) for r in rows]

    def all_trades(self) -> list[Order]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM trades ORDER BY id ASC;")
            cols = [c[0] for c in cur.description]
            rows = cur.fetchall()
        return [_row_to_order(dict(zip(cols, row))) for row in rows]

    def recent_snapshots(self, window: timedelta, now: datetime | None = None) -> list[AccountSnapshot]:
        rows = self._select_since(
            "SELECT * FROM account_snapshots WHERE ts >= ? ORDER BY id ASC;", window, now
        )
        return [
            AccountSnapshot(
                ts=_parse_iso(str(r["ts"])),
                state=AccountState(
                    buying_power=float(r["buying_power"]),
                    cash=float(r["cash"]),
                    portfolio_value=float(r["portfolio_value"]),
                    day_trade_count=int(r["day_trade_count"]),
                    trading_blocked=bool(r["trading_blocked"]),
                ),
            )
            for r in rows
        ]

    def recent_alerts(self, window: timedelta, now: datetime | None = None) -> list[AlertRecord]:
        rows = self._select_since("SELECT * FROM alerts WHERE ts >= ? ORDER BY id ASC;", window, now)
        return [_row_to_alert(r) for r in rows]

    def last_alert(self, kinds: Iterable[str]) -> AlertRecord | None:
        kinds = list(kinds)
        if not kinds:
            return None
        placeholders = ", ".join("?" for _ in kinds)
        with self._lock:
            cur = self._conn.execute(
                f"SELECT ts, kind, payload_json FROM alerts WHERE kind IN ({placeholders}) ORDER BY id DESC LIMIT 1;",
                kinds,
            )
            row = cur.fetchone()
        if row is None:
            return None
        return _row_to_alert({"ts": row[0], "kind": row[1], "payload_json": row[2]})


def _row_to_order(r: dict[str, Any]) -> Order:
    return Order(
        correlation_id=str(r["correlation_id"]),
        symbol=str(r["symbol"]),
        side=OrderSide(r["side"]),
        quantity=int(r["quantity"]),
        type=str(r["order_type"]),
        status=OrderStatus(r["status"]),
        price=float(r["price"]) if r["price"] is not None else None,
        reason=r["reason"],
        created_at=_parse_iso(str(r["created_at"])),
    )


def _row_to_alert(r: dict[str, Any]) -> AlertRecord:
    return AlertRecord(ts=_parse_iso(str(r["ts"])), kind=str(r["kind"]), payload=json.loads(r["payload_json"]))
