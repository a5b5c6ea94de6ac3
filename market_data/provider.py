"""行情源接口。"""

from __future__ import annotations

from typing import Protocol, Sequence

from shared.models.models import Bar


class MarketDataProvider(Protocol):
    """bar 数据源。

    `bars()` 返回按时间升序排列的最近 limit 根 bar；取不到时抛出 `DataUnavailable`。
    """

    def bars(self, symbol: str, limit: int) -> Sequence[Bar]: ...

    def last_price(self, symbol: str) -> float: ...
