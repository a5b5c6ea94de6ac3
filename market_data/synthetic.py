"""本地合成行情（随机游走），便于离线 dry-run。

每次 `bars()` 调用都会先追加一根新 bar，模拟经过一个周期。
"""

from __future__ import annotations

import threading
import zlib
from datetime import datetime, timedelta, timezone

import numpy as np

from shared.models.models import Bar


class SyntheticMarketDataProvider:
    def __init__(
        self,
        *,
        seed: int = 7,
        start_price: float = 100.0,
        interval: timedelta = timedelta(minutes=5),
        warmup_bars: int = 120,
        drift: float = 0.0002,
        volatility: float = 0.004,
    ):
        self.seed = int(seed)
        self.start_price = float(start_price)
        self.interval = interval
        self.warmup_bars = int(warmup_bars)
        self.drift = float(drift)
        self.volatility = float(volatility)
        self._lock = threading.Lock()
        self._series: dict[str, list[Bar]] = {}
        self._rngs: dict[str, np.random.Generator] = {}

    def _rng(self, symbol: str) -> np.random.Generator:
        if symbol not in self._rngs:
            # 每个品种独立且可复现
            self._rngs[symbol] = np.random.default_rng([self.seed, zlib.crc32(symbol.encode("utf-8"))])
        return self._rngs[symbol]

    def _append(self, symbol: str, n: int) -> None:
        series = self._series.setdefault(symbol, [])
        rng = self._rng(symbol)
        if series:
            price = series[-1].close
            ts = series[-1].timestamp
        else:
            price = self.start_price
            ts = datetime.now(timezone.utc).replace(second=0, microsecond=0) - self.interval * n
        for _ in range(n):
            ret = rng.normal(self.drift, self.volatility)
            open_ = price
            close = max(0.01, open_ * float(np.exp(ret)))
            spread = abs(rng.normal(0.0, self.volatility / 2)) * open_
            ts = ts + self.interval
            series.append(
                Bar(
                    symbol=symbol,
                    timestamp=ts,
                    open=open_,
                    high=max(open_, close) + spread,
                    low=max(0.01, min(open_, close) - spread),
                    close=close,
                    volume=float(rng.integers(1_000, 50_000)),
                )
            )
            price = close

    def bars(self, symbol: str, limit: int) -> list[Bar]:
        with self._lock:
            if symbol not in self._series:
                self._append(symbol, self.warmup_bars)
            else:
                self._append(symbol, 1)
            return list(self._series[symbol][-int(limit):])

    def last_price(self, symbol: str) -> float:
        with self._lock:
            if symbol not in self._series:
                self._append(symbol, self.warmup_bars)
            return self._series[symbol][-1].close
