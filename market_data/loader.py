"""本地 CSV 历史数据源。

每个品种一个文件 `<data_dir>/<SYMBOL>.csv`，列：timestamp,open,high,low,close,volume。
timestamp 支持 ISO 字符串或秒/毫秒级 epoch。
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

from shared.errors import DataUnavailable
from shared.models.models import Bar
from shared.utils.logging import setup_logger

REQUIRED_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def _parse_timestamps(col: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(col):
        unit = "ms" if float(col.max()) > 1e12 else "s"
        return pd.to_datetime(col, unit=unit, utc=True)
    return pd.to_datetime(col, utc=True)


def load_bars_frame(path: str | Path) -> pd.DataFrame:
    """读取 CSV 并做基础清洗（去重、排序、丢弃缺价行）。"""
    df = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} missing columns: {missing}")
    df = df[REQUIRED_COLUMNS].copy()
    df["timestamp"] = _parse_timestamps(df["timestamp"])
    df = df.dropna(subset=["close"])
    df = df.drop_duplicates(subset=["timestamp"], keep="last").sort_values("timestamp")
    return df.reset_index(drop=True)


class CsvMarketDataProvider:
    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.logger = setup_logger("market-data")
        self._cache: dict[str, tuple[float, pd.DataFrame]] = {}

    def _frame(self, symbol: str) -> pd.DataFrame:
        path = self.data_dir / f"{symbol}.csv"
        if not path.exists():
            raise DataUnavailable(f"{symbol}: no data file at {path}")
        mtime = path.stat().st_mtime
        cached = self._cache.get(symbol)
        if cached and cached[0] == mtime:
            return cached[1]
        try:
            df = load_bars_frame(path)
        except (ValueError, OSError, pd.errors.ParserError) as exc:
            raise DataUnavailable(f"{symbol}: {exc}") from exc
        self._cache[symbol] = (mtime, df)
        return df

    def bars(self, symbol: str, limit: int) -> list[Bar]:
        df = self._frame(symbol).tail(int(limit))
        if df.empty:
            raise DataUnavailable(f"{symbol}: data file is empty")
        return [
            Bar(
                symbol=symbol,
                timestamp=ts.to_pydatetime(),
                open=float(o),
                high=float(h),
                low=float(lo),
                close=float(c),
                volume=float(v),
            )
            for ts, o, h, lo, c, v in df.itertuples(index=False, name=None)
        ]

    def last_price(self, symbol: str) -> float:
        return float(self._frame(symbol)["close"].iloc[-1])


def write_bars_csv(bars: list[Bar], path: str | Path) -> Path:
    """把 bar 序列写成 CSV（与 CsvMarketDataProvider 读取格式一致）。"""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(
        [
            {
                "timestamp": b.timestamp.astimezone(timezone.utc).isoformat()
                if isinstance(b.timestamp, datetime)
                else b.timestamp,
                "open": b.open,
                "high": b.high,
                "low": b.low,
                "close": b.close,
                "volume": b.volume,
            }
            for b in bars
        ]
    )
    df.to_csv(out, index=False)
    return out
