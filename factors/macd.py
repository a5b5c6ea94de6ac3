"""MACD 因子：EMA(fast) - EMA(slow)，信号线为 MACD 的 EMA(signal)。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from factors.ema import ema


@dataclass(frozen=True)
class MACDFactor:
    fast: int = 12
    slow: int = 26
    signal: int = 9
    price_col: str = "close"
    name: str = "macd"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if min(self.fast, self.slow, self.signal) <= 0:
            raise ValueError("MACD spans must be > 0")
        if self.fast >= self.slow:
            raise ValueError("MACD fast span must be shorter than slow span")
        object.__setattr__(
            self,
            "params",
            {
                "fast": self.fast,
                "slow": self.slow,
                "signal": self.signal,
                "price_col": self.price_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"MACDFactor requires column: {self.price_col}")
        macd_line = ema(df[self.price_col], self.fast) - ema(df[self.price_col], self.slow)
        df["macd"] = macd_line
        df["macd_signal"] = ema(macd_line, self.signal)
        return df
