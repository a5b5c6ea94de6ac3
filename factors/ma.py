"""SMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


def sma(series: pd.Series, window: int) -> pd.Series:
    """最近 window 个值的算术平均；不足 window 个值时为 NaN。"""
    return series.astype(float).rolling(window, min_periods=window).mean()


@dataclass(frozen=True)
class MAFactor:
    """简单移动平均（SMA），趋势判断用 20/50 两条。"""

    window: int
    price_col: str = "close"
    out_col: str | None = None
    name: str = "sma"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.window <= 0:
            raise ValueError("SMA window must be > 0")
        object.__setattr__(self, "params", {"window": self.window, "price_col": self.price_col})

    @property
    def column(self) -> str:
        return self.out_col or f"sma_{self.window}"

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"MAFactor requires column: {self.price_col}")
        df[self.column] = sma(df[self.price_col], self.window)
        return df
