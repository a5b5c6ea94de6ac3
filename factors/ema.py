"""EMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


def ema(series: pd.Series, span: int) -> pd.Series:
    """标准指数加权：alpha = 2/(span+1)，以第一个值为种子，不使用未来数据。"""
    return series.astype(float).ewm(span=span, adjust=False).mean()


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "price_col": self.price_col,
                "out_col": self.out_col,
            },
        )

    @property
    def column(self) -> str:
        return self.out_col or f"ema_{self.period}"

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"EMAFactor requires column: {self.price_col}")
        df[self.column] = ema(df[self.price_col], self.period)
        return df
