"""RSI 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class RSIFactor:
    """相对强弱指数（RSI，SMA 版本）。

    RS = 最近 period 个涨幅均值 / 最近 period 个跌幅均值；
    窗口内没有任何下跌时 RSI 直接取 100，而不是让 inf/NaN 继续传播。
    """

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("RSI period must be > 0")
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
        return self.out_col or f"rsi_{self.period}"

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"RSIFactor requires column: {self.price_col}")

        delta = df[self.price_col].astype(float).diff()
        gain = delta.clip(lower=0.0)
        loss = (-delta).clip(lower=0.0)

        avg_gain = gain.rolling(self.period, min_periods=self.period).mean()
        avg_loss = loss.rolling(self.period, min_periods=self.period).mean()
        # 用下跌次数判断“跌幅均值为 0”：0/1 序列的滚动和没有浮点残差
        down_count = (loss > 0).astype(float).rolling(self.period, min_periods=self.period).sum()

        rs = avg_gain / avg_loss.where(down_count > 0)
        rsi = 100.0 - (100.0 / (1.0 + rs))
        rsi = rsi.where(down_count > 0, 100.0).where(avg_gain.notna())
        df[self.column] = rsi.clip(lower=0.0, upper=100.0)
        return df
