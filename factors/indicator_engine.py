"""指标引擎：bar 窗口 → 最新一根 bar 上的 IndicatorSet。

输出只依赖输入窗口（纯函数），每个周期整窗重算。
"""

from __future__ import annotations

import math
from typing import Sequence

import pandas as pd

from factors.base import apply_factors, bars_to_frame
from factors.ma import MAFactor
from factors.macd import MACDFactor
from factors.rsi import RSIFactor
from shared.errors import InsufficientHistory
from shared.models.models import Bar, IndicatorSet

# SMA-50 需要 50 根；MACD 的 EMA 以首值为种子，同样按 50 根视为预热完成
MIN_BARS = 50


class IndicatorEngine:
    def __init__(self, *, min_bars: int = MIN_BARS):
        self.min_bars = int(min_bars)
        self.sma_fast = MAFactor(window=20)
        self.sma_slow = MAFactor(window=50)
        self.rsi = RSIFactor(period=14)
        self.macd = MACDFactor(fast=12, slow=26, signal=9)

    def frame(self, bars: Sequence[Bar]) -> pd.DataFrame:
        """计算整张指标表（调试/研究用）。"""
        symbol = bars[0].symbol if bars else "?"
        if len(bars) < self.min_bars:
            raise InsufficientHistory(symbol, len(bars), self.min_bars)
        df = bars_to_frame(bars)
        return apply_factors(df, [self.sma_fast, self.sma_slow, self.rsi, self.macd])

    def compute(self, bars: Sequence[Bar]) -> IndicatorSet:
        """计算最新一根 bar 的指标。

        Raises
        ------
        InsufficientHistory
            bar 数量少于 min_bars，或最新一行指标仍处于预热期（NaN）。
        """
        df = self.frame(bars)
        last = df.iloc[-1]
        symbol = bars[-1].symbol
        values = {
            "sma_20": float(last[self.sma_fast.column]),
            "sma_50": float(last[self.sma_slow.column]),
            "rsi_14": float(last[self.rsi.column]),
            "macd": float(last["macd"]),
            "macd_signal": float(last["macd_signal"]),
        }
        if any(math.isnan(v) for v in values.values()):
            raise InsufficientHistory(symbol, len(bars), self.min_bars)
        return IndicatorSet(
            symbol=symbol,
            timestamp=pd.Timestamp(last["timestamp"]).to_pydatetime(),
            price=float(last["close"]),
            **values,
        )
