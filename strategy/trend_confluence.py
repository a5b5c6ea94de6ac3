"""趋势共振规则：SMA 趋势 + RSI 过滤 + MACD 动能，三者同向才出信号。"""

from __future__ import annotations

from typing import Sequence

from factors.indicator_engine import IndicatorEngine
from shared.models.models import Bar, IndicatorSet, Signal, Verdict

from .base import Strategy


class TrendConfluenceStrategy(Strategy):
    """只看最新一根 bar 的指标；边界值（RSI 恰为 70/30、MACD 与信号线相等）一律 HOLD。"""

    def __init__(self, rsi_overbought: float = 70.0, rsi_oversold: float = 30.0):
        self.rsi_overbought = rsi_overbought
        self.rsi_oversold = rsi_oversold

    def evaluate(self, indicators: IndicatorSet) -> Signal:
        ind = indicators
        if ind.sma_20 > ind.sma_50 and ind.rsi_14 < self.rsi_overbought and ind.macd > ind.macd_signal:
            verdict = Verdict.BUY
        elif ind.sma_20 < ind.sma_50 and ind.rsi_14 > self.rsi_oversold and ind.macd < ind.macd_signal:
            verdict = Verdict.SELL
        else:
            verdict = Verdict.HOLD
        return Signal(symbol=ind.symbol, timestamp=ind.timestamp, price=ind.price, verdict=verdict)


class SignalGenerator:
    """bar 窗口 → 信号。

    历史不足时 `InsufficientHistory` 原样抛出：不产生任何信号（包括 HOLD）。
    """

    def __init__(self, indicator_engine: IndicatorEngine | None = None, strategy: Strategy | None = None):
        self.indicator_engine = indicator_engine or IndicatorEngine()
        self.strategy = strategy or TrendConfluenceStrategy()

    def generate(self, bars: Sequence[Bar]) -> Signal:
        indicators = self.indicator_engine.compute(bars)
        return self.strategy.evaluate(indicators)
