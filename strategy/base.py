from abc import ABC, abstractmethod

from shared.models.models import IndicatorSet, Signal


class Strategy(ABC):
    @abstractmethod
    def evaluate(self, indicators: IndicatorSet) -> Signal:
        """
        输入最新一根 bar 的指标，输出 BUY/SELL/HOLD 之一。
        """
        ...
