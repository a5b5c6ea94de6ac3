"""因子（Factors/Features）抽象协议。

约定：因子层是“纯计算”，输入 bar 窗口的 DataFrame，输出添加列后的 DataFrame；
不在周期之间保存任何可变状态。
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, Sequence

import pandas as pd

from shared.models.models import Bar

BAR_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


class Factor(Protocol):
    """因子协议：`compute(df) -> df`。"""

    name: str
    params: Mapping[str, Any]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """对输入 df 添加/更新因子列并返回 df。"""


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """把 bar 序列转换为按时间升序排列的 DataFrame。"""
    df = pd.DataFrame(
        [[b.timestamp, b.open, b.high, b.low, b.close, b.volume] for b in bars],
        columns=BAR_COLUMNS,
    )
    if not df["timestamp"].is_monotonic_increasing:
        df = df.sort_values("timestamp", kind="stable")
    return df.reset_index(drop=True)


def apply_factors(df: pd.DataFrame, factors: Iterable[Factor]) -> pd.DataFrame:
    for f in factors:
        df = f.compute(df)
    return df
