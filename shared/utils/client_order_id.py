"""订单关联 ID（correlation_id）生成。

同一周期内的同一交易意图（品种/方向/数量/用途）总是得到同一个 ID，
重放时账本可据此识别重复；用 hash 缩短以适配 broker 的 client id 长度限制。
"""

from __future__ import annotations

import hashlib
from datetime import datetime


def make_correlation_id(
    *,
    cycle_ts: datetime,
    symbol: str,
    side: str,
    quantity: int,
    intent: str,
    attempt: int = 0,
) -> str:
    """生成确定性的订单关联 ID。

    Parameters
    ----------
    cycle_ts:
        所属周期的时间戳。
    intent:
        下单用途，如 "entry"/"exit"/"emergency"。
    attempt:
        同一意图的再次尝试序号（急停跨周期重试时递增）。
    """
    raw = "|".join(
        [
            cycle_ts.isoformat(),
            str(symbol),
            str(side),
            str(int(quantity)),
            str(intent),
            str(int(attempt)),
        ]
    )
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]
    return f"zg_{digest}"
