"""行情数据模块（market_data）。

该包聚合：
- 行情源接口 `MarketDataProvider`
- 本地 CSV 数据源（`market_data/loader.py`）
- 离线合成数据源（`market_data/synthetic.py`）

行情抓取及其传输协议不在本仓库范围内；接入真实数据源时实现 `MarketDataProvider` 即可。
"""

from market_data.loader import CsvMarketDataProvider
from market_data.provider import MarketDataProvider
from market_data.synthetic import SyntheticMarketDataProvider

__all__ = [
    "MarketDataProvider",
    "CsvMarketDataProvider",
    "SyntheticMarketDataProvider",
]
