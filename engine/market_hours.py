"""交易时段闸门：纯函数，只依赖当前时间与配置。"""

from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from shared.config.schema import MarketHoursConfig


def _localize(now: datetime, hours: MarketHoursConfig) -> datetime:
    if now.tzinfo is None:
        # 无时区的时间一律按 UTC 解释
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(hours.timezone))


def is_market_open(now: datetime, hours: MarketHoursConfig) -> bool:
    """`now` 是否落在 [market_open, market_close) 内（按配置时区；可选仅工作日）。"""
    local = _localize(now, hours)
    if hours.weekdays_only and local.weekday() >= 5:
        return False
    return hours.market_open <= local.time() < hours.market_close


def trading_day(now: datetime, hours: MarketHoursConfig) -> date:
    """`now` 所属的交易日（配置时区下的日期）。"""
    return _localize(now, hours).date()


def session_start(now: datetime, hours: MarketHoursConfig) -> datetime:
    """当日 00:00（配置时区）对应的 UTC 时间，用于账本按日查询。"""
    local = _localize(now, hours)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)
