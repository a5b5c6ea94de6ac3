from datetime import date, datetime, time, timezone

import pytest

from engine.market_hours import is_market_open, session_start, trading_day
from shared.config.schema import MarketHoursConfig

HOURS = MarketHoursConfig()


@pytest.mark.parametrize(
    "now, expected",
    [
        (datetime(2024, 1, 10, 14, 30, tzinfo=timezone.utc), True),  # 09:30 EST，含左端点
        (datetime(2024, 1, 10, 14, 29, tzinfo=timezone.utc), False),
        (datetime(2024, 1, 10, 21, 0, tzinfo=timezone.utc), False),  # 16:00 EST，不含右端点
        (datetime(2024, 1, 10, 20, 59, tzinfo=timezone.utc), True),
        (datetime(2024, 1, 13, 15, 0, tzinfo=timezone.utc), False),  # 周六
        (datetime(2024, 7, 10, 13, 30, tzinfo=timezone.utc), True),  # 夏令时 09:30 EDT
        (datetime(2024, 1, 10, 15, 0), True),  # 无时区按 UTC
    ],
)
def test_market_hours_gate(now, expected):
    assert is_market_open(now, HOURS) is expected


def test_weekends_allowed_when_configured():
    hours = MarketHoursConfig(weekdays_only=False)
    assert is_market_open(datetime(2024, 1, 13, 15, 0, tzinfo=timezone.utc), hours)


def test_custom_window_and_timezone():
    hours = MarketHoursConfig(market_open=time(9, 0), market_close=time(15, 0), timezone="Asia/Shanghai")
    assert is_market_open(datetime(2024, 1, 10, 2, 0, tzinfo=timezone.utc), hours)
    assert not is_market_open(datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc), hours)


def test_trading_day_uses_exchange_timezone():
    # UTC 已是 11 日凌晨，纽约仍是 10 日
    now = datetime(2024, 1, 11, 2, 0, tzinfo=timezone.utc)
    assert trading_day(now, HOURS) == date(2024, 1, 10)
    assert session_start(now, HOURS) == datetime(2024, 1, 10, 5, 0, tzinfo=timezone.utc)
