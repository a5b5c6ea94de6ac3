import math

import numpy as np
import pandas as pd
import pytest

from factors.ema import ema
from factors.indicator_engine import IndicatorEngine
from factors.ma import MAFactor
from factors.rsi import RSIFactor
from shared.errors import InsufficientHistory
from fakes import make_bars, uptrend_closes


def test_fewer_than_50_bars_is_insufficient_history():
    engine = IndicatorEngine()
    with pytest.raises(InsufficientHistory) as exc:
        engine.compute(make_bars("AAPL", [100.0 + i for i in range(49)]))
    assert exc.value.have == 49
    assert exc.value.need == 50


def test_sma_uses_last_window_closes():
    ind = IndicatorEngine().compute(make_bars("AAPL", [float(i) for i in range(1, 61)]))
    assert ind.sma_20 == pytest.approx(50.5)
    assert ind.sma_50 == pytest.approx(35.5)
    assert ind.price == 60.0
    assert ind.symbol == "AAPL"


def test_rsi_is_100_when_window_has_no_losses():
    ind = IndicatorEngine().compute(make_bars("AAPL", [100.0 + i for i in range(60)]))
    assert ind.rsi_14 == 100.0


def test_rsi_stays_within_bounds_on_random_walk():
    rng = np.random.default_rng(42)
    closes = list(100 * np.exp(np.cumsum(rng.normal(0, 0.02, 300))))
    df = pd.DataFrame({"close": closes})
    out = RSIFactor(period=14).compute(df)["rsi_14"].dropna()
    assert not out.empty
    assert out.between(0.0, 100.0).all()


def test_rsi_warmup_rows_are_nan():
    df = pd.DataFrame({"close": [float(i) for i in range(20)]})
    out = RSIFactor(period=14).compute(df)["rsi_14"]
    assert out.iloc[:14].isna().all()
    assert out.iloc[14] == 100.0


def test_ema_is_seeded_with_first_value():
    out = ema(pd.Series([1.0, 2.0, 3.0]), span=3)
    assert list(out) == pytest.approx([1.0, 1.5, 2.25])


def test_ma_factor_column_name_and_warmup():
    df = MAFactor(window=3).compute(pd.DataFrame({"close": [1.0, 2.0, 3.0, 4.0]}))
    assert math.isnan(df["sma_3"].iloc[1])
    assert df["sma_3"].iloc[-1] == pytest.approx(3.0)


def test_indicators_are_pure_function_of_window():
    bars = make_bars("MSFT", uptrend_closes())
    engine = IndicatorEngine()
    assert engine.compute(bars) == engine.compute(list(bars))


def test_unsorted_bars_are_ordered_by_timestamp():
    bars = make_bars("AAPL", [float(i) for i in range(1, 61)])
    shuffled = list(reversed(bars))
    assert IndicatorEngine().compute(shuffled).price == 60.0
