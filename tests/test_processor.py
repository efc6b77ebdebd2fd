"""Tests for row construction: bar lookups, MinMove, path labels and the row builder."""
from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

from solsignal.collector.candle_reader import MarketData
from solsignal.processor.dataset_builder import build_labeled_rows
from solsignal.processor.label_generator import LabelGenerator
from solsignal.processor.min_move import MinMoveConfig, MinMoveEngine
from solsignal.processor.rows import (
    FEATURE_NAMES,
    LABEL_DOWN,
    LABEL_FLAT,
    LABEL_UP,
    LabeledRow,
)
from solsignal.utils.exceptions import DataQualityError, LeakageBoundaryError
from solsignal.utils.time_contract import compute_baseline_exit

from conftest import BTC, MINUTES_PER_DAY, SOL, bars_from_prices, make_causal_row, make_reader, utc


def _path(prices):
    """Minute window whose bar i has close prices[i] and a tight range."""
    rows = [(p, p * 1.0001, p * 0.9999, p) for p in prices]
    return bars_from_prices(utc(2024, 3, 4, 12, 0), rows).between(
        utc(2024, 3, 4, 12, 0), utc(2024, 3, 5, 12, 0)
    )


# ============================================================================
# BarSeries
# ============================================================================

def test_closed_by_excludes_bar_in_progress():
    rows = [(100.0 + i, 101.0 + i, 99.0 + i, 100.5 + i) for i in range(10)]
    series = bars_from_prices(utc(2024, 3, 4, 0, 0), rows, step="1h")

    window = series.closed_by(utc(2024, 3, 4, 6, 30), pd.Timedelta(hours=6))
    assert len(window) == 5
    assert window.time_at(-1) == utc(2024, 3, 4, 5, 0)

    window = series.closed_by(utc(2024, 3, 4, 6, 0), pd.Timedelta(hours=3))
    assert [window.time_at(i).hour for i in range(len(window))] == [3, 4, 5]


def test_between_and_index_lookups():
    rows = [(100.0, 100.0, 100.0, 100.0)] * 5
    series = bars_from_prices(utc(2024, 3, 4, 12, 0), rows)

    assert len(series.between(utc(2024, 3, 4, 12, 1), utc(2024, 3, 4, 12, 3))) == 2
    assert series.index_at(utc(2024, 3, 4, 12, 2)) == 2
    assert series.index_at(utc(2024, 3, 4, 13, 0)) == -1
    assert series.covers(utc(2024, 3, 4, 12, 5))
    assert not series.covers(utc(2024, 3, 4, 12, 6))
    assert series.last_closed_index(utc(2024, 3, 4, 12, 3)) == 2


# ============================================================================
# Path labels
# ============================================================================

def test_label_up_first():
    label = LabelGenerator().label_path(_path([100, 101, 102.5, 97, 100]), 100.0, 0.02)
    assert label.label == LABEL_UP
    assert label.first_hit_index == 2
    assert label.reached_down < -0.02


def test_label_down_first():
    label = LabelGenerator().label_path(_path([100, 99, 97.5, 103, 100]), 100.0, 0.02)
    assert label.label == LABEL_DOWN
    assert label.first_hit_index == 2


def test_label_same_minute_is_flat():
    rows = [(100, 100, 100, 100), (100, 103, 97, 100), (100, 100, 100, 100)]
    window = bars_from_prices(utc(2024, 3, 4, 12, 0), rows).between(
        utc(2024, 3, 4, 12, 0), utc(2024, 3, 4, 13, 0)
    )
    label = LabelGenerator().label_path(window, 100.0, 0.02)
    assert label.label == LABEL_FLAT
    assert not label.fact_micro_up and not label.fact_micro_down


def test_flat_day_micro_facts():
    up = LabelGenerator().label_path(_path([100, 100.5, 101.0]), 100.0, 0.02)
    down = LabelGenerator().label_path(_path([100, 99.6, 99.0]), 100.0, 0.02)
    quiet = LabelGenerator().label_path(_path([100, 100.1, 100.1]), 100.0, 0.02)

    assert up.label == LABEL_FLAT and up.fact_micro_up and not up.fact_micro_down
    assert down.label == LABEL_FLAT and down.fact_micro_down
    assert not quiet.fact_micro_up and not quiet.fact_micro_down


def test_label_rejects_bad_inputs():
    with pytest.raises(DataQualityError):
        LabelGenerator().label_path(_path([100, 101]), 0.0, 0.02)
    with pytest.raises(DataQualityError):
        LabelGenerator().label_path(_path([100, 101]), 100.0, float("nan"))


# ============================================================================
# Rows
# ============================================================================

def test_causal_row_rejects_non_finite_features(monday_entry):
    features = np.zeros(len(FEATURE_NAMES))
    features[3] = np.inf
    with pytest.raises(DataQualityError, match=FEATURE_NAMES[3]):
        make_causal_row(monday_entry, features=features)


def test_causal_row_features_read_only(monday_entry):
    row = make_causal_row(monday_entry)
    with pytest.raises(ValueError):
        row.features[0] = 1.0
    assert row.exit_day_key.day == date(2024, 3, 5)


def test_micro_fact_only_on_flat_days(monday_entry):
    row = make_causal_row(monday_entry)
    with pytest.raises(DataQualityError):
        LabeledRow(row, LABEL_UP, 0.03, -0.01, 0.02, fact_micro_up=True)
    flat = LabeledRow(row, LABEL_FLAT, 0.01, -0.005, 0.004, fact_micro_up=True)
    assert flat.micro_direction == LABEL_UP
    assert flat.amplitude == 0.01


# ============================================================================
# MinMove
# ============================================================================

def test_min_move_rejects_same_day_history():
    engine = MinMoveEngine()
    day = date(2024, 3, 4)
    with pytest.raises(LeakageBoundaryError):
        engine.compute(day, 0.02, 0.01, False, [(day - timedelta(days=1), 0.03), (day, 0.03)])


def test_min_move_floor_and_cap():
    low = MinMoveEngine().compute(date(2024, 3, 4), 0.0001, 0.0001, False, [])
    high = MinMoveEngine().compute(date(2024, 3, 4), 0.25, 0.25, True, [])
    assert low.min_move == pytest.approx(MinMoveConfig().floor)
    assert high.min_move == pytest.approx(MinMoveConfig().cap)


def test_min_move_regime_down_multiplier():
    normal = MinMoveEngine().compute(date(2024, 3, 4), 0.03, 0.02, False, [])
    down = MinMoveEngine().compute(date(2024, 3, 4), 0.03, 0.02, True, [])
    assert down.min_move == pytest.approx(normal.min_move * 1.2)


def test_min_move_retunes_quantile_on_history():
    engine = MinMoveEngine()
    start = date(2024, 1, 1)
    history = [(start + timedelta(days=i), 0.10) for i in range(60)]
    as_of = start + timedelta(days=60)

    result = engine.compute(as_of, 0.03, 0.02, False, history)
    assert result.retuned
    # Realized amplitudes far above the estimate lower the quantile
    assert result.quantile == pytest.approx(0.55)

    again = engine.compute(as_of + timedelta(days=1), 0.03, 0.02, False, history)
    assert not again.retuned


# ============================================================================
# Row builder
# ============================================================================

def test_rows_ascending_at_noon_utc(synthetic_reader):
    market = MarketData.load(synthetic_reader, SOL, BTC)
    rows = build_labeled_rows(market)

    assert len(rows) > 100
    assert all(a.entry < b.entry for a, b in zip(rows, rows[1:]))
    assert all(lr.entry.utc.hour == 12 and lr.entry.utc.minute == 0 for lr in rows)
    assert all(lr.entry.local.weekday() < 5 for lr in rows)
    cfg = MinMoveConfig()
    assert all(cfg.floor <= lr.row.min_move <= cfg.cap for lr in rows)
    assert {lr.label for lr in rows} >= {LABEL_UP, LABEL_DOWN}


def test_rows_unchanged_by_future_data(market_frames):
    """Truncating the data after day N leaves every earlier row untouched."""
    sol, btc = market_frames
    cut = 120 * MINUTES_PER_DAY
    full = build_labeled_rows(MarketData.load(make_reader(sol, btc), SOL, BTC))
    short = build_labeled_rows(
        MarketData.load(make_reader(sol.iloc[:cut], btc.iloc[:cut]), SOL, BTC)
    )
    by_entry = {lr.entry: lr for lr in full}
    last_minute = sol["open_time"].iloc[cut - 1]

    assert short
    for lr in short:
        assert compute_baseline_exit(lr.entry).utc <= last_minute + pd.Timedelta(minutes=1)
        twin = by_entry[lr.entry]
        np.testing.assert_array_equal(lr.row.features, twin.row.features)
        assert lr.row.min_move == twin.row.min_move
        assert lr.label == twin.label
