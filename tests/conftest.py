"""Pytest configuration and synthetic market fixtures."""
import sys
from pathlib import Path
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from solsignal.collector.candle_reader import FrameCandleReader
from solsignal.predictor.decision_pipeline import DecisionRecord
from solsignal.processor.bar_series import BarSeries
from solsignal.processor.rows import FEATURE_NAMES, LABEL_DOWN, LABEL_FLAT, LABEL_UP, CausalRow, LabeledRow
from solsignal.utils.time_contract import UTC, EntryInstant, entry_for_trading_day


SOL = "SOLUSDT"
BTC = "BTCUSDT"
SYNTHETIC_START = pd.Timestamp("2024-01-01 12:00", tz="UTC")  # Monday
MINUTES_PER_DAY = 1440


# ============================================================================
# Synthetic market generator
# ============================================================================

def _daily_moves(rng: np.random.Generator, n_days: int, move: float, start_price: float) -> np.ndarray:
    """
    Anchor prices at 12:00 UTC of every calendar day.

    Direction persists with probability 0.8, is forced back toward the start
    price outside [0.6x, 1.6x], and 15% of days barely move.
    """
    anchors = np.empty(n_days + 1)
    anchors[0] = start_price
    direction = 1.0
    for k in range(n_days):
        if rng.random() > 0.8:
            direction = -direction
        price = anchors[k]
        if price > 1.6 * start_price:
            direction = -1.0
        elif price < 0.6 * start_price:
            direction = 1.0
        size = move * 0.12 if rng.random() < 0.15 else move
        anchors[k + 1] = price * (1.0 + direction * size)
    return anchors


def _minute_frame(anchors: np.ndarray, start: pd.Timestamp, wave: float) -> pd.DataFrame:
    """Linear path between anchors plus a 4-hour sine wave of relative amplitude `wave`."""
    n = (len(anchors) - 1) * MINUTES_PER_DAY
    t = np.arange(n + 1)
    trend = np.interp(t, np.arange(len(anchors)) * MINUTES_PER_DAY, anchors)
    path = trend * (1.0 + wave * np.sin(2.0 * np.pi * t / 240.0))

    opens = path[:-1]
    closes = path[1:]
    highs = np.maximum(opens, closes) * 1.0001
    lows = np.minimum(opens, closes) * 0.9999
    return pd.DataFrame(
        {
            "open_time": pd.date_range(start, periods=n, freq="1min"),
            "open": opens,
            "high": highs,
            "low": lows,
            "close": closes,
            "volume": np.ones(n),
        }
    )


def make_market_frames(
    n_days: int = 200,
    seed: int = 7,
    diverge_after_day: Optional[int] = None,
    diverge_seed: int = 99,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    SOL and BTC minute frames over `n_days` calendar days from SYNTHETIC_START.

    With `diverge_after_day`, anchors after that day are redrawn from
    `diverge_seed`, so minutes before its 12:00 UTC are identical to the
    undiverged series.
    """
    rng = np.random.default_rng(seed)
    sol = _daily_moves(rng, n_days, 0.04, 100.0)
    if diverge_after_day is not None:
        alt = _daily_moves(np.random.default_rng(diverge_seed), n_days, 0.04, 100.0)
        scale = sol[diverge_after_day] / alt[diverge_after_day]
        sol = np.concatenate([sol[:diverge_after_day + 1], alt[diverge_after_day + 1:] * scale])
    btc = 30000.0 * (1.0 + 0.6 * (sol / sol[0] - 1.0))
    return (
        _minute_frame(sol, SYNTHETIC_START, 0.015),
        _minute_frame(btc, SYNTHETIC_START, 0.004),
    )


def make_reader(sol: pd.DataFrame, btc: pd.DataFrame) -> FrameCandleReader:
    return FrameCandleReader({(SOL, "1m"): sol, (BTC, "1m"): btc})


# ============================================================================
# Small builders
# ============================================================================

def utc(*args) -> datetime:
    return UTC.localize(datetime(*args))


def bars_from_prices(start: datetime, rows: Sequence[Tuple[float, float, float, float]], step: str = "1min") -> BarSeries:
    """BarSeries from explicit (open, high, low, close) tuples."""
    rows = list(rows)
    frame = pd.DataFrame(rows, columns=["open", "high", "low", "close"])
    frame.insert(0, "open_time", pd.date_range(pd.Timestamp(start), periods=len(rows), freq=step))
    frame["volume"] = 1.0
    return BarSeries(frame, pd.Timedelta(step))


def step_bars(entry: EntryInstant, price: float, steps: Sequence[Tuple[int, float]] = (), step: str = "1min") -> BarSeries:
    """
    Piecewise-constant bars starting at the entry and covering three days.

    Args:
        price: Price from the first bar
        steps: (bar offset, new price) pairs; the price holds until the next step
    """
    per_day = MINUTES_PER_DAY if step == "1min" else 24
    n = 3 * per_day + per_day // 24
    changes = dict(steps)
    rows = []
    for i in range(n):
        price = changes.get(i, price)
        rows.append((price, price, price, price))
    return bars_from_prices(entry.utc, rows, step)


def make_record(entry: EntryInstant, **overrides) -> DecisionRecord:
    fields = dict(
        entry=entry,
        entry_price=100.0,
        true_label=2,
        predicted_class=2,
        probs_base=(0.2, 0.2, 0.6),
        probs_micro=(0.2, 0.2, 0.6),
        probs_overlay=(0.2, 0.2, 0.6),
        micro_p_up=None,
        micro_confidence=None,
        micro_direction=None,
        go_long=True,
        strong=True,
        sl_prob=None,
        high_risk=False,
        pullback_prob=None,
        small_prob=None,
        delayed_source=None,
        delayed_factor=None,
        delayed_max_hours=None,
        regime_down=False,
        hard_regime=False,
        min_move=0.02,
    )
    fields.update(overrides)
    return DecisionRecord(**fields)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def market_frames():
    """200 days of synthetic SOL/BTC minutes."""
    return make_market_frames()


@pytest.fixture(scope="session")
def synthetic_reader(market_frames):
    return make_reader(*market_frames)


@pytest.fixture
def monday_entry():
    """2024-03-04 12:00 UTC (07:00 New York, standard time)."""
    return EntryInstant(utc(2024, 3, 4, 12, 0))


def weekday_entries(n: int, start: date = date(2024, 1, 1)) -> List[EntryInstant]:
    """First `n` trading-morning entries from `start`."""
    entries = []
    day = start
    while len(entries) < n:
        if day.weekday() < 5:
            entries.append(entry_for_trading_day(day))
        day += timedelta(days=1)
    return entries


def make_causal_row(entry: EntryInstant, **overrides) -> CausalRow:
    fields = dict(
        entry=entry,
        entry_price=100.0,
        features=np.zeros(len(FEATURE_NAMES)),
        min_move=0.02,
        regime_down=False,
        atr_pct=0.01,
        dyn_vol=0.01,
        hard_regime=False,
    )
    fields.update(overrides)
    return CausalRow(**fields)


def make_labeled_rows(n: int = 120, seed: int = 3, regime_down: bool = False) -> List[LabeledRow]:
    """
    Rows whose label is a noisy function of the first feature and whose
    micro fact on flat days follows the second feature.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for entry in weekday_entries(n):
        features = rng.normal(0.0, 1.0, len(FEATURE_NAMES))
        signal = features[0] + rng.normal(0.0, 0.3)
        if signal > 0.45:
            label = LABEL_UP
        elif signal < -0.45:
            label = LABEL_DOWN
        else:
            label = LABEL_FLAT
        flat = label == LABEL_FLAT
        rows.append(
            LabeledRow(
                row=make_causal_row(entry, features=features, regime_down=regime_down),
                label=label,
                reached_up=0.03,
                reached_down=-0.01,
                forward_return=0.005 if features[1] > 0 else -0.005,
                fact_micro_up=flat and features[1] > 0,
                fact_micro_down=flat and features[1] <= 0,
            )
        )
    return rows
