"""
Intraday features for the risk and delayed-entry overlays.

Both builders read only hourly bars that are closed at the entry instant.
The same function serves offline dataset construction and the live decision,
so training and inference see identical inputs.
"""

from typing import List, Tuple

import numpy as np
import pandas as pd

from solsignal.processor.bar_series import BarSeries, BarWindow
from solsignal.utils.time_contract import EntryInstant


SL_FEATURE_COUNT = 11
TARGET_FEATURE_COUNT = 10
LOOKBACK_6H = pd.Timedelta(hours=6)
LOOKBACK_24H = pd.Timedelta(hours=24)
HIGH_MIN_MOVE = 0.025


def _two_hour_blocks(window: BarWindow) -> List[Tuple[float, float]]:
    """Pairs of consecutive hourly bars as (high, low) blocks."""
    blocks = []
    for i in range(0, len(window), 2):
        hi = window.high[i:i + 2].max()
        lo = window.low[i:i + 2].min()
        blocks.append((float(hi), float(lo)))
    return blocks


def _header(go_long: bool, strong: bool, min_move: float, size: int) -> np.ndarray:
    feats = np.zeros(size, dtype=np.float64)
    feats[0] = 1.0 if go_long else 0.0
    feats[1] = 1.0 if strong else 0.0
    feats[2] = min_move
    return feats


def build_sl_features(
    entry: EntryInstant,
    go_long: bool,
    strong: bool,
    min_move: float,
    entry_price: float,
    hourly: BarSeries,
) -> np.ndarray:
    """
    Stop-loss risk features from the 6 hours before entry.

    Layout: direction, strength, min_move, 6h range, first 2h block range,
    last 2h block range, distance to 6h high, distance to 6h low, last-hour
    wickiness, hour/23, min_move > 2.5%.
    """
    feats = _header(go_long, strong, min_move, SL_FEATURE_COUNT)
    feats[9] = entry.utc.hour / 23.0
    feats[10] = 1.0 if min_move > HIGH_MIN_MOVE else 0.0

    window = hourly.closed_by(entry.utc, LOOKBACK_6H)
    if window.empty or entry_price <= 0:
        return feats

    blocks = _two_hour_blocks(window)
    total_high = max(b[0] for b in blocks)
    total_low = min(b[1] for b in blocks)
    feats[3] = (total_high - total_low) / entry_price
    feats[4] = (blocks[0][0] - blocks[0][1]) / entry_price
    if len(blocks) >= 2:
        feats[5] = (blocks[-1][0] - blocks[-1][1]) / entry_price
    feats[6] = (total_high - entry_price) / entry_price
    feats[7] = (entry_price - total_low) / entry_price

    last_range = window.high[-1] - window.low[-1]
    last_body = abs(window.close[-1] - window.open[-1])
    feats[8] = 1.0 - last_body / last_range if last_range > 0 else 0.0
    return feats


def build_target_level_features(
    entry: EntryInstant,
    go_long: bool,
    strong: bool,
    min_move: float,
    entry_price: float,
    hourly: BarSeries,
) -> np.ndarray:
    """
    Pullback-depth features from the 24 hours before entry.

    Layout: direction, strength, min_move, range of the last 2h / 4h / 6h,
    24h range, adverse excursion over the last 2h and 4h (below entry for
    longs, above entry for shorts), hour/23.
    """
    feats = _header(go_long, strong, min_move, TARGET_FEATURE_COUNT)
    feats[9] = entry.utc.hour / 23.0

    day = hourly.closed_by(entry.utc, LOOKBACK_24H)
    if day.empty or entry_price <= 0:
        return feats

    def tail(hours: int) -> BarWindow:
        return day.sub(-min(hours, len(day)))

    for slot, hours in ((3, 2), (4, 4), (5, 6)):
        w = tail(hours)
        feats[slot] = (w.high.max() - w.low.min()) / entry_price
    feats[6] = (day.high.max() - day.low.min()) / entry_price

    last2, last4 = tail(2), tail(4)
    if go_long:
        feats[7] = (entry_price - last2.low.min()) / entry_price
        feats[8] = (entry_price - last4.low.min()) / entry_price
    else:
        feats[7] = (last2.high.max() - entry_price) / entry_price
        feats[8] = (last4.high.max() - entry_price) / entry_price
    return feats
