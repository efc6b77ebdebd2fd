"""
Hourly TP/SL outcome evaluators for the overlay datasets and delayed entries.

Levels scale with the day's MinMove:
- strong signal: TP = max(2.2%, 1.25 * mm), SL = max(0.9%, 0.55 * mm)
- weak signal:   TP = max(1.7%, 1.10 * mm), SL = max(0.8%, 0.50 * mm)
Days with MinMove below 1.8% are treated as noise and never traded.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from solsignal.processor.bar_series import BarSeries, BarWindow
from solsignal.utils.exceptions import DataQualityError, TemporalContractError
from solsignal.utils.time_contract import EntryInstant, compute_baseline_exit


MIN_DAY_TRADEABLE = 0.018

STRONG_TP_MUL, STRONG_SL_MUL = 1.25, 0.55
WEAK_TP_MUL, WEAK_SL_MUL = 1.10, 0.50
STRONG_TP_FLOOR, STRONG_SL_FLOOR = 0.022, 0.009
WEAK_TP_FLOOR, WEAK_SL_FLOOR = 0.017, 0.008


class IntradayResult(Enum):
    NONE = "none"
    TP_FIRST = "tp_first"
    SL_FIRST = "sl_first"
    AMBIGUOUS = "ambiguous"


# Ordering used to compare a delayed outcome against the immediate one
RESULT_RANK = {
    IntradayResult.TP_FIRST: 3,
    IntradayResult.NONE: 2,
    IntradayResult.AMBIGUOUS: 2,
    IntradayResult.SL_FIRST: 0,
}


@dataclass(frozen=True)
class HourlyOutcome:
    result: IntradayResult
    tp_pct: float = 0.0
    sl_pct: float = 0.0


@dataclass(frozen=True)
class DelayedOutcome:
    """
    Result of a delayed-entry attempt.

    Attributes:
        executed: Whether the retracement price was reached in time
        target_price: Requested delayed entry price
        executed_at: Open time of the hourly bar that filled the order
        result: First level touched after the fill
    """
    executed: bool
    target_price: float
    executed_at: Optional[datetime] = None
    result: IntradayResult = IntradayResult.NONE
    tp_pct: float = 0.0
    sl_pct: float = 0.0


def tp_sl_pct(min_move: float, strong: bool) -> Tuple[float, float]:
    """TP and SL distances for a day."""
    if strong:
        return max(STRONG_TP_FLOOR, min_move * STRONG_TP_MUL), max(STRONG_SL_FLOOR, min_move * STRONG_SL_MUL)
    return max(WEAK_TP_FLOOR, min_move * WEAK_TP_MUL), max(WEAK_SL_FLOOR, min_move * WEAK_SL_MUL)


def _levels(go_long: bool, price: float, tp_pct: float, sl_pct: float) -> Tuple[float, float]:
    if go_long:
        return price * (1.0 + tp_pct), price * (1.0 - sl_pct)
    return price * (1.0 - tp_pct), price * (1.0 + sl_pct)


def _first_touch(window: BarWindow, go_long: bool, tp_price: float, sl_price: float) -> IntradayResult:
    if go_long:
        tp_hits = window.high >= tp_price
        sl_hits = window.low <= sl_price
    else:
        tp_hits = window.low <= tp_price
        sl_hits = window.high >= sl_price

    either = tp_hits | sl_hits
    if not either.any():
        return IntradayResult.NONE
    i = int(np.argmax(either))
    if tp_hits[i] and sl_hits[i]:
        return IntradayResult.AMBIGUOUS
    return IntradayResult.TP_FIRST if tp_hits[i] else IntradayResult.SL_FIRST


def _day_window(hourly: BarSeries, entry: EntryInstant) -> BarWindow:
    return hourly.between(entry.utc, compute_baseline_exit(entry).utc)


def evaluate_hourly_outcome(
    hourly: BarSeries,
    entry: EntryInstant,
    go_long: bool,
    entry_price: float,
    min_move: float,
    strong: bool,
) -> HourlyOutcome:
    """
    Which of TP or SL an immediate entry touches first on hourly bars
    within [entry, baseline exit).
    """
    if min_move < MIN_DAY_TRADEABLE:
        return HourlyOutcome(IntradayResult.NONE)

    window = _day_window(hourly, entry)
    if window.empty:
        return HourlyOutcome(IntradayResult.NONE)

    tp_pct, sl_pct = tp_sl_pct(min_move, strong)
    tp_price, sl_price = _levels(go_long, entry_price, tp_pct, sl_pct)
    return HourlyOutcome(_first_touch(window, go_long, tp_price, sl_price), tp_pct, sl_pct)


def evaluate_delayed_entry(
    hourly: BarSeries,
    entry: EntryInstant,
    go_long: bool,
    entry_price: float,
    min_move: float,
    strong: bool,
    delay_factor: float,
    max_delay_hours: float,
) -> DelayedOutcome:
    """
    Simulate a limit entry placed `delay_factor * min_move` against the
    signal direction and held for at most `max_delay_hours`.

    Raises:
        DataQualityError: On non-positive price or non-finite parameters
    """
    if not isinstance(entry, EntryInstant):
        raise TemporalContractError(f"Delayed entry needs EntryInstant, got {type(entry).__name__}")
    if entry_price <= 0 or not np.isfinite(entry_price):
        raise DataQualityError(f"Delayed entry price must be positive, got {entry_price} at {entry}")
    if not np.isfinite(min_move) or min_move <= 0:
        raise DataQualityError(f"Delayed entry min_move must be positive, got {min_move} at {entry}")
    if delay_factor <= 0 or max_delay_hours <= 0:
        raise DataQualityError(
            f"Delay factor and max delay must be positive, got {delay_factor}, {max_delay_hours}"
        )

    shift = delay_factor * min_move
    target = entry_price * (1.0 - shift) if go_long else entry_price * (1.0 + shift)

    if min_move < MIN_DAY_TRADEABLE:
        return DelayedOutcome(executed=False, target_price=target)

    window = _day_window(hourly, entry)
    if window.empty:
        return DelayedOutcome(executed=False, target_price=target)

    entry_ns = pd.Timestamp(entry.utc).value
    in_time = (window.open_time_ns - entry_ns) <= int(max_delay_hours * 3600 * 1e9)
    fills = (window.low <= target) if go_long else (window.high >= target)
    fills &= in_time
    if not fills.any():
        return DelayedOutcome(executed=False, target_price=target)

    fill_idx = int(np.argmax(fills))
    tp_pct, sl_pct = tp_sl_pct(min_move, strong)
    tp_price, sl_price = _levels(go_long, target, tp_pct, sl_pct)
    after = window.sub(fill_idx)
    return DelayedOutcome(
        executed=True,
        target_price=target,
        executed_at=window.time_at(fill_idx),
        result=_first_touch(after, go_long, tp_price, sl_price),
        tp_pct=tp_pct,
        sl_pct=sl_pct,
    )
