"""Array view over a validated candle frame with time-window lookups."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd

from solsignal.utils.time_contract import ensure_utc


def _to_ns(instant) -> int:
    return pd.Timestamp(ensure_utc(instant)).value


@dataclass(frozen=True)
class BarWindow:
    """Contiguous run of bars. Arrays are views into the parent series."""

    open_time_ns: np.ndarray
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray

    def __len__(self) -> int:
        return len(self.open_time_ns)

    @property
    def empty(self) -> bool:
        return len(self.open_time_ns) == 0

    def time_at(self, i: int) -> datetime:
        return pd.Timestamp(int(self.open_time_ns[i]), tz="UTC").to_pydatetime()

    def sub(self, lo: int, hi: Optional[int] = None) -> "BarWindow":
        """Slice of this window; negative indices count from the end."""
        s = slice(lo, hi)
        return BarWindow(
            open_time_ns=self.open_time_ns[s],
            open=self.open[s],
            high=self.high[s],
            low=self.low[s],
            close=self.close[s],
        )


class BarSeries:
    """
    Numpy arrays of one candle frame.

    Lookups use binary search on open times, so window extraction is
    O(log n) and returns views rather than copies.
    """

    def __init__(self, df: pd.DataFrame, step: pd.Timedelta):
        self.step_ns = int(pd.Timedelta(step).value)
        self.open_time_ns = pd.DatetimeIndex(df["open_time"]).as_unit("ns").asi8.copy()
        self.open = df["open"].to_numpy(dtype=float)
        self.high = df["high"].to_numpy(dtype=float)
        self.low = df["low"].to_numpy(dtype=float)
        self.close = df["close"].to_numpy(dtype=float)

    def __len__(self) -> int:
        return len(self.open_time_ns)

    def _window(self, lo: int, hi: int) -> BarWindow:
        return BarWindow(
            open_time_ns=self.open_time_ns[lo:hi],
            open=self.open[lo:hi],
            high=self.high[lo:hi],
            low=self.low[lo:hi],
            close=self.close[lo:hi],
        )

    def between(self, start, end) -> BarWindow:
        """Bars with start <= open_time < end."""
        lo = int(np.searchsorted(self.open_time_ns, _to_ns(start), side="left"))
        hi = int(np.searchsorted(self.open_time_ns, _to_ns(end), side="left"))
        return self._window(lo, max(lo, hi))

    def closed_by(self, instant, lookback) -> BarWindow:
        """Bars fully closed at `instant` whose open_time is within `lookback` before it."""
        end_ns = _to_ns(instant)
        start_ns = end_ns - int(pd.Timedelta(lookback).value)
        lo = int(np.searchsorted(self.open_time_ns, start_ns, side="left"))
        hi = int(np.searchsorted(self.open_time_ns, end_ns - self.step_ns, side="right"))
        return self._window(lo, max(lo, hi))

    def index_at(self, instant) -> int:
        """Index of the bar opening exactly at `instant`, or -1."""
        ns = _to_ns(instant)
        i = int(np.searchsorted(self.open_time_ns, ns, side="left"))
        if i < len(self.open_time_ns) and self.open_time_ns[i] == ns:
            return i
        return -1

    def covers(self, end) -> bool:
        """True if the series has a bar opening at or after `end` minus one step."""
        if len(self.open_time_ns) == 0:
            return False
        return int(self.open_time_ns[-1]) >= _to_ns(end) - self.step_ns

    def last_closed_index(self, instant) -> int:
        """Index of the last bar fully closed at `instant`, or -1."""
        ns = _to_ns(instant)
        return int(np.searchsorted(self.open_time_ns, ns - self.step_ns, side="right")) - 1
