"""
Candle reader interface and validation.

The backtest core only consumes frozen, validated OHLC frames. A frame has
columns open_time (tz-aware UTC), open, high, low, close, volume and must be
strictly ascending and gap-free at its timeframe step. Gaps are fatal unless
the missing instant is explicitly whitelisted by the caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from solsignal.collector.resampler import resample_candles
from solsignal.utils.exceptions import DataQualityError


CANDLE_COLUMNS = ["open_time", "open", "high", "low", "close", "volume"]

TIMEFRAME_STEPS = {
    "1m": pd.Timedelta(minutes=1),
    "1h": pd.Timedelta(hours=1),
    "6h": pd.Timedelta(hours=6),
    "1d": pd.Timedelta(days=1),
}


def validate_candles(
    df: pd.DataFrame,
    timeframe: str,
    symbol: str = "",
    allowed_gaps: Optional[Iterable[pd.Timestamp]] = None,
) -> pd.DataFrame:
    """
    Validate an OHLC frame and return a normalized copy.

    Args:
        df: Candle frame
        timeframe: One of TIMEFRAME_STEPS
        symbol: Symbol name used in error messages
        allowed_gaps: Missing open_time values that are tolerated

    Returns:
        Validated frame with a RangeIndex

    Raises:
        DataQualityError: On missing columns, non-UTC times, duplicates,
            non-ascending order, gaps, or non-positive / non-finite prices
    """
    if timeframe not in TIMEFRAME_STEPS:
        raise DataQualityError(f"Unknown timeframe {timeframe!r} for {symbol}")

    for col in CANDLE_COLUMNS:
        if col not in df.columns:
            raise DataQualityError(f"Missing required column {col!r} in {symbol} {timeframe}")

    if df.empty:
        raise DataQualityError(f"Empty candle series for {symbol} {timeframe}")
    df = df.reset_index(drop=True)

    times = pd.to_datetime(df["open_time"])
    if times.dt.tz is None:
        raise DataQualityError(f"{symbol} {timeframe}: open_time must be tz-aware UTC")
    times = times.dt.tz_convert("UTC")

    diffs = times.diff().iloc[1:]
    if (diffs <= pd.Timedelta(0)).any():
        bad = int(np.argmax((diffs <= pd.Timedelta(0)).to_numpy())) + 1
        raise DataQualityError(
            f"{symbol} {timeframe}: series not strictly ascending at index {bad}: "
            f"{times.iloc[bad - 1]} -> {times.iloc[bad]}"
        )

    step = TIMEFRAME_STEPS[timeframe]
    gaps = diffs[diffs != step]
    if not gaps.empty:
        whitelist = {pd.Timestamp(t).tz_convert("UTC") for t in (allowed_gaps or [])}
        for idx in gaps.index:
            prev_time = times.loc[idx - 1]
            missing = pd.date_range(prev_time + step, times.loc[idx] - step, freq=step)
            unexpected = [t for t in missing if t not in whitelist]
            if unexpected:
                raise DataQualityError(
                    f"{symbol} {timeframe}: gap of {len(missing)} bars after {prev_time} "
                    f"(first missing {unexpected[0]})"
                )
        logger.debug(f"{symbol} {timeframe}: {len(gaps)} whitelisted gaps")

    prices = df[["open", "high", "low", "close"]].to_numpy(dtype=float)
    if not np.isfinite(prices).all():
        raise DataQualityError(f"{symbol} {timeframe}: non-finite prices")
    if (prices <= 0).any():
        row = int(np.argmax((prices <= 0).any(axis=1)))
        raise DataQualityError(f"{symbol} {timeframe}: non-positive price at {times.iloc[row]}")

    out = df[CANDLE_COLUMNS].copy()
    out["open_time"] = times
    return out


class CandleReader(ABC):
    """Source of historical candles. Implementations own all I/O."""

    @abstractmethod
    def read(self, symbol: str, timeframe: str) -> pd.DataFrame:
        """
        Return a validated candle frame.

        Args:
            symbol: Market symbol (e.g., "SOLUSDT")
            timeframe: "1m", "1h", "6h" or "1d"
        """
        pass

    def read_macro(self, name: str) -> Optional[pd.Series]:
        """Daily macro series indexed by UTC date, or None when unavailable."""
        return None


class FrameCandleReader(CandleReader):
    """In-memory reader over pre-built frames (used by tests and notebooks)."""

    def __init__(
        self,
        frames: Dict[Tuple[str, str], pd.DataFrame],
        macro: Optional[Dict[str, pd.Series]] = None,
        allowed_gaps: Optional[Iterable[pd.Timestamp]] = None,
    ):
        self._frames = frames
        self._macro = macro or {}
        self._allowed_gaps = list(allowed_gaps or [])

    def read(self, symbol: str, timeframe: str) -> pd.DataFrame:
        key = (symbol, timeframe)
        if key not in self._frames:
            raise DataQualityError(f"No candles for {symbol} {timeframe}")
        return validate_candles(self._frames[key], timeframe, symbol, self._allowed_gaps)

    def read_macro(self, name: str) -> Optional[pd.Series]:
        return self._macro.get(name)


class CsvCandleReader(CandleReader):
    """Reads {data_dir}/{SYMBOL}_{timeframe}.csv and optional {name}.csv macro files."""

    def __init__(self, data_dir: str, allowed_gaps: Optional[Iterable[pd.Timestamp]] = None):
        self.data_dir = Path(data_dir)
        self._allowed_gaps = list(allowed_gaps or [])

    def read(self, symbol: str, timeframe: str) -> pd.DataFrame:
        path = self.data_dir / f"{symbol}_{timeframe}.csv"
        if not path.exists():
            raise DataQualityError(f"Candle file not found: {path}")
        df = pd.read_csv(path)
        df["open_time"] = pd.to_datetime(df["open_time"], utc=True)
        logger.info(f"Loaded {len(df)} {timeframe} bars for {symbol} from {path}")
        return validate_candles(df, timeframe, symbol, self._allowed_gaps)

    def read_macro(self, name: str) -> Optional[pd.Series]:
        path = self.data_dir / f"{name}.csv"
        if not path.exists():
            logger.warning(f"Macro series {name} not found at {path}, feature will be neutral")
            return None
        df = pd.read_csv(path)
        index = pd.to_datetime(df["date"]).dt.date
        return pd.Series(df["value"].to_numpy(dtype=float), index=index, name=name).sort_index()


@dataclass(frozen=True)
class MarketData:
    """Frozen inputs of one backtest run."""

    sol_1m: pd.DataFrame
    sol_1h: pd.DataFrame
    sol_6h: pd.DataFrame
    btc_6h: pd.DataFrame
    fng: Optional[pd.Series] = None
    dxy: Optional[pd.Series] = None
    gold: Optional[pd.Series] = None

    @classmethod
    def load(cls, reader: CandleReader, sol_symbol: str, btc_symbol: str) -> "MarketData":
        """
        Read every series the core needs. Hourly and 6h SOL bars are resampled
        from minutes so all timeframes agree exactly.
        """
        sol_1m = reader.read(sol_symbol, "1m")
        btc_1m = reader.read(btc_symbol, "1m")
        return cls(
            sol_1m=sol_1m,
            sol_1h=resample_candles(sol_1m, "1h"),
            sol_6h=resample_candles(sol_1m, "6h"),
            btc_6h=resample_candles(btc_1m, "6h"),
            fng=reader.read_macro("fng"),
            dxy=reader.read_macro("dxy"),
            gold=reader.read_macro("gold"),
        )
