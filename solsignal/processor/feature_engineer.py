"""
Feature Engineering Module for the daily SOL signal

Generates 21 causal features per trading morning across 5 groups:
- Returns (8): SOL and BTC over 1/3/30 days, SOL-BTC gaps
- Macro (3): fear & greed, DXY 30d change, gold 30d change
- Trend (6): BTC vs SMA200, RSI and its slope, EMA gaps
- Volatility (3): ATR%, dispersion of 6h returns, hard-regime flag
- Regime (1): regime-down flag

Every value is read from 6h bars that are fully closed at the entry instant
and from macro observations dated before the entry day.
"""

from datetime import date, timedelta
from typing import Dict, Optional

import numpy as np
import pandas as pd

from solsignal.processor.bar_series import BarSeries
from solsignal.processor.rows import FEATURE_NAMES
from solsignal.utils.time_contract import EntryInstant


BARS_PER_DAY = 4  # 6h bars
ATR_PERIOD = 14
RSI_PERIOD = 14
RSI_SLOPE_BARS = 3
DYN_VOL_BARS = 10
EMA_FAST = 50
EMA_SLOW = 200
SMA_LONG = 200

REGIME_DOWN_SOL_RET30 = -0.07
REGIME_DOWN_BTC_RET30 = -0.05
HARD_REGIME_RET30 = 0.10
HARD_REGIME_ATR = 0.035
DXY_CLAMP = 0.03
DEFAULT_DYN_VOL = 0.004


def _ema(close: pd.Series, span: int) -> pd.Series:
    """Exponential moving average (recursive, no look-ahead)."""
    return close.ewm(span=span, adjust=False).mean()


def _sma(close: pd.Series, window: int) -> pd.Series:
    """Simple moving average over up to `window` bars."""
    return close.rolling(window=window, min_periods=1).mean()


def _atr(high: pd.Series, low: pd.Series, close: pd.Series, period: int) -> pd.Series:
    """Average True Range with Wilder smoothing."""
    prev_close = close.shift(1)
    tr = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
        axis=1,
    ).max(axis=1)
    return tr.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()


def _rsi(close: pd.Series, period: int) -> pd.Series:
    """Relative Strength Index with Wilder smoothing."""
    delta = close.diff()
    gain = delta.clip(lower=0).ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    loss = (-delta.clip(upper=0)).ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    rs = gain / (loss + 1e-10)
    return 100 - (100 / (1 + rs))


def _dyn_vol(close: pd.Series, bars: int) -> pd.Series:
    """Standard deviation of the last `bars` 6h returns."""
    return close.pct_change().rolling(window=bars, min_periods=bars).std(ddof=0)


def _macro_before(series: Optional[pd.Series], day: date) -> Optional[float]:
    """Latest macro value dated strictly before `day`."""
    if series is None or series.empty:
        return None
    visible = series[series.index < day]
    if visible.empty:
        return None
    return float(visible.iloc[-1])


class FeatureEngineer:
    """
    Build the causal feature vector of a trading morning.

    Indicator series are computed once over the full 6h history; each is a
    backward-looking recursion, so the value at a bar depends only on that
    bar and earlier ones. Rows then pick the last bar closed by the entry.
    """

    def __init__(
        self,
        sol_6h: pd.DataFrame,
        btc_6h: pd.DataFrame,
        fng: Optional[pd.Series] = None,
        dxy: Optional[pd.Series] = None,
        gold: Optional[pd.Series] = None,
    ):
        """
        Initialize feature engineer.

        Args:
            sol_6h: Validated SOL 6h bars
            btc_6h: Validated BTC 6h bars
            fng: Daily fear & greed index (0-100) indexed by date
            dxy: Daily dollar index indexed by date
            gold: Daily gold price indexed by date
        """
        self.sol = self._indicator_frame(sol_6h)
        self.btc = self._indicator_frame(btc_6h)
        self._sol_series = BarSeries(sol_6h, pd.Timedelta(hours=6))
        self._btc_series = BarSeries(btc_6h, pd.Timedelta(hours=6))
        self.fng = fng
        self.dxy = dxy
        self.gold = gold

    @staticmethod
    def _indicator_frame(bars: pd.DataFrame) -> pd.DataFrame:
        close = bars["close"].astype(float).reset_index(drop=True)
        high = bars["high"].astype(float).reset_index(drop=True)
        low = bars["low"].astype(float).reset_index(drop=True)

        frame = pd.DataFrame({"close": close})
        frame["ret_1d"] = close / close.shift(BARS_PER_DAY) - 1.0
        frame["ret_3d"] = close / close.shift(3 * BARS_PER_DAY) - 1.0
        frame["ret_30d"] = close / close.shift(30 * BARS_PER_DAY) - 1.0
        frame["atr"] = _atr(high, low, close, ATR_PERIOD)
        frame["rsi"] = _rsi(close, RSI_PERIOD)
        frame["dyn_vol"] = _dyn_vol(close, DYN_VOL_BARS)
        frame["ema_fast"] = _ema(close, EMA_FAST)
        frame["ema_slow"] = _ema(close, EMA_SLOW)
        frame["sma_long"] = _sma(close, SMA_LONG)
        return frame

    @staticmethod
    def _last_closed_index(series: BarSeries, entry: EntryInstant) -> int:
        return series.last_closed_index(entry.utc)

    def _macro_change(self, series: Optional[pd.Series], day: date, days: int) -> float:
        now = _macro_before(series, day)
        past = _macro_before(series, day - timedelta(days=days))
        if now is None or past is None or past <= 0:
            return 0.0
        return now / past - 1.0

    def compute(self, entry: EntryInstant) -> Optional[Dict[str, float]]:
        """
        Compute all features for one entry.

        Args:
            entry: Trading-morning entry instant

        Returns:
            Dict keyed by FEATURE_NAMES, or None while indicators are warming up
        """
        i_sol = self._last_closed_index(self._sol_series, entry)
        i_btc = self._last_closed_index(self._btc_series, entry)
        if i_sol < 0 or i_btc < 0:
            return None

        sol = self.sol.iloc[i_sol]
        btc = self.btc.iloc[i_btc]
        required = [sol.ret_30d, btc.ret_30d, sol.atr, sol.rsi, sol.dyn_vol]
        if any(pd.isna(v) for v in required) or i_sol < RSI_SLOPE_BARS:
            return None

        close = float(sol.close)
        atr_pct = float(sol.atr) / close
        dyn_vol = float(sol.dyn_vol) if sol.dyn_vol > 0 else DEFAULT_DYN_VOL
        rsi_prev = self.sol["rsi"].iloc[i_sol - RSI_SLOPE_BARS]
        rsi_slope = 0.0 if pd.isna(rsi_prev) else (float(sol.rsi) - float(rsi_prev)) / 50.0

        regime_down = sol.ret_30d < REGIME_DOWN_SOL_RET30 or btc.ret_30d < REGIME_DOWN_BTC_RET30
        hard_regime = abs(sol.ret_30d) > HARD_REGIME_RET30 or atr_pct > HARD_REGIME_ATR

        day = entry.utc.date()
        fng = _macro_before(self.fng, day)
        fng_norm = 0.0 if fng is None else (fng - 50.0) / 50.0
        dxy_chg = float(np.clip(self._macro_change(self.dxy, day, 30), -DXY_CLAMP, DXY_CLAMP))
        gold_chg = self._macro_change(self.gold, day, 30)

        features = {
            "sol_ret_1d": float(sol.ret_1d),
            "sol_ret_3d": float(sol.ret_3d),
            "sol_ret_30d": float(sol.ret_30d),
            "btc_ret_1d": float(btc.ret_1d),
            "btc_ret_3d": float(btc.ret_3d),
            "btc_ret_30d": float(btc.ret_30d),
            "sol_btc_gap_1d": float(sol.ret_1d - btc.ret_1d),
            "sol_btc_gap_3d": float(sol.ret_3d - btc.ret_3d),
            "fng_norm": fng_norm,
            "dxy_chg_30d": dxy_chg,
            "gold_chg_30d": gold_chg,
            "btc_vs_sma200": float(btc.close / btc.sma_long - 1.0),
            "rsi_centered": (float(sol.rsi) - 50.0) / 50.0,
            "rsi_slope": rsi_slope,
            "regime_down": 1.0 if regime_down else 0.0,
            "atr_pct": atr_pct,
            "dyn_vol": dyn_vol,
            "hard_regime": 1.0 if hard_regime else 0.0,
            "sol_above_ema50": float(close / sol.ema_fast - 1.0),
            "sol_ema50_vs_200": float(sol.ema_fast / sol.ema_slow - 1.0),
            "btc_ema50_vs_200": float(btc.ema_fast / btc.ema_slow - 1.0),
        }
        return features

    @staticmethod
    def to_vector(features: Dict[str, float]) -> np.ndarray:
        """Order a feature dict as FEATURE_NAMES."""
        return np.array([features[name] for name in FEATURE_NAMES], dtype=np.float64)
