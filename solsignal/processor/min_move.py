"""
Adaptive MinMove threshold.

MinMove is the size of move that counts as "real" on a given day. It feeds
the path labels and the intraday TP/SL sizing of the overlays. The estimate
combines a local volatility blend (ATR and dispersion of 6h returns) with an
EWMA, scaled by a slowly retuned quantile. Retuning looks only at path
amplitudes of days strictly before the current one.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from solsignal.utils.exceptions import LeakageBoundaryError


@dataclass(frozen=True)
class MinMoveConfig:
    """Parameters of the adaptive threshold."""
    floor: float = 0.015
    cap: float = 0.08
    atr_weight: float = 0.6
    dyn_vol_weight: float = 0.4
    ewma_alpha: float = 0.15
    quantile_start: float = 0.6
    quantile_low: float = 0.5
    quantile_high: float = 0.8
    quantile_step: float = 0.05
    retune_every_days: int = 10
    quantile_window_days: int = 90
    min_window_samples: int = 30
    regime_down_mul: float = 1.2
    input_cap: float = 0.25

    @classmethod
    def from_settings(cls, settings) -> "MinMoveConfig":
        return cls(
            floor=settings.MIN_MOVE_FLOOR,
            cap=settings.MIN_MOVE_CAP,
            ewma_alpha=settings.MIN_MOVE_EWMA_ALPHA,
            quantile_start=settings.MIN_MOVE_QUANTILE_START,
            quantile_low=settings.MIN_MOVE_QUANTILE_LOW,
            quantile_high=settings.MIN_MOVE_QUANTILE_HIGH,
            quantile_step=settings.MIN_MOVE_QUANTILE_STEP,
            retune_every_days=settings.MIN_MOVE_RETUNE_EVERY_DAYS,
            quantile_window_days=settings.MIN_MOVE_QUANTILE_WINDOW_DAYS,
            regime_down_mul=settings.MIN_MOVE_REGIME_DOWN_MUL,
        )


@dataclass
class MinMoveState:
    """Online state. Owned and mutated only by MinMoveEngine.compute."""
    ewma_vol: float = 0.0
    quantile: float = 0.0
    last_retune: Optional[date] = None


@dataclass(frozen=True)
class MinMoveResult:
    min_move: float
    local_vol: float
    ewma_vol: float
    quantile: float
    retuned: bool


@dataclass
class MinMoveEngine:
    """
    Sequential MinMove estimator.

    `compute` must be called once per day in ascending date order with the
    amplitudes of earlier days only. Each history item is (date, amplitude).
    """
    config: MinMoveConfig = field(default_factory=MinMoveConfig)
    state: MinMoveState = field(default_factory=MinMoveState)

    def local_vol(self, atr_pct: float, dyn_vol: float) -> float:
        cfg = self.config
        a = 0.0 if not np.isfinite(atr_pct) or atr_pct < 0 else min(atr_pct, cfg.input_cap)
        d = 0.0 if not np.isfinite(dyn_vol) or dyn_vol < 0 else min(dyn_vol, cfg.input_cap)
        return max(cfg.atr_weight * a + cfg.dyn_vol_weight * d, cfg.floor * 0.5)

    def compute(
        self,
        as_of: date,
        atr_pct: float,
        dyn_vol: float,
        regime_down: bool,
        history: Sequence[Tuple[date, float]],
    ) -> MinMoveResult:
        """
        Threshold for `as_of`, updating EWMA and quantile state.

        Args:
            as_of: Day being computed (UTC date of the entry)
            atr_pct: ATR relative to price
            dyn_vol: Dispersion of recent returns
            regime_down: Downward regime flag
            history: (date, path amplitude) of earlier days

        Raises:
            LeakageBoundaryError: If history contains as_of or a later day
        """
        cfg = self.config
        state = self.state

        local = self.local_vol(atr_pct, dyn_vol)
        ewma = local if state.ewma_vol <= 0 else state.ewma_vol + cfg.ewma_alpha * (local - state.ewma_vol)

        q = state.quantile if state.quantile > 0 else cfg.quantile_start
        retuned = False

        due = state.last_retune is None or (as_of - state.last_retune).days >= cfg.retune_every_days
        if due:
            end = as_of - timedelta(days=1)
            start = end - timedelta(days=cfg.quantile_window_days)
            amplitudes = []
            for day, amplitude in history:
                if day >= as_of:
                    raise LeakageBoundaryError(
                        f"MinMove history for {as_of} contains same-day or future day {day}"
                    )
                if start <= day <= end and amplitude > 0:
                    amplitudes.append(amplitude)

            if len(amplitudes) >= cfg.min_window_samples:
                window = np.sort(np.asarray(amplitudes))
                idx = int(round(cfg.quantile_start * (len(window) - 1)))
                realized = float(window[min(max(idx, 0), len(window) - 1)])
                target = max(cfg.floor, ewma)

                if realized < target * 0.9 and q < cfg.quantile_high:
                    q = min(cfg.quantile_high, q + cfg.quantile_step)
                elif realized > target * 1.1 and q > cfg.quantile_low:
                    q = max(cfg.quantile_low, q - cfg.quantile_step)

                state.last_retune = as_of
                retuned = True
                logger.debug(
                    f"MinMove retune {as_of}: realized={realized:.4f} target={target:.4f} q={q:.2f} "
                    f"(n={len(window)})"
                )

        state.ewma_vol = ewma
        state.quantile = q

        min_move = max(local, ewma) * q / cfg.quantile_start
        if regime_down:
            min_move *= cfg.regime_down_mul
        min_move = min(max(min_move, cfg.floor), cfg.cap)

        return MinMoveResult(
            min_move=min_move,
            local_vol=local,
            ewma_vol=ewma,
            quantile=q,
            retuned=retuned,
        )
