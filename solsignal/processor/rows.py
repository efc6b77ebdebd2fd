"""Immutable daily rows: the causal feature snapshot and its ground-truth label."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from solsignal.utils.exceptions import DataQualityError
from solsignal.utils.time_contract import (
    BaselineExit,
    EntryDayKey,
    EntryInstant,
    ExitDayKey,
    compute_baseline_exit,
)


# Class labels
LABEL_DOWN = 0
LABEL_FLAT = 1
LABEL_UP = 2
LABEL_NAMES = {LABEL_DOWN: "down", LABEL_FLAT: "flat", LABEL_UP: "up"}


FEATURE_NAMES = [
    "sol_ret_1d",
    "sol_ret_3d",
    "sol_ret_30d",
    "btc_ret_1d",
    "btc_ret_3d",
    "btc_ret_30d",
    "sol_btc_gap_1d",
    "sol_btc_gap_3d",
    "fng_norm",
    "dxy_chg_30d",
    "gold_chg_30d",
    "btc_vs_sma200",
    "rsi_centered",
    "rsi_slope",
    "regime_down",
    "atr_pct",
    "dyn_vol",
    "hard_regime",
    "sol_above_ema50",
    "sol_ema50_vs_200",
    "btc_ema50_vs_200",
]


@dataclass(frozen=True, eq=False)
class CausalRow:
    """
    Feature snapshot at a decision instant.

    Attributes:
        entry: Decision instant (weekday morning)
        entry_price: First tradable price at the entry minute
        features: Read-only vector ordered as FEATURE_NAMES
        min_move: Adaptive threshold for this day
        regime_down: Sustained downward regime flag
        atr_pct: 6h ATR relative to price
        dyn_vol: Dispersion of recent 6h returns
        hard_regime: Large 30d move or high ATR
    """
    entry: EntryInstant
    entry_price: float
    features: np.ndarray
    min_move: float
    regime_down: bool
    atr_pct: float
    dyn_vol: float
    hard_regime: bool

    def __post_init__(self):
        if not isinstance(self.entry, EntryInstant):
            raise DataQualityError(f"CausalRow needs an EntryInstant, got {type(self.entry).__name__}")
        if not np.isfinite(self.entry_price) or self.entry_price <= 0:
            raise DataQualityError(f"Non-positive entry price {self.entry_price} at {self.entry}")
        if not np.isfinite(self.min_move) or self.min_move <= 0:
            raise DataQualityError(f"Invalid min_move {self.min_move} at {self.entry}")

        features = np.array(self.features, dtype=np.float64)
        if features.shape != (len(FEATURE_NAMES),):
            raise DataQualityError(
                f"Feature vector at {self.entry} has shape {features.shape}, expected ({len(FEATURE_NAMES)},)"
            )
        if not np.isfinite(features).all():
            bad = [FEATURE_NAMES[i] for i in np.flatnonzero(~np.isfinite(features))]
            raise DataQualityError(f"Non-finite features at {self.entry}: {bad}")
        features.setflags(write=False)
        object.__setattr__(self, "features", features)

    @property
    def baseline_exit(self) -> BaselineExit:
        return compute_baseline_exit(self.entry)

    @property
    def entry_day_key(self) -> EntryDayKey:
        return EntryDayKey.from_entry(self.entry)

    @property
    def exit_day_key(self) -> ExitDayKey:
        return ExitDayKey.from_baseline_exit(self.baseline_exit)


@dataclass(frozen=True, eq=False)
class LabeledRow:
    """
    CausalRow plus the realized path label.

    Micro facts describe the direction of a flat day and are only allowed
    when label is LABEL_FLAT.
    """
    row: CausalRow
    label: int
    reached_up: float
    reached_down: float
    forward_return: float
    fact_micro_up: bool = False
    fact_micro_down: bool = False

    def __post_init__(self):
        if self.label not in LABEL_NAMES:
            raise DataQualityError(f"Unknown label {self.label} at {self.row.entry}")
        if (self.fact_micro_up or self.fact_micro_down) and self.label != LABEL_FLAT:
            raise DataQualityError(
                f"Micro fact on non-flat day at {self.row.entry}: label={LABEL_NAMES[self.label]}"
            )
        if self.fact_micro_up and self.fact_micro_down:
            raise DataQualityError(f"Both micro facts set at {self.row.entry}")

    @property
    def entry(self) -> EntryInstant:
        return self.row.entry

    @property
    def amplitude(self) -> float:
        """Largest excursion of the path in either direction."""
        return max(self.reached_up, abs(self.reached_down))

    @property
    def micro_direction(self) -> Optional[int]:
        if self.fact_micro_up:
            return LABEL_UP
        if self.fact_micro_down:
            return LABEL_DOWN
        return None
