"""
Path labels for daily rows.

A day is labeled by which threshold the minute path touches first between
the entry and the baseline exit:
- up (2): high reaches entry * (1 + min_move) first
- down (0): low reaches entry * (1 - min_move) first
- flat (1): neither is reached, or both inside the same minute

Flat days additionally carry a micro fact when the forward return leans
clearly to one side without reaching the threshold.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from solsignal.processor.bar_series import BarWindow
from solsignal.processor.rows import LABEL_DOWN, LABEL_FLAT, LABEL_UP
from solsignal.utils.exceptions import DataQualityError


MICRO_MIN_SHARE = 0.1


@dataclass(frozen=True)
class PathLabel:
    """Outcome of one labeled minute path."""
    label: int
    reached_up: float
    reached_down: float
    forward_return: float
    first_hit_index: Optional[int]
    fact_micro_up: bool
    fact_micro_down: bool


class LabelGenerator:
    """Generate first-touch path labels and micro facts."""

    def __init__(self, micro_min_share: float = MICRO_MIN_SHARE):
        """
        Args:
            micro_min_share: Minimum |forward return| as a share of min_move
                for a flat day to count as micro-up or micro-down
        """
        self.micro_min_share = micro_min_share

    def label_path(self, window: BarWindow, entry_price: float, min_move: float) -> PathLabel:
        """
        Label a minute path.

        Args:
            window: Minute bars in [entry, baseline exit)
            entry_price: Entry price
            min_move: Adaptive threshold for the day

        Returns:
            PathLabel with class label, path extremes and micro facts
        """
        if window.empty:
            raise DataQualityError("Cannot label an empty minute window")
        if entry_price <= 0 or not np.isfinite(entry_price):
            raise DataQualityError(f"Invalid entry price {entry_price}")
        if min_move <= 0 or not np.isfinite(min_move):
            raise DataQualityError(f"Invalid min_move {min_move}")

        up_level = entry_price * (1.0 + min_move)
        down_level = entry_price * (1.0 - min_move)

        up_hits = window.high >= up_level
        down_hits = window.low <= down_level
        first_up = int(np.argmax(up_hits)) if up_hits.any() else None
        first_down = int(np.argmax(down_hits)) if down_hits.any() else None

        if first_up is None and first_down is None:
            label, first_hit = LABEL_FLAT, None
        elif first_down is None or (first_up is not None and first_up < first_down):
            label, first_hit = LABEL_UP, first_up
        elif first_up is None or first_down < first_up:
            label, first_hit = LABEL_DOWN, first_down
        else:
            # Both thresholds inside the same minute: order unknown
            label, first_hit = LABEL_FLAT, first_up

        reached_up = float(window.high.max() / entry_price - 1.0)
        reached_down = float(window.low.min() / entry_price - 1.0)
        forward_return = float(window.close[-1] / entry_price - 1.0)

        micro_up = micro_down = False
        if label == LABEL_FLAT and abs(forward_return) < min_move:
            micro_up = forward_return >= self.micro_min_share * min_move
            micro_down = forward_return <= -self.micro_min_share * min_move

        return PathLabel(
            label=label,
            reached_up=reached_up,
            reached_down=reached_down,
            forward_return=forward_return,
            first_hit_index=first_hit,
            fact_micro_up=micro_up,
            fact_micro_down=micro_down,
        )
