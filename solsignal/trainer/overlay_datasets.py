"""
Offline datasets for the overlay classifiers.

- SL dataset: for every morning a hypothetical long and a short, labeled 1
  when the stop is touched before the target.
- Pullback (A) dataset: mornings whose immediate entry hits SL first, replayed
  with deep limit entries (0.35 / 0.45 / 0.55 x MinMove within 4h). Label 1
  when the delayed trade reaches TP first.
- Small-improvement (B) dataset: the same SL-first mornings with shallow
  limit entries (0.12 / 0.18 / 0.24 x MinMove within 2h). Label 1 when the
  delayed trade avoids the stop.

Samples are keyed by entry so the orchestrator can select exactly the rows of
a causal Train partition.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from solsignal.backtester.intraday import (
    RESULT_RANK,
    IntradayResult,
    evaluate_delayed_entry,
    evaluate_hourly_outcome,
)
from solsignal.processor.bar_series import BarSeries
from solsignal.processor.overlay_features import build_sl_features, build_target_level_features
from solsignal.processor.rows import LabeledRow
from solsignal.utils.time_contract import EntryInstant


DEEP_FACTORS = (0.35, 0.45, 0.55)
DEEP_MAX_DELAY_HOURS = 4.0
SHALLOW_FACTORS = (0.12, 0.18, 0.24)
SHALLOW_MAX_DELAY_HOURS = 2.0


@dataclass(frozen=True, eq=False)
class OverlaySample:
    entry: EntryInstant
    features: np.ndarray
    label: int


def build_sl_samples(rows: Sequence[LabeledRow], hourly: BarSeries) -> Dict[EntryInstant, List[OverlaySample]]:
    """SL-first vs TP-first samples for both directions of every row."""
    out: Dict[EntryInstant, List[OverlaySample]] = {}
    for lr in rows:
        r = lr.row
        samples = []
        for go_long in (True, False):
            outcome = evaluate_hourly_outcome(hourly, r.entry, go_long, r.entry_price, r.min_move, strong=True)
            if outcome.result not in (IntradayResult.TP_FIRST, IntradayResult.SL_FIRST):
                continue
            feats = build_sl_features(r.entry, go_long, True, r.min_move, r.entry_price, hourly)
            samples.append(OverlaySample(r.entry, feats, int(outcome.result == IntradayResult.SL_FIRST)))
        out[r.entry] = samples
    return out


def _delayed_samples(
    rows: Sequence[LabeledRow],
    hourly: BarSeries,
    factors: Sequence[float],
    max_delay_hours: float,
    deep: bool,
) -> Dict[EntryInstant, List[OverlaySample]]:
    out: Dict[EntryInstant, List[OverlaySample]] = {}
    for lr in rows:
        r = lr.row
        samples = []
        for go_long in (True, False):
            base = evaluate_hourly_outcome(hourly, r.entry, go_long, r.entry_price, r.min_move, strong=True)
            if base.result != IntradayResult.SL_FIRST:
                continue
            feats = build_target_level_features(r.entry, go_long, True, r.min_move, r.entry_price, hourly)
            for factor in factors:
                delayed = evaluate_delayed_entry(
                    hourly, r.entry, go_long, r.entry_price, r.min_move, True, factor, max_delay_hours
                )
                if not delayed.executed:
                    label = 0
                elif deep:
                    label = int(delayed.result == IntradayResult.TP_FIRST)
                else:
                    label = int(RESULT_RANK[delayed.result] > RESULT_RANK[base.result])
                samples.append(OverlaySample(r.entry, feats, label))
        out[r.entry] = samples
    return out


def build_pullback_samples(rows: Sequence[LabeledRow], hourly: BarSeries) -> Dict[EntryInstant, List[OverlaySample]]:
    """Deep pullback continuation samples (model A)."""
    return _delayed_samples(rows, hourly, DEEP_FACTORS, DEEP_MAX_DELAY_HOURS, deep=True)


def build_small_samples(rows: Sequence[LabeledRow], hourly: BarSeries) -> Dict[EntryInstant, List[OverlaySample]]:
    """Shallow small-improvement samples (model B)."""
    return _delayed_samples(rows, hourly, SHALLOW_FACTORS, SHALLOW_MAX_DELAY_HOURS, deep=False)


def gather(samples_by_entry: Dict[EntryInstant, List[OverlaySample]], rows: Sequence[LabeledRow]) -> List[OverlaySample]:
    """Samples belonging to the given rows, in row order."""
    out: List[OverlaySample] = []
    for lr in rows:
        out.extend(samples_by_entry.get(lr.entry, []))
    return out
