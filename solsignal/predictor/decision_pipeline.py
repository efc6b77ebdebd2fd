"""
Per-day decision pipeline.

Layers, in order:
1. Daily predictor: (down, flat, up) triple, plus the micro verdict on flat days
2. Direction resolution: up/down classes trade directly, flat trades only on
   a confident micro verdict
3. SL overlay: P(SL first) from the 6 hours before entry; high risk at or
   above the threshold
4. Delayed-entry overlays on high-risk days: pullback (A) first, then small (B)

Every intermediate probability is kept on the DecisionRecord.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger

from solsignal.backtester.intraday import DelayedOutcome, IntradayResult, evaluate_delayed_entry
from solsignal.models.daily_predictor import FittedDailyModel
from solsignal.models.overlay_model import OverlayModel
from solsignal.predictor.aggregation import (
    DEFAULT_AGGREGATION,
    AggregationConfig,
    Triple,
    apply_micro_overlay,
    apply_sl_overlay,
)
from solsignal.processor.bar_series import BarSeries
from solsignal.processor.overlay_features import build_sl_features, build_target_level_features
from solsignal.processor.rows import LABEL_DOWN, LABEL_NAMES, LABEL_UP, LabeledRow
from solsignal.utils.exceptions import DataQualityError
from solsignal.utils.time_contract import EntryInstant


# Delayed-entry requests
PULLBACK_FACTOR = 0.45
PULLBACK_MAX_DELAY_HOURS = 4.0
SMALL_FACTOR = 0.18
SMALL_MAX_DELAY_HOURS = 2.0

SOURCE_PULLBACK = "A"
SOURCE_SMALL = "B"


@dataclass(frozen=True)
class OverlayThresholds:
    """Overlay cut-offs. Inclusive: a probability equal to the threshold passes."""
    sl_risk: float = 0.55
    pullback: float = 0.70
    small: float = 0.75


@dataclass
class DecisionRecord:
    """
    Output of one trading morning.

    All fields except the delayed-execution ones are fixed at construction.
    The delayed-execution fields are written once by resolve_delayed.
    """
    entry: EntryInstant
    entry_price: float
    true_label: int
    predicted_class: int
    probs_base: Triple
    probs_micro: Triple
    probs_overlay: Triple
    micro_p_up: Optional[float]
    micro_confidence: Optional[float]
    micro_direction: Optional[int]
    go_long: Optional[bool]
    strong: bool
    sl_prob: Optional[float]
    high_risk: bool
    pullback_prob: Optional[float]
    small_prob: Optional[float]
    delayed_source: Optional[str]
    delayed_factor: Optional[float]
    delayed_max_hours: Optional[float]
    regime_down: bool
    hard_regime: bool
    min_move: float

    delayed_executed: bool = False
    delayed_price: Optional[float] = None
    delayed_executed_at: Optional[datetime] = None
    delayed_result: Optional[IntradayResult] = None
    delayed_tp_pct: Optional[float] = None
    delayed_sl_pct: Optional[float] = None
    _resolved: bool = field(default=False, repr=False, compare=False)

    @property
    def has_direction(self) -> bool:
        return self.go_long is not None

    @property
    def direction(self) -> str:
        if self.go_long is None:
            return "none"
        return "long" if self.go_long else "short"

    @property
    def wants_delayed(self) -> bool:
        return self.delayed_source is not None

    @property
    def is_correct(self) -> bool:
        return self.predicted_class == self.true_label

    def resolve_delayed(self, outcome: DelayedOutcome) -> None:
        """
        Record how the delayed request played out.

        Raises:
            ValueError: If there is no request or it was already resolved
        """
        if self.delayed_source is None:
            raise ValueError(f"{self.entry}: no delayed entry requested")
        if self._resolved:
            raise ValueError(f"{self.entry}: delayed entry already resolved")
        self.delayed_executed = outcome.executed
        self.delayed_price = outcome.target_price
        self.delayed_executed_at = outcome.executed_at
        self.delayed_result = outcome.result if outcome.executed else None
        self.delayed_tp_pct = outcome.tp_pct if outcome.executed else None
        self.delayed_sl_pct = outcome.sl_pct if outcome.executed else None
        self._resolved = True

    def to_dict(self) -> Dict[str, Any]:
        """Flat dict for reporting."""
        data = asdict(self)
        data.pop("_resolved")
        data["entry"] = self.entry.utc.isoformat()
        data["date"] = self.entry.local.date().isoformat()
        data["true_label"] = LABEL_NAMES[self.true_label]
        data["predicted_class"] = LABEL_NAMES[self.predicted_class]
        data["direction"] = self.direction
        if self.delayed_executed_at is not None:
            data["delayed_executed_at"] = self.delayed_executed_at.isoformat()
        if self.delayed_result is not None:
            data["delayed_result"] = self.delayed_result.value
        return data


class DecisionPipeline:
    """
    Runs all decision layers for one day against the currently fitted models.

    Overlay models are optional; a missing or unfitted overlay skips its layer.
    """

    def __init__(
        self,
        daily_model: FittedDailyModel,
        sl_model: Optional[OverlayModel] = None,
        pullback_model: Optional[OverlayModel] = None,
        small_model: Optional[OverlayModel] = None,
        thresholds: OverlayThresholds = OverlayThresholds(),
        aggregation: AggregationConfig = DEFAULT_AGGREGATION,
    ):
        self.daily_model = daily_model
        self.sl_model = sl_model if sl_model is not None and sl_model.is_trained else None
        self.pullback_model = pullback_model if pullback_model is not None and pullback_model.is_trained else None
        self.small_model = small_model if small_model is not None and small_model.is_trained else None
        self.thresholds = thresholds
        self.aggregation = aggregation

    def decide(self, labeled: LabeledRow, hourly: BarSeries) -> DecisionRecord:
        """
        Produce the DecisionRecord for one morning.

        Only `labeled.row` feeds the decision; the label is copied onto the
        record for scoring.

        Args:
            labeled: Row of the day
            hourly: SOL 1h bars

        Returns:
            DecisionRecord, with the delayed request resolved against hourly bars
        """
        row = labeled.row
        forecast = self.daily_model.predict(row)
        predicted = forecast.predicted_class
        micro = forecast.micro

        probs_base = forecast.probs
        probs_micro = probs_base
        if micro is not None:
            probs_micro = apply_micro_overlay(probs_base, micro.p_up, micro.confidence, self.aggregation)

        go_long: Optional[bool] = None
        if predicted == LABEL_UP:
            go_long = True
        elif predicted == LABEL_DOWN:
            go_long = False
        elif micro is not None and micro.direction is not None:
            go_long = micro.direction == LABEL_UP
        strong = predicted in (LABEL_DOWN, LABEL_UP)

        if go_long is not None and not row.entry_price > 0:
            raise DataQualityError(f"{row.entry}: direction {go_long} without a positive entry price")

        sl_prob = None
        high_risk = False
        if go_long is not None and self.sl_model is not None:
            feats = build_sl_features(row.entry, go_long, strong, row.min_move, row.entry_price, hourly)
            sl_prob = self.sl_model.predict_proba(feats)
            high_risk = sl_prob >= self.thresholds.sl_risk

        probs_overlay = apply_sl_overlay(probs_micro, sl_prob, go_long, self.aggregation)

        pullback_prob = small_prob = None
        source = factor = max_hours = None
        if high_risk:
            target_feats = build_target_level_features(
                row.entry, go_long, strong, row.min_move, row.entry_price, hourly
            )
            if self.pullback_model is not None:
                pullback_prob = self.pullback_model.predict_proba(target_feats)
                if pullback_prob >= self.thresholds.pullback:
                    source, factor, max_hours = SOURCE_PULLBACK, PULLBACK_FACTOR, PULLBACK_MAX_DELAY_HOURS
            if source is None and self.small_model is not None:
                small_prob = self.small_model.predict_proba(target_feats)
                if small_prob >= self.thresholds.small:
                    source, factor, max_hours = SOURCE_SMALL, SMALL_FACTOR, SMALL_MAX_DELAY_HOURS

        record = DecisionRecord(
            entry=row.entry,
            entry_price=row.entry_price,
            true_label=labeled.label,
            predicted_class=predicted,
            probs_base=probs_base,
            probs_micro=probs_micro,
            probs_overlay=probs_overlay,
            micro_p_up=micro.p_up if micro else None,
            micro_confidence=micro.confidence if micro else None,
            micro_direction=micro.direction if micro else None,
            go_long=go_long,
            strong=strong,
            sl_prob=sl_prob,
            high_risk=high_risk,
            pullback_prob=pullback_prob,
            small_prob=small_prob,
            delayed_source=source,
            delayed_factor=factor,
            delayed_max_hours=max_hours,
            regime_down=row.regime_down,
            hard_regime=row.hard_regime,
            min_move=row.min_move,
        )

        if source is not None:
            outcome = evaluate_delayed_entry(
                hourly, row.entry, go_long, row.entry_price, row.min_move, strong, factor, max_hours
            )
            record.resolve_delayed(outcome)

        logger.debug(
            f"{row.entry.local:%Y-%m-%d} pred={LABEL_NAMES[predicted]} dir={record.direction} "
            f"sl={'-' if sl_prob is None else f'{sl_prob:.2f}'} high_risk={high_risk} delayed={source or '-'}"
        )
        return record
