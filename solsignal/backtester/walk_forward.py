"""
Causal walk-forward backtest.

Walk-Forward Process:
1. Build every labeled morning row once (features, MinMove, path labels)
2. Start the cursor one train window after the first row
3. Fit the daily model on rows in [cursor - train, cursor) whose baseline
   exit falls on or before the cursor day
4. Refit each overlay when its retrain gate opens, on the expanding history
   of rows that have exited
5. Decide every morning in [cursor, cursor + test), then advance the cursor

Example with 260/60 day windows:
- Step 1: Train days 1-260,   Test days 261-320
- Step 2: Train days 61-320,  Test days 321-380
- Step 3: Train days 121-380, Test days 381-440

The resulting decisions are replayed through the PnL simulator.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from loguru import logger

from solsignal.backtester.config import BacktestConfig
from solsignal.backtester.metrics import (
    ClassificationMetrics,
    PerformanceMetrics,
    calculate_classification_metrics,
    calculate_metrics,
)
from solsignal.backtester.simulator import MarginMode, PnLResult, PnLSimulator
from solsignal.backtester.split import TrainBoundary, TrainOnly, split_by_train_boundary
from solsignal.collector.candle_reader import CandleReader, MarketData
from solsignal.models.daily_predictor import DailyModelTrainer
from solsignal.predictor.decision_pipeline import DecisionPipeline, DecisionRecord
from solsignal.processor.bar_series import BarSeries
from solsignal.processor.dataset_builder import build_labeled_rows
from solsignal.processor.rows import LabeledRow
from solsignal.risk.leverage_policy import SWEEP_POLICIES, LeveragePolicy
from solsignal.trainer.incremental import OverlayState
from solsignal.trainer.overlay_datasets import (
    OverlaySample,
    build_pullback_samples,
    build_sl_samples,
    build_small_samples,
    gather,
)
from solsignal.utils.exceptions import DataQualityError
from solsignal.utils.time_contract import EntryInstant, ExitDayKey


OVERLAY_NAMES = ("sl", "pullback", "small")


@dataclass(frozen=True)
class BacktestDataset:
    """Frozen inputs shared by every step and every PnL replay."""
    rows: Tuple[LabeledRow, ...]
    minutes: BarSeries
    hourly: BarSeries
    overlay_samples: Dict[str, Dict[EntryInstant, List[OverlaySample]]]

    @classmethod
    def build(cls, config: BacktestConfig, market: MarketData) -> "BacktestDataset":
        rows = tuple(build_labeled_rows(market, config.min_move))
        if not rows:
            raise DataQualityError("Walk-forward needs at least one labeled row; dataset is empty")
        hourly = BarSeries(market.sol_1h, pd.Timedelta(hours=1))
        samples = {
            "sl": build_sl_samples(rows, hourly),
            "pullback": build_pullback_samples(rows, hourly),
            "small": build_small_samples(rows, hourly),
        }
        logger.info(
            "Overlay samples: "
            + ", ".join(f"{name}={sum(len(v) for v in s.values())}" for name, s in samples.items())
        )
        return cls(
            rows=rows,
            minutes=BarSeries(market.sol_1m, pd.Timedelta(minutes=1)),
            hourly=hourly,
            overlay_samples=samples,
        )


@dataclass(frozen=True)
class WalkForwardStep:
    """
    Audit record of one step.

    Attributes:
        cursor: First day of the test window
        boundary: Exit-day cutoff applied to Train
        train_entries: Entries of the daily model's Train partition
        train_predicted_classes: Fitted model's predictions on that partition
        overlays_retrained: Overlay names refitted at this step
        decisions: Number of DecisionRecords produced
    """
    index: int
    cursor: date
    boundary: TrainBoundary
    train_entries: Tuple[EntryInstant, ...]
    train_predicted_classes: Tuple[int, ...]
    overlays_retrained: Tuple[str, ...]
    decisions: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "cursor": self.cursor.isoformat(),
            "cutoff": self.boundary.cutoff.day.isoformat(),
            "train_rows": len(self.train_entries),
            "overlays_retrained": list(self.overlays_retrained),
            "decisions": self.decisions,
        }


@dataclass
class BacktestSummary:
    config: BacktestConfig
    total_rows: int
    steps: List[WalkForwardStep] = field(default_factory=list)
    records: List[DecisionRecord] = field(default_factory=list)
    classification: ClassificationMetrics = field(default_factory=ClassificationMetrics)
    pnl: Optional[PnLResult] = None
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "steps": [s.to_dict() for s in self.steps],
            "records": [r.to_dict() for r in self.records],
            "classification": self.classification.to_dict(),
            "pnl": self.pnl.get_summary() if self.pnl else None,
            "performance": self.performance.to_dict(),
        }


def _day(lr: LabeledRow) -> date:
    return lr.entry.utc.date()


def _make_overlay_states(config: BacktestConfig) -> Dict[str, OverlayState]:
    return {
        name: OverlayState(
            name,
            min_train_samples=config.overlay_min_train_samples,
            retrain_every=config.overlay_retrain_every,
            model_type=config.model_type,
            random_state=config.random_seed,
        )
        for name in OVERLAY_NAMES
    }


def _cutoff_for(cursor: date, config: BacktestConfig) -> TrainBoundary:
    cutoff_day = cursor if config.train_until is None else min(cursor, config.train_until)
    return TrainBoundary(ExitDayKey.train_until(cutoff_day))


def generate_decisions(
    config: BacktestConfig,
    dataset: BacktestDataset,
) -> Tuple[List[DecisionRecord], List[WalkForwardStep]]:
    """
    Run the walk-forward loop and collect every out-of-sample decision.

    Args:
        config: Run configuration
        dataset: Prepared rows, bars and overlay samples

    Returns:
        (decision records in entry order, per-step audit records)
    """
    rows = dataset.rows
    first_day, last_day = _day(rows[0]), _day(rows[-1])
    train_span = timedelta(days=config.train_window_days)
    test_span = timedelta(days=config.test_window_days)

    trainer = DailyModelTrainer(
        model_type=config.model_type,
        random_state=config.random_seed,
        micro_min_confidence=config.micro_min_confidence,
    )
    overlays = _make_overlay_states(config)

    records: List[DecisionRecord] = []
    steps: List[WalkForwardStep] = []

    cursor = first_day + train_span
    step_index = 0
    while cursor <= last_day:
        step_index += 1
        test_end = cursor + test_span
        test_rows = [lr for lr in rows if cursor <= _day(lr) < test_end]
        if not test_rows:
            logger.info(f"Step {step_index} ({cursor}): empty test window, skipping")
            cursor = test_end
            continue

        boundary = _cutoff_for(cursor, config)
        candidates = [lr for lr in rows if cursor - train_span <= _day(lr) < cursor]
        train = TrainOnly.from_split(split_by_train_boundary(candidates, boundary), tag=f"step{step_index}")
        if not train.rows:
            logger.info(f"Step {step_index} ({cursor}): no trainable rows at {boundary}, skipping")
            cursor = test_end
            continue

        as_of = test_rows[0].entry.utc
        daily_model = trainer.train(train.rows, as_of)
        train_pred = tuple(int(c) for c in daily_model.predict_classes(train.rows))

        # Overlays learn from every row that has exited, not only the sliding window
        history = split_by_train_boundary([lr for lr in rows if _day(lr) < cursor], boundary).train
        retrained = []
        for name, state in overlays.items():
            samples = gather(dataset.overlay_samples[name], history)
            if state.try_retrain(samples, as_of):
                retrained.append(name)

        pipeline = DecisionPipeline(
            daily_model,
            sl_model=overlays["sl"].model,
            pullback_model=overlays["pullback"].model,
            small_model=overlays["small"].model,
            thresholds=config.thresholds,
        )
        step_records = [pipeline.decide(lr, dataset.hourly) for lr in test_rows]
        records.extend(step_records)

        steps.append(
            WalkForwardStep(
                index=step_index,
                cursor=cursor,
                boundary=boundary,
                train_entries=tuple(lr.entry for lr in train.rows),
                train_predicted_classes=train_pred,
                overlays_retrained=tuple(retrained),
                decisions=len(step_records),
            )
        )
        correct = sum(1 for r in step_records if r.is_correct)
        logger.info(
            f"Step {step_index}: cursor={cursor}, train={len(train)} rows (cutoff {boundary.cutoff.day}), "
            f"test={len(step_records)} days, accuracy={correct / len(step_records):.1%}, "
            f"overlays retrained={retrained or '-'}"
        )
        cursor = test_end

    return records, steps


def prepare_dataset(config: BacktestConfig, reader: CandleReader) -> BacktestDataset:
    """Read candles and build the row dataset."""
    market = MarketData.load(reader, config.sol_symbol, config.btc_symbol)
    return BacktestDataset.build(config, market)


def run_walk_forward(config: BacktestConfig, reader: CandleReader) -> BacktestSummary:
    """
    Full backtest: walk-forward decisions, then PnL with the configured policy.

    Args:
        config: Run configuration
        reader: Candle source

    Returns:
        BacktestSummary

    Raises:
        ConfigurationError: On invalid config
        DataQualityError: On an empty dataset or corrupt candles
    """
    config.validate()
    dataset = prepare_dataset(config, reader)
    records, steps = generate_decisions(config, dataset)

    pnl = PnLSimulator(config.pnl_config()).run(records, dataset.minutes)
    summary = BacktestSummary(
        config=config,
        total_rows=len(dataset.rows),
        steps=steps,
        records=records,
        classification=calculate_classification_metrics(records),
        pnl=pnl,
        performance=calculate_metrics(pnl.trades, len(records), pnl.max_drawdown_pct),
    )
    logger.info(
        f"Walk-forward done: {len(steps)} steps, {len(records)} decisions, "
        f"accuracy={summary.classification.accuracy:.1%}, pnl={pnl.total_pnl_pct:+.2f}%"
    )
    return summary


def run_policy_sweep(
    config: BacktestConfig,
    reader: CandleReader,
    policies: Iterable[LeveragePolicy] = SWEEP_POLICIES,
    margin_modes: Sequence[MarginMode] = (MarginMode.CROSS, MarginMode.ISOLATED),
) -> Dict[Tuple[str, str], PnLResult]:
    """
    Replay one set of decisions under every (policy, margin mode) pair.

    Returns:
        {(policy name, margin mode): PnLResult}
    """
    config.validate()
    dataset = prepare_dataset(config, reader)
    records, _ = generate_decisions(config, dataset)

    results: Dict[Tuple[str, str], PnLResult] = {}
    for policy in policies:
        for mode in margin_modes:
            simulator = PnLSimulator(config.pnl_config(policy=policy, margin_mode=mode))
            results[(policy.name, mode.value)] = simulator.run(records, dataset.minutes)
    return results
