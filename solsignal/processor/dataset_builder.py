"""Build the chronological list of labeled daily rows."""

from datetime import timedelta
from typing import List, Optional

import pandas as pd
from loguru import logger

from solsignal.collector.candle_reader import MarketData
from solsignal.processor.bar_series import BarSeries
from solsignal.processor.feature_engineer import FeatureEngineer
from solsignal.processor.label_generator import LabelGenerator
from solsignal.processor.min_move import MinMoveConfig, MinMoveEngine
from solsignal.processor.rows import CausalRow, LabeledRow
from solsignal.utils.exceptions import DataQualityError
from solsignal.utils.time_contract import compute_baseline_exit, entry_for_trading_day, NY_TZ


def build_labeled_rows(
    market: MarketData,
    min_move_config: Optional[MinMoveConfig] = None,
    label_generator: Optional[LabelGenerator] = None,
) -> List[LabeledRow]:
    """
    Walk every New York weekday covered by the minute data and build one row
    per trading morning.

    Days are skipped (not errors) while indicators warm up and when the
    baseline exit lies beyond the last minute bar. MinMove state advances in
    date order and only sees amplitudes of earlier rows.

    Args:
        market: Frozen market inputs
        min_move_config: Adaptive threshold parameters
        label_generator: Path labeler

    Returns:
        Rows in strictly ascending entry order
    """
    minutes = BarSeries(market.sol_1m, pd.Timedelta(minutes=1))
    if len(minutes) == 0:
        raise DataQualityError("No minute bars to build rows from")

    engineer = FeatureEngineer(market.sol_6h, market.btc_6h, market.fng, market.dxy, market.gold)
    engine = MinMoveEngine(config=min_move_config or MinMoveConfig())
    labeler = label_generator or LabelGenerator()

    first_local = pd.Timestamp(int(minutes.open_time_ns[0]), tz="UTC").tz_convert(NY_TZ).date()
    last_local = pd.Timestamp(int(minutes.open_time_ns[-1]), tz="UTC").tz_convert(NY_TZ).date()

    rows: List[LabeledRow] = []
    history = []
    warmup = skipped_tail = 0

    day = first_local
    while day <= last_local:
        if day.weekday() >= 5:
            day += timedelta(days=1)
            continue

        entry = entry_for_trading_day(day)
        baseline_exit = compute_baseline_exit(entry)
        day += timedelta(days=1)

        entry_idx = minutes.index_at(entry.utc)
        if entry_idx < 0:
            continue
        if not minutes.covers(baseline_exit.utc):
            skipped_tail += 1
            continue

        features = engineer.compute(entry)
        if features is None:
            warmup += 1
            continue

        mm = engine.compute(
            as_of=entry.utc.date(),
            atr_pct=features["atr_pct"],
            dyn_vol=features["dyn_vol"],
            regime_down=features["regime_down"] > 0,
            history=history,
        )

        entry_price = float(minutes.open[entry_idx])
        causal = CausalRow(
            entry=entry,
            entry_price=entry_price,
            features=FeatureEngineer.to_vector(features),
            min_move=mm.min_move,
            regime_down=features["regime_down"] > 0,
            atr_pct=features["atr_pct"],
            dyn_vol=features["dyn_vol"],
            hard_regime=features["hard_regime"] > 0,
        )

        path = labeler.label_path(minutes.between(entry.utc, baseline_exit.utc), entry_price, mm.min_move)
        labeled = LabeledRow(
            row=causal,
            label=path.label,
            reached_up=path.reached_up,
            reached_down=path.reached_down,
            forward_return=path.forward_return,
            fact_micro_up=path.fact_micro_up,
            fact_micro_down=path.fact_micro_down,
        )
        rows.append(labeled)
        history.append((entry.utc.date(), labeled.amplitude))

    logger.info(
        f"Built {len(rows)} labeled rows "
        f"(warmup skipped={warmup}, incomplete exit window={skipped_tail})"
    )
    return rows
