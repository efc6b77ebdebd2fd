"""Tests for the per-day decision pipeline and DecisionRecord."""
from unittest.mock import Mock

import pytest

from solsignal.backtester.intraday import DelayedOutcome, IntradayResult
from solsignal.models.daily_predictor import DailyForecast, MicroForecast
from solsignal.predictor.decision_pipeline import (
    PULLBACK_FACTOR,
    SMALL_FACTOR,
    SOURCE_PULLBACK,
    SOURCE_SMALL,
    DecisionPipeline,
)
from solsignal.processor.rows import LABEL_DOWN, LABEL_FLAT, LABEL_UP, LabeledRow
from solsignal.utils.exceptions import DataQualityError

from conftest import make_causal_row, make_record, step_bars


def _daily(predicted, probs=None, micro=None):
    if probs is None:
        probs = {LABEL_DOWN: (0.6, 0.2, 0.2), LABEL_FLAT: (0.25, 0.5, 0.25), LABEL_UP: (0.2, 0.2, 0.6)}[predicted]
    model = Mock()
    model.predict.return_value = DailyForecast(predicted_class=predicted, probs=probs, micro=micro)
    return model


def _overlay(prob):
    model = Mock()
    model.is_trained = True
    model.predict_proba.return_value = prob
    return model


def _labeled(entry, label=LABEL_UP, **row_overrides):
    return LabeledRow(
        row=make_causal_row(entry, **row_overrides),
        label=label,
        reached_up=0.03,
        reached_down=-0.01,
        forward_return=0.01,
        fact_micro_up=False,
        fact_micro_down=False,
    )


@pytest.fixture
def hourly(monday_entry):
    """Dips to 99 one hour in, then rallies to 101.7."""
    return step_bars(monday_entry, 100.0, [(1, 99.0), (5, 101.7)], step="1h")


# ============================================================================
# DecisionRecord
# ============================================================================

def test_record_resolves_once(monday_entry):
    record = make_record(monday_entry, delayed_source=SOURCE_PULLBACK, delayed_factor=0.45, delayed_max_hours=4.0)
    outcome = DelayedOutcome(executed=False, target_price=99.1)

    record.resolve_delayed(outcome)
    assert record.delayed_price == 99.1
    assert not record.delayed_executed

    with pytest.raises(ValueError):
        record.resolve_delayed(outcome)


def test_record_resolve_without_request(monday_entry):
    with pytest.raises(ValueError):
        make_record(monday_entry).resolve_delayed(DelayedOutcome(executed=False, target_price=99.0))


def test_record_to_dict(monday_entry):
    data = make_record(monday_entry, true_label=LABEL_FLAT).to_dict()

    assert data["entry"] == "2024-03-04T12:00:00+00:00"
    assert data["date"] == "2024-03-04"
    assert data["true_label"] == "flat"
    assert data["predicted_class"] == "up"
    assert data["direction"] == "long"
    assert "_resolved" not in data


# ============================================================================
# Pipeline
# ============================================================================

def test_strong_up_without_overlays(monday_entry, hourly):
    record = DecisionPipeline(_daily(LABEL_UP)).decide(_labeled(monday_entry), hourly)

    assert record.go_long is True
    assert record.strong
    assert record.sl_prob is None
    assert not record.high_risk
    assert record.probs_overlay == record.probs_base
    assert record.is_correct


def test_flat_day_trades_confident_micro(monday_entry, hourly):
    micro = MicroForecast(p_up=0.2, confidence=0.8, direction=LABEL_DOWN)
    record = DecisionPipeline(_daily(LABEL_FLAT, micro=micro)).decide(_labeled(monday_entry), hourly)

    assert record.go_long is False
    assert not record.strong
    assert record.micro_direction == LABEL_DOWN
    assert record.probs_micro[0] > record.probs_base[0]


def test_flat_day_without_micro_direction_stays_out(monday_entry, hourly):
    micro = MicroForecast(p_up=0.55, confidence=0.55, direction=None)
    record = DecisionPipeline(_daily(LABEL_FLAT, micro=micro)).decide(_labeled(monday_entry), hourly)
    assert record.go_long is None
    assert record.direction == "none"


def test_high_risk_uses_pullback(monday_entry, hourly):
    pipeline = DecisionPipeline(
        _daily(LABEL_UP),
        sl_model=_overlay(0.8),
        pullback_model=_overlay(0.75),
        small_model=_overlay(0.9),
    )
    record = pipeline.decide(_labeled(monday_entry), hourly)

    assert record.high_risk
    assert record.delayed_source == SOURCE_PULLBACK
    assert record.delayed_factor == PULLBACK_FACTOR
    assert record.small_prob is None
    assert record.delayed_executed
    assert record.delayed_price == pytest.approx(99.1)
    assert record.delayed_result == IntradayResult.TP_FIRST
    assert record.probs_overlay[2] < record.probs_base[2]


def test_small_entry_when_pullback_unconvincing(monday_entry, hourly):
    pipeline = DecisionPipeline(
        _daily(LABEL_UP),
        sl_model=_overlay(0.6),
        pullback_model=_overlay(0.5),
        small_model=_overlay(0.8),
    )
    record = pipeline.decide(_labeled(monday_entry), hourly)

    assert record.delayed_source == SOURCE_SMALL
    assert record.delayed_factor == SMALL_FACTOR
    assert record.delayed_max_hours == 2.0
    assert record.pullback_prob == 0.5
    assert record.small_prob == 0.8


def test_low_risk_has_no_delayed_request(monday_entry, hourly):
    pullback = _overlay(0.99)
    pipeline = DecisionPipeline(_daily(LABEL_UP), sl_model=_overlay(0.4), pullback_model=pullback)
    record = pipeline.decide(_labeled(monday_entry), hourly)

    assert record.sl_prob == 0.4
    assert not record.high_risk
    assert not record.wants_delayed
    pullback.predict_proba.assert_not_called()


def test_untrained_overlay_is_skipped(monday_entry, hourly):
    sl = _overlay(0.9)
    sl.is_trained = False
    record = DecisionPipeline(_daily(LABEL_UP), sl_model=sl).decide(_labeled(monday_entry), hourly)
    assert record.sl_prob is None
    sl.predict_proba.assert_not_called()


def test_non_positive_entry_price_rejected(monday_entry, hourly):
    with pytest.raises(DataQualityError):
        DecisionPipeline(_daily(LABEL_UP)).decide(_labeled(monday_entry, entry_price=0.0), hourly)


def test_overlay_thresholds_are_inclusive(monday_entry, hourly):
    pipeline = DecisionPipeline(
        _daily(LABEL_UP),
        sl_model=_overlay(0.55),
        pullback_model=_overlay(0.70),
    )
    record = pipeline.decide(_labeled(monday_entry), hourly)

    assert record.high_risk
    assert record.delayed_source == SOURCE_PULLBACK


def test_sl_probability_below_threshold_is_not_high_risk(monday_entry, hourly):
    record = DecisionPipeline(_daily(LABEL_UP), sl_model=_overlay(0.5499)).decide(_labeled(monday_entry), hourly)
    assert not record.high_risk
