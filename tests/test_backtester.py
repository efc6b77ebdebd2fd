"""
Tests for the PnL simulator and performance metrics

Test Coverage:
- scan_exit ordering (TP, SL, liquidation, close)
- Daily trades in Cross and Isolated margin
- Anti-direction overlay
- Delayed trades
- Classification and trading metrics
- Error cases
"""

from datetime import timedelta

import numpy as np
import pytest

from solsignal.backtester.intraday import IntradayResult
from solsignal.backtester.metrics import calculate_classification_metrics, calculate_metrics
from solsignal.backtester.simulator import (
    BUCKET_DAILY,
    BUCKET_DELAYED,
    MarginMode,
    PnLConfig,
    PnLSimulator,
    scan_exit,
)
from solsignal.processor.rows import LABEL_DOWN, LABEL_FLAT, LABEL_UP
from solsignal.risk.leverage_policy import ConstLeverage
from solsignal.utils.exceptions import ConfigurationError, DataQualityError
from solsignal.utils.time_contract import EntryInstant, compute_baseline_exit

from conftest import MINUTES_PER_DAY, bars_from_prices, make_record, step_bars, weekday_entries


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def tuesday_entry(monday_entry):
    return EntryInstant(monday_entry.utc + timedelta(days=1))


def _simulator(leverage=5.0, **overrides):
    return PnLSimulator(PnLConfig(policy=ConstLeverage(leverage), **overrides))


def _window(entry, *bars):
    return bars_from_prices(entry.utc, bars).between(entry.utc, entry.utc + timedelta(minutes=len(bars)))


# ============================================================================
# scan_exit
# ============================================================================

def test_scan_sl_wins_same_minute_tie(monday_entry):
    window = _window(monday_entry, (100, 100, 100, 100), (100, 103.5, 94.0, 100))
    scan = scan_exit(window, 100.0, True, 103.0, 95.0, 80.0)

    assert scan.exit_index == 1
    assert scan.exit_reason == "sl"
    assert scan.exit_price == 95.0


def test_scan_tp(monday_entry):
    window = _window(monday_entry, (100, 101, 99.5, 100), (100, 103.2, 99.8, 103))
    scan = scan_exit(window, 100.0, True, 103.0, 95.0, 80.0)

    assert scan.exit_reason == "tp"
    assert scan.exit_price == 103.0
    assert scan.mae == pytest.approx(0.005)
    assert scan.mfe == pytest.approx(0.032)


def test_scan_short_close(monday_entry):
    window = _window(monday_entry, (100, 100.5, 99.5, 100), (100, 101, 99, 99.2))
    scan = scan_exit(window, 100.0, False, 97.0, 105.0, 119.0)

    assert scan.exit_reason == "close"
    assert scan.exit_index == 1
    assert scan.exit_price == 99.2


def test_scan_liquidation_closer_than_sl(monday_entry):
    window = _window(monday_entry, (100, 100, 90, 91))
    scan = scan_exit(window, 100.0, True, 103.0, 95.0, 98.4)

    assert scan.exit_reason == "liquidation"
    assert scan.exit_price == 98.4
    assert scan.is_real_liquidation


def test_scan_empty_window(monday_entry):
    minutes = step_bars(monday_entry, 100.0)
    with pytest.raises(DataQualityError):
        scan_exit(minutes.between(monday_entry.utc, monday_entry.utc), 100.0, True, 103.0, 95.0, None)


# ============================================================================
# Daily trades
# ============================================================================

def test_cross_tp_withdraws_profit(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 103.0)])
    result = _simulator().run([make_record(monday_entry)], minutes)

    trade = result.trades[0]
    assert trade.exit_reason == "tp"
    assert trade.exit_time == monday_entry.utc + timedelta(minutes=60)
    assert trade.pnl == pytest.approx(1800.0)
    assert trade.commission == pytest.approx(48.0)
    assert trade.notional == pytest.approx(60000.0)

    daily = result.buckets[BUCKET_DAILY]
    assert daily.equity == pytest.approx(12000.0)
    assert daily.withdrawn == pytest.approx(1752.0)
    assert result.total_pnl_pct == pytest.approx(1752.0 / 20000.0 * 100.0)


def test_stop_loss_disabled_closes_at_exit(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 96.0)])
    result = _simulator(use_stop_loss=False, daily_sl_pct=0.03).run([make_record(monday_entry)], minutes)

    trade = result.trades[0]
    assert trade.exit_reason == "close"
    assert trade.exit_price == 96.0
    assert trade.exit_time == compute_baseline_exit(monday_entry).utc
    assert trade.pnl == pytest.approx(-2400.0)


def test_skips_days_without_direction(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 103.0)])
    result = _simulator().run([make_record(monday_entry, go_long=None, predicted_class=LABEL_FLAT)], minutes)
    assert result.trades == []
    assert result.final_equity == pytest.approx(20000.0)


def test_cross_liquidation_kills_account(monday_entry, tuesday_entry):
    minutes = step_bars(monday_entry, 100.0, [(30, 98.0)])
    records = [make_record(monday_entry), make_record(tuesday_entry, entry_price=98.0)]
    result = _simulator(50.0).run(records, minutes)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == "liquidation"
    assert trade.is_real_liquidation
    assert trade.exit_price == pytest.approx(100.0 * 49 / (50 * 0.996))
    assert result.had_liquidation
    assert result.account_dead
    assert all(b.is_dead for b in result.buckets.values())


def test_isolated_liquidation_kills_only_bucket(monday_entry, tuesday_entry):
    minutes = step_bars(monday_entry, 100.0, [(30, 98.0)])
    records = [make_record(monday_entry), make_record(tuesday_entry, entry_price=98.0)]
    result = _simulator(50.0, margin_mode=MarginMode.ISOLATED).run(records, minutes)

    assert len(result.trades) == 1
    assert result.buckets[BUCKET_DAILY].is_dead
    assert result.buckets[BUCKET_DAILY].equity == 0.0
    assert not result.buckets[BUCKET_DELAYED].is_dead
    assert result.had_liquidation
    assert not result.account_dead


def test_isolated_withdraws_profit(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 103.0)])
    result = _simulator(margin_mode=MarginMode.ISOLATED).run([make_record(monday_entry)], minutes)

    daily = result.buckets[BUCKET_DAILY]
    assert daily.equity == pytest.approx(12000.0)
    assert daily.withdrawn == pytest.approx(1752.0)
    assert result.final_equity == pytest.approx(20000.0)
    assert result.total_pnl_pct == pytest.approx(1752.0 / 20000.0 * 100.0)


def test_isolated_loss_stays_in_bucket(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 99.0)])
    result = _simulator(margin_mode=MarginMode.ISOLATED).run([make_record(monday_entry)], minutes)

    daily = result.buckets[BUCKET_DAILY]
    assert daily.equity == pytest.approx(12000.0 - 600.0 - 48.0)
    assert daily.withdrawn == 0.0


def test_leverage_past_maintenance_margin_rejected():
    with pytest.raises(ConfigurationError):
        _simulator(300.0)
    with pytest.raises(ConfigurationError):
        _simulator(5.0, maintenance_margin=0.25)


# ============================================================================
# Anti-direction
# ============================================================================

def test_anti_direction_inverts_risky_trade(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 97.0)])
    record = make_record(monday_entry, high_risk=True, sl_prob=0.8)
    result = _simulator(use_anti_direction=True).run([record], minutes)

    trade = result.trades[0]
    assert trade.anti_direction
    assert not trade.go_long
    assert trade.exit_reason == "tp"
    assert result.anti_direction.checked == 1
    assert result.anti_direction.applied == 1
    assert result.anti_direction.by_predicted_class == {"up": 1}


def test_anti_direction_needs_liquidation_headroom(monday_entry):
    sim = _simulator(50.0, use_anti_direction=True)
    record = make_record(monday_entry, high_risk=True, sl_prob=0.8)

    assert sim.should_apply_anti_direction(record, 5.0)
    assert not sim.should_apply_anti_direction(record, 50.0)
    assert not sim.should_apply_anti_direction(make_record(monday_entry, high_risk=False), 5.0)
    assert not sim.should_apply_anti_direction(make_record(monday_entry, high_risk=True, min_move=0.2), 2.0)


def test_anti_direction_disabled_by_default(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 103.0)])
    result = _simulator().run([make_record(monday_entry, high_risk=True)], minutes)
    assert result.trades[0].go_long
    assert result.anti_direction.checked == 0


# ============================================================================
# Delayed trades
# ============================================================================

def _delayed_record(entry):
    return make_record(
        entry,
        high_risk=True,
        sl_prob=0.8,
        delayed_source="A",
        delayed_factor=0.45,
        delayed_max_hours=4.0,
        delayed_executed=True,
        delayed_price=99.1,
        delayed_executed_at=entry.utc + timedelta(hours=1),
        delayed_result=IntradayResult.TP_FIRST,
        delayed_tp_pct=0.025,
        delayed_sl_pct=0.01,
    )


def test_delayed_trade_hits_tp(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 99.0), (300, 101.7)])
    result = _simulator().run([_delayed_record(monday_entry)], minutes)

    assert [t.source for t in result.trades] == ["daily", "delayed_A"]
    delayed = result.trades[1]
    assert delayed.bucket == BUCKET_DELAYED
    assert delayed.exit_reason == "tp"
    assert delayed.entry_price == 99.1
    assert delayed.exit_price == pytest.approx(99.1 * 1.025)
    assert delayed.exit_time == monday_entry.utc + timedelta(minutes=300)
    assert delayed.margin == pytest.approx(3000.0 * 0.4)


def test_delayed_level_missing_from_minutes(monday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 99.0)])
    with pytest.raises(DataQualityError):
        _simulator().run([_delayed_record(monday_entry)], minutes)


# ============================================================================
# Error cases
# ============================================================================

def test_records_must_ascend(monday_entry):
    minutes = step_bars(monday_entry, 100.0)
    with pytest.raises(DataQualityError):
        _simulator().run([make_record(monday_entry), make_record(monday_entry)], minutes)


def test_minutes_must_start_at_entry(monday_entry):
    start = monday_entry.utc + timedelta(minutes=1)
    minutes = bars_from_prices(start, [(100.0, 100.0, 100.0, 100.0)] * (2 * MINUTES_PER_DAY))
    with pytest.raises(DataQualityError):
        _simulator().run([make_record(monday_entry)], minutes)


def test_invalid_config():
    with pytest.raises(ConfigurationError):
        PnLSimulator(PnLConfig(daily_share=0.8, delayed_share=0.3))
    with pytest.raises(ConfigurationError):
        PnLSimulator(PnLConfig(total_capital=0.0))
    with pytest.raises(ConfigurationError):
        PnLSimulator(PnLConfig(delayed_position_fraction=1.5))


# ============================================================================
# Metrics
# ============================================================================

def test_classification_metrics():
    entries = weekday_entries(3)
    records = [
        make_record(entries[0], true_label=LABEL_UP, predicted_class=LABEL_UP),
        make_record(entries[1], true_label=LABEL_DOWN, predicted_class=LABEL_UP, high_risk=True),
        make_record(entries[2], true_label=LABEL_FLAT, predicted_class=LABEL_FLAT, go_long=None),
    ]
    metrics = calculate_classification_metrics(records)

    assert metrics.total_days == 3
    assert metrics.accuracy == pytest.approx(2 / 3)
    assert metrics.confusion == [[0, 0, 1], [0, 1, 0], [0, 0, 1]]
    assert metrics.predicted_counts == {"down": 0, "flat": 1, "up": 2}
    assert metrics.distinct_predicted_classes == 2
    assert metrics.directional_days == 2
    assert metrics.high_risk_days == 1


def test_classification_metrics_empty():
    assert calculate_classification_metrics([]).total_days == 0


def test_performance_metrics(monday_entry, tuesday_entry):
    minutes = step_bars(monday_entry, 100.0, [(60, 103.0), (MINUTES_PER_DAY + 60, 97.0)])
    records = [make_record(monday_entry), make_record(tuesday_entry, entry_price=103.0)]
    result = _simulator().run(records, minutes)

    metrics = calculate_metrics(result.trades, total_predictions=4, max_drawdown_pct=result.max_drawdown_pct)

    assert metrics.total_trades == 2
    assert metrics.win_rate == pytest.approx(0.5)
    assert metrics.tp_rate == pytest.approx(0.5)
    assert metrics.sl_rate == pytest.approx(0.5)
    assert metrics.total_pnl == pytest.approx(1752.0 - 3048.0)
    assert metrics.profit_factor == pytest.approx(1752.0 / 3048.0)
    assert metrics.trade_rate == pytest.approx(0.5)
    assert metrics.max_consecutive_wins == 1
    assert metrics.max_consecutive_losses == 1
    assert metrics.max_drawdown_pct == pytest.approx(3048.0 / 13752.0 * 100.0)
    assert metrics.start_time == monday_entry.utc


def test_performance_metrics_without_trades():
    metrics = calculate_metrics([], total_predictions=10)
    assert metrics.total_trades == 0
    assert metrics.total_predictions == 10
    assert np.isclose(metrics.win_rate, 0.0)
