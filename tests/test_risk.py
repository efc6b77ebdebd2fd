"""Tests for liquidation math and leverage policies."""
import pytest

from solsignal.risk.leverage_policy import (
    SWEEP_POLICIES,
    ConstLeverage,
    RiskAwareLeverage,
    UltraSafeLeverage,
    parse_policy,
    resolve_leverage,
)
from solsignal.risk.liquidation import check_leverage, liquidation_distance, liquidation_price
from solsignal.utils.exceptions import ConfigurationError, DataQualityError

from conftest import make_record


# ============================================================================
# Liquidation
# ============================================================================

def test_liquidation_prices():
    assert liquidation_price(100.0, 5, True) == pytest.approx(80.321285, rel=1e-6)
    assert liquidation_price(100.0, 5, False) == pytest.approx(119.521912, rel=1e-6)
    assert liquidation_price(100.0, 1, True) == 0.0
    assert liquidation_price(100.0, 5, True, maintenance_margin=0.0) == pytest.approx(80.0)


def test_liquidation_closer_with_more_leverage():
    assert liquidation_price(100.0, 50, True) > liquidation_price(100.0, 5, True)
    assert liquidation_price(100.0, 50, False) < liquidation_price(100.0, 5, False)


def test_liquidation_distance():
    assert liquidation_distance(5) == pytest.approx(0.196)
    assert liquidation_distance(50) == pytest.approx(0.016)


def test_liquidation_errors():
    with pytest.raises(ConfigurationError):
        liquidation_price(100.0, 0.5, True)
    with pytest.raises(ConfigurationError):
        liquidation_price(100.0, 5, True, maintenance_margin=1.0)
    with pytest.raises(DataQualityError):
        liquidation_price(0.0, 5, True)


@pytest.mark.parametrize("leverage", [250.0, 300.0])
def test_leverage_at_maintenance_limit_rejected(leverage):
    # 1/L <= m would put the long liquidation price above entry
    with pytest.raises(ConfigurationError):
        check_leverage(leverage)
    with pytest.raises(ConfigurationError):
        liquidation_price(100.0, leverage, True)
    with pytest.raises(ConfigurationError):
        liquidation_distance(leverage)


def test_leverage_just_below_maintenance_limit():
    check_leverage(249.0)
    assert liquidation_price(100.0, 249.0, True) < 100.0
    assert liquidation_distance(249.0) > 0


# ============================================================================
# Policies
# ============================================================================

def test_policy_names():
    assert ConstLeverage(5.0).name == "const_5x"
    assert ConstLeverage(2.5).name == "const_2.5x"
    assert RiskAwareLeverage().name == "risk_aware"
    assert UltraSafeLeverage().name == "ultra_safe"
    assert [p.name for p in SWEEP_POLICIES] == [
        "const_2x", "const_5x", "const_10x", "const_15x", "const_50x", "risk_aware", "ultra_safe",
    ]


def test_const_leverage(monday_entry):
    record = make_record(monday_entry, high_risk=True, regime_down=True)
    assert resolve_leverage(ConstLeverage(10.0), record) == 10.0


@pytest.mark.parametrize(
    "regime_down,sl_prob,expected",
    [
        (False, None, 5.0),
        (False, 0.59, 5.0),
        (False, 0.6, 2.0),
        (True, 0.3, 2.0),
        (True, 0.7, 1.0),
    ],
)
def test_risk_aware_leverage(monday_entry, regime_down, sl_prob, expected):
    record = make_record(monday_entry, regime_down=regime_down, sl_prob=sl_prob)
    assert resolve_leverage(RiskAwareLeverage(), record) == expected


def test_ultra_safe_skips_risky_days(monday_entry):
    policy = UltraSafeLeverage()
    assert resolve_leverage(policy, make_record(monday_entry)) == 3.0
    assert resolve_leverage(policy, make_record(monday_entry, high_risk=True)) is None
    assert resolve_leverage(policy, make_record(monday_entry, regime_down=True)) is None


def test_invalid_resolved_leverage(monday_entry):
    with pytest.raises(ConfigurationError):
        resolve_leverage(ConstLeverage(0.5), make_record(monday_entry))
    with pytest.raises(ConfigurationError):
        resolve_leverage("const_5", make_record(monday_entry))


@pytest.mark.parametrize(
    "spec,expected",
    [
        ("const_5", ConstLeverage(5.0)),
        ("CONST_15x", ConstLeverage(15.0)),
        (" const_2.5 ", ConstLeverage(2.5)),
        ("risk_aware", RiskAwareLeverage()),
        ("ultra_safe", UltraSafeLeverage()),
    ],
)
def test_parse_policy(spec, expected):
    assert parse_policy(spec) == expected


@pytest.mark.parametrize("spec", ["const_", "const_abc", "const_0.5", "const_300", "martingale"])
def test_parse_policy_errors(spec):
    with pytest.raises(ConfigurationError):
        parse_policy(spec)
