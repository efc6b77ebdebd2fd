"""
Leverage policies.

A closed set of variants resolved per decision:
- ConstLeverage: the same leverage every day
- RiskAwareLeverage: de-levers on high SL risk and in the down regime
- UltraSafeLeverage: low fixed leverage, skips high-risk and regime-down days
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from solsignal.predictor.decision_pipeline import DecisionRecord
from solsignal.risk.liquidation import check_leverage
from solsignal.utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class ConstLeverage:
    leverage: float

    @property
    def name(self) -> str:
        return f"const_{self.leverage:g}x"


@dataclass(frozen=True)
class RiskAwareLeverage:
    """
    1x when both the down regime and high SL risk apply, 2x when only one
    does, otherwise the base leverage.
    """
    base_leverage: float = 5.0
    reduced_leverage: float = 2.0
    minimal_leverage: float = 1.0
    sl_threshold: float = 0.6

    @property
    def name(self) -> str:
        return "risk_aware"


@dataclass(frozen=True)
class UltraSafeLeverage:
    leverage: float = 3.0

    @property
    def name(self) -> str:
        return "ultra_safe"


LeveragePolicy = Union[ConstLeverage, RiskAwareLeverage, UltraSafeLeverage]


def _checked(leverage: float, policy) -> float:
    if not leverage >= 1.0:
        raise ConfigurationError(f"Policy {policy} produced invalid leverage {leverage}")
    return float(leverage)


def resolve_leverage(policy: LeveragePolicy, record: DecisionRecord) -> Optional[float]:
    """
    Leverage for one decision.

    Returns:
        Leverage >= 1, or None to skip the day

    Raises:
        ConfigurationError: On an unknown policy or leverage below 1
    """
    if isinstance(policy, ConstLeverage):
        return _checked(policy.leverage, policy)

    if isinstance(policy, RiskAwareLeverage):
        high_sl = record.sl_prob is not None and record.sl_prob >= policy.sl_threshold
        if record.regime_down and high_sl:
            return _checked(policy.minimal_leverage, policy)
        if record.regime_down or high_sl:
            return _checked(policy.reduced_leverage, policy)
        return _checked(policy.base_leverage, policy)

    if isinstance(policy, UltraSafeLeverage):
        if record.high_risk or record.regime_down:
            return None
        return _checked(policy.leverage, policy)

    raise ConfigurationError(f"Unknown leverage policy: {policy!r}")


def policy_leverages(policy: LeveragePolicy) -> Tuple[float, ...]:
    """Every leverage a policy can resolve to."""
    if isinstance(policy, ConstLeverage):
        return (policy.leverage,)
    if isinstance(policy, RiskAwareLeverage):
        return (policy.base_leverage, policy.reduced_leverage, policy.minimal_leverage)
    if isinstance(policy, UltraSafeLeverage):
        return (policy.leverage,)
    raise ConfigurationError(f"Unknown leverage policy: {policy!r}")


def parse_policy(spec: str) -> LeveragePolicy:
    """
    Parse a policy name: "const_<L>" (e.g. "const_5"), "risk_aware" or "ultra_safe".

    Raises:
        ConfigurationError: On an unknown name or invalid constant leverage
    """
    key = spec.strip().lower()
    if key == "risk_aware":
        return RiskAwareLeverage()
    if key == "ultra_safe":
        return UltraSafeLeverage()
    if key.startswith("const_"):
        raw = key[len("const_"):].rstrip("x")
        try:
            leverage = float(raw)
        except ValueError:
            raise ConfigurationError(f"Invalid constant leverage in policy {spec!r}") from None
        check_leverage(leverage)
        return ConstLeverage(leverage)
    raise ConfigurationError(f"Unknown leverage policy {spec!r}. Expected const_<L>, risk_aware or ultra_safe")


SWEEP_POLICIES = (
    ConstLeverage(2.0),
    ConstLeverage(5.0),
    ConstLeverage(10.0),
    ConstLeverage(15.0),
    ConstLeverage(50.0),
    RiskAwareLeverage(),
    UltraSafeLeverage(),
)
