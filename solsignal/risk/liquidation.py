"""
Isolated-position liquidation math.

With leverage L and maintenance-margin rate m:
    long:  P_liq = entry * (L - 1) / (L * (1 - m))
    short: P_liq = entry * (1 + L) / (L * (1 + m))
"""

from solsignal.utils.exceptions import ConfigurationError, DataQualityError


MAINTENANCE_MARGIN_RATE = 0.004


def check_leverage(leverage: float, maintenance_margin: float = MAINTENANCE_MARGIN_RATE) -> None:
    """
    Reject leverage the liquidation formula cannot price.

    Raises:
        ConfigurationError: If leverage < 1 or 1/L <= m (liquidation at or past entry)
    """
    if not 0 <= maintenance_margin < 1:
        raise ConfigurationError(f"Maintenance margin rate must be in [0, 1), got {maintenance_margin}")
    if not leverage >= 1:
        raise ConfigurationError(f"Leverage must be >= 1, got {leverage}")
    if 1.0 / leverage - maintenance_margin <= 0:
        raise ConfigurationError(
            f"Leverage {leverage:g} leaves no margin above maintenance rate {maintenance_margin:g}"
        )


def _check(entry_price: float, leverage: float, maintenance_margin: float) -> None:
    if not entry_price > 0:
        raise DataQualityError(f"Liquidation price needs a positive entry price, got {entry_price}")
    check_leverage(leverage, maintenance_margin)


def liquidation_price(
    entry_price: float,
    leverage: float,
    go_long: bool,
    maintenance_margin: float = MAINTENANCE_MARGIN_RATE,
) -> float:
    """
    Theoretical liquidation price of a position.

    A 1x long liquidates only at zero; a 1x short at roughly twice the entry.
    """
    _check(entry_price, leverage, maintenance_margin)
    if go_long:
        return entry_price * (leverage - 1.0) / (leverage * (1.0 - maintenance_margin))
    return entry_price * (1.0 + leverage) / (leverage * (1.0 + maintenance_margin))


def liquidation_distance(leverage: float, maintenance_margin: float = MAINTENANCE_MARGIN_RATE) -> float:
    """Adverse move (fraction of entry) that wipes the margin: 1/L - m."""
    _check(1.0, leverage, maintenance_margin)
    return 1.0 / leverage - maintenance_margin
