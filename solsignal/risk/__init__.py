"""Leverage policies and liquidation math."""

from solsignal.risk.liquidation import liquidation_distance, liquidation_price

__all__ = ['liquidation_distance', 'liquidation_price']
