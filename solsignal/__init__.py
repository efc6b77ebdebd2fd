"""Causal walk-forward backtester for a daily SOL trading signal."""

__version__ = "0.1.0"
