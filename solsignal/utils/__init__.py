"""Utility modules: time contract, error taxonomy and logging."""

from .exceptions import (
    SolSignalError,
    TemporalContractError,
    DataQualityError,
    LeakageBoundaryError,
    ConfigurationError,
)
from .logger import get_logger, get_backtester_logger
from .time_contract import (
    EntryInstant,
    BaselineExit,
    EntryDayKey,
    ExitDayKey,
    compute_baseline_exit,
    day_key_of,
    ensure_utc,
    entry_for_trading_day,
    is_morning,
    is_trading_day,
    try_compute_baseline_exit,
    try_make_entry_instant,
)

__all__ = [
    'SolSignalError',
    'TemporalContractError',
    'DataQualityError',
    'LeakageBoundaryError',
    'ConfigurationError',
    'get_logger',
    'get_backtester_logger',
    'EntryInstant',
    'BaselineExit',
    'EntryDayKey',
    'ExitDayKey',
    'compute_baseline_exit',
    'day_key_of',
    'ensure_utc',
    'entry_for_trading_day',
    'is_morning',
    'is_trading_day',
    'try_compute_baseline_exit',
    'try_make_entry_instant',
]
