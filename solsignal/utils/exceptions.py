"""Error taxonomy for the backtest core.

The first three categories are fatal and are never caught inside the core:
they point at look-ahead bugs or corrupted input. Insufficient data is not an
error and is reported through logging instead.
"""


class SolSignalError(Exception):
    """Base class for all backtest errors."""


class TemporalContractError(SolSignalError):
    """Non-UTC instant, weekend entry, exit not after entry, or mixed day-key flavors."""


class DataQualityError(SolSignalError):
    """Non-finite features, non-positive prices, duplicate or non-ascending timestamps."""


class LeakageBoundaryError(SolSignalError):
    """A training sample whose exit lies beyond the train boundary."""


class ConfigurationError(SolSignalError, ValueError):
    """Invalid backtest configuration or leverage."""
