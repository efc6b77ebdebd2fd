"""Aggregate minute candles into coarser timeframes."""

import pandas as pd


_RULES = {"1h": "1h", "6h": "6h", "1d": "1D"}


def resample_candles(df_1m: pd.DataFrame, timeframe: str) -> pd.DataFrame:
    """
    Resample validated minute bars into complete higher-timeframe bars.

    Buckets are anchored at UTC midnight. Incomplete buckets at either end of
    the series are dropped so every bar covers its full span.

    Args:
        df_1m: Validated minute frame
        timeframe: "1h", "6h" or "1d"

    Returns:
        Frame with the same columns as the input
    """
    if timeframe not in _RULES:
        raise ValueError(f"Unsupported timeframe: {timeframe}")

    indexed = df_1m.set_index("open_time")
    grouped = indexed.resample(_RULES[timeframe], origin="epoch", label="left", closed="left")
    out = grouped.agg(
        {"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"}
    )
    counts = grouped["close"].count()

    expected = int(pd.Timedelta(_RULES[timeframe]) / pd.Timedelta(minutes=1))
    out = out[counts == expected]
    return out.reset_index()[["open_time", "open", "high", "low", "close", "volume"]]
