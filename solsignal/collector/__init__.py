"""Candle readers, validation and resampling."""

from .candle_reader import (
    CandleReader,
    CsvCandleReader,
    FrameCandleReader,
    MarketData,
    validate_candles,
)
from .resampler import resample_candles

__all__ = [
    'CandleReader',
    'CsvCandleReader',
    'FrameCandleReader',
    'MarketData',
    'validate_candles',
    'resample_candles',
]
