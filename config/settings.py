"""Global configuration settings."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Backtest settings loaded from environment variables."""

    # Data
    DATA_DIR: str = "./data"
    SOL_SYMBOL: str = "SOLUSDT"
    BTC_SYMBOL: str = "BTCUSDT"

    # Walk-forward windows (calendar days)
    TRAIN_WINDOW_DAYS: int = 260
    TEST_WINDOW_DAYS: int = 60

    # Adaptive threshold (MinMove)
    MIN_MOVE_FLOOR: float = 0.015
    MIN_MOVE_CAP: float = 0.08
    MIN_MOVE_EWMA_ALPHA: float = 0.15
    MIN_MOVE_QUANTILE_START: float = 0.6
    MIN_MOVE_QUANTILE_LOW: float = 0.5
    MIN_MOVE_QUANTILE_HIGH: float = 0.8
    MIN_MOVE_QUANTILE_STEP: float = 0.05
    MIN_MOVE_RETUNE_EVERY_DAYS: int = 10
    MIN_MOVE_QUANTILE_WINDOW_DAYS: int = 90
    MIN_MOVE_REGIME_DOWN_MUL: float = 1.2

    # Overlay classifiers
    OVERLAY_MIN_TRAIN_SAMPLES: int = 80
    OVERLAY_RETRAIN_EVERY: int = 30
    SL_RISK_THRESHOLD: float = 0.55
    PULLBACK_THRESHOLD: float = 0.70
    SMALL_THRESHOLD: float = 0.75
    MICRO_MIN_CONFIDENCE: float = 0.60

    # Model Settings
    MODEL_TYPE: str = "lightgbm"  # "lightgbm" or "xgboost"
    RANDOM_SEED: int = 42

    # PnL Settings
    TOTAL_CAPITAL: float = 20000.0
    COMMISSION_RATE: float = 0.0004  # Taker fee per leg
    MAINTENANCE_MARGIN_RATE: float = 0.004
    DAILY_TP_PCT: float = 0.03
    DAILY_SL_PCT: float = 0.05
    USE_STOP_LOSS: bool = True
    USE_DELAYED_STOP_LOSS: bool = True
    USE_ANTI_DIRECTION: bool = True
    DAILY_BUCKET_SHARE: float = 0.60
    INTRADAY_BUCKET_SHARE: float = 0.25  # Reserved sleeve, never traded
    DELAYED_BUCKET_SHARE: float = 0.15
    DAILY_POSITION_FRACTION: float = 1.0
    DELAYED_POSITION_FRACTION: float = 0.4
    LEVERAGE_POLICY: str = "const_5"
    MARGIN_MODE: str = "cross"  # "cross" or "isolated"

    # Logging
    LOG_DIR: str = "./logs"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()
