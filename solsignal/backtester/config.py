"""Frozen configuration threaded through one walk-forward run."""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Optional

from solsignal.backtester.simulator import MarginMode, PnLConfig
from solsignal.models import MODEL_TYPES
from solsignal.predictor.decision_pipeline import OverlayThresholds
from solsignal.processor.min_move import MinMoveConfig
from solsignal.risk.leverage_policy import ConstLeverage, LeveragePolicy, parse_policy
from solsignal.utils.exceptions import ConfigurationError


def parse_margin_mode(value: str) -> MarginMode:
    try:
        return MarginMode(value.strip().lower())
    except ValueError:
        raise ConfigurationError(f"Unknown margin mode {value!r}. Expected 'cross' or 'isolated'") from None


@dataclass(frozen=True)
class BacktestConfig:
    """
    Everything a run depends on. The core never reads global settings.

    Attributes:
        train_window_days: Calendar days of rows the daily model trains on
        test_window_days: Calendar days evaluated per step (cursor advance)
        train_until: Optional cap on every Train boundary (exit-day date)
        leverage_policy: Leverage policy of the PnL simulation
        margin_mode: Cross or Isolated
    """
    train_window_days: int = 260
    test_window_days: int = 60
    train_until: Optional[date] = None

    sol_symbol: str = "SOLUSDT"
    btc_symbol: str = "BTCUSDT"

    model_type: str = "lightgbm"
    random_seed: int = 42

    overlay_min_train_samples: int = 80
    overlay_retrain_every: int = 30
    thresholds: OverlayThresholds = field(default_factory=OverlayThresholds)
    micro_min_confidence: float = 0.60
    min_move: MinMoveConfig = field(default_factory=MinMoveConfig)

    leverage_policy: LeveragePolicy = ConstLeverage(5.0)
    margin_mode: MarginMode = MarginMode.CROSS
    daily_tp_pct: float = 0.03
    daily_sl_pct: float = 0.05
    use_stop_loss: bool = True
    use_delayed_stop_loss: bool = True
    use_anti_direction: bool = True
    total_capital: float = 20000.0
    daily_share: float = 0.60
    delayed_share: float = 0.15
    intraday_share: float = 0.25
    daily_position_fraction: float = 1.0
    delayed_position_fraction: float = 0.4
    commission_rate: float = 0.0004
    maintenance_margin: float = 0.004

    @classmethod
    def from_settings(cls, settings, **overrides) -> "BacktestConfig":
        """
        Build from a Settings instance.

        Args:
            settings: config.settings.Settings
            **overrides: Field values that take precedence
        """
        config = cls(
            train_window_days=settings.TRAIN_WINDOW_DAYS,
            test_window_days=settings.TEST_WINDOW_DAYS,
            sol_symbol=settings.SOL_SYMBOL,
            btc_symbol=settings.BTC_SYMBOL,
            model_type=settings.MODEL_TYPE,
            random_seed=settings.RANDOM_SEED,
            overlay_min_train_samples=settings.OVERLAY_MIN_TRAIN_SAMPLES,
            overlay_retrain_every=settings.OVERLAY_RETRAIN_EVERY,
            thresholds=OverlayThresholds(
                sl_risk=settings.SL_RISK_THRESHOLD,
                pullback=settings.PULLBACK_THRESHOLD,
                small=settings.SMALL_THRESHOLD,
            ),
            micro_min_confidence=settings.MICRO_MIN_CONFIDENCE,
            min_move=MinMoveConfig.from_settings(settings),
            leverage_policy=parse_policy(settings.LEVERAGE_POLICY),
            margin_mode=parse_margin_mode(settings.MARGIN_MODE),
            daily_tp_pct=settings.DAILY_TP_PCT,
            daily_sl_pct=settings.DAILY_SL_PCT,
            use_stop_loss=settings.USE_STOP_LOSS,
            use_delayed_stop_loss=settings.USE_DELAYED_STOP_LOSS,
            use_anti_direction=settings.USE_ANTI_DIRECTION,
            total_capital=settings.TOTAL_CAPITAL,
            daily_share=settings.DAILY_BUCKET_SHARE,
            delayed_share=settings.DELAYED_BUCKET_SHARE,
            intraday_share=settings.INTRADAY_BUCKET_SHARE,
            daily_position_fraction=settings.DAILY_POSITION_FRACTION,
            delayed_position_fraction=settings.DELAYED_POSITION_FRACTION,
            commission_rate=settings.COMMISSION_RATE,
            maintenance_margin=settings.MAINTENANCE_MARGIN_RATE,
        )
        return replace(config, **overrides) if overrides else config

    def pnl_config(
        self,
        policy: Optional[LeveragePolicy] = None,
        margin_mode: Optional[MarginMode] = None,
    ) -> PnLConfig:
        """PnL parameters, optionally with another policy or margin mode."""
        return PnLConfig(
            policy=policy if policy is not None else self.leverage_policy,
            margin_mode=margin_mode if margin_mode is not None else self.margin_mode,
            daily_tp_pct=self.daily_tp_pct,
            daily_sl_pct=self.daily_sl_pct,
            use_stop_loss=self.use_stop_loss,
            use_delayed_stop_loss=self.use_delayed_stop_loss,
            use_anti_direction=self.use_anti_direction,
            total_capital=self.total_capital,
            daily_share=self.daily_share,
            delayed_share=self.delayed_share,
            intraday_share=self.intraday_share,
            daily_position_fraction=self.daily_position_fraction,
            delayed_position_fraction=self.delayed_position_fraction,
            commission_rate=self.commission_rate,
            maintenance_margin=self.maintenance_margin,
        )

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: On any inconsistent field
        """
        if self.train_window_days < 1 or self.test_window_days < 1:
            raise ConfigurationError(
                f"Window lengths must be positive, got train={self.train_window_days}, test={self.test_window_days}"
            )
        if self.model_type not in MODEL_TYPES:
            raise ConfigurationError(f"Unknown model type {self.model_type!r}. Expected one of {MODEL_TYPES}")
        if self.overlay_min_train_samples < 1 or self.overlay_retrain_every < 1:
            raise ConfigurationError("Overlay gates must be positive")
        for name in ("sl_risk", "pullback", "small"):
            value = getattr(self.thresholds, name)
            if not 0 < value < 1:
                raise ConfigurationError(f"Overlay threshold {name} must be in (0, 1), got {value}")
        if not 0.5 <= self.micro_min_confidence < 1:
            raise ConfigurationError(f"micro_min_confidence must be in [0.5, 1), got {self.micro_min_confidence}")
        if not 0 <= self.maintenance_margin < 1:
            raise ConfigurationError(f"maintenance_margin must be in [0, 1), got {self.maintenance_margin}")
        self.pnl_config().validate()
