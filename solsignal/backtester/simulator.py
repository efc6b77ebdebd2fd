"""
Leveraged PnL simulator for daily decisions.

Replays every DecisionRecord against SOL minute bars:
- Daily trade: entry at the morning price, TP/SL scan over [entry, baseline exit),
  close at the last minute otherwise
- Delayed trade: filled at the overlay's retracement price, exits from the
  resolved intraday outcome
- Liquidation: theoretical isolated liquidation price, checked minute by minute
- Capital buckets: daily and delayed sleeves, Cross or Isolated margin

Tracks individual trades, bucket equity and anti-direction statistics.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from solsignal.backtester.intraday import IntradayResult
from solsignal.predictor.decision_pipeline import DecisionRecord
from solsignal.processor.bar_series import BarSeries, BarWindow
from solsignal.processor.rows import LABEL_NAMES
from solsignal.risk.leverage_policy import ConstLeverage, LeveragePolicy, policy_leverages, resolve_leverage
from solsignal.risk.liquidation import (
    MAINTENANCE_MARGIN_RATE,
    check_leverage,
    liquidation_distance,
    liquidation_price,
)
from solsignal.utils.exceptions import ConfigurationError, DataQualityError
from solsignal.utils.time_contract import compute_baseline_exit


# Anti-direction guards
ANTI_MIN_MOVE_LOW = 0.005
ANTI_MIN_MOVE_HIGH = 0.12
ANTI_LIQ_MULTIPLE = 2.0

BUCKET_DAILY = "daily"
BUCKET_DELAYED = "delayed"
BUCKET_INTRADAY = "intraday"


class MarginMode(Enum):
    CROSS = "cross"
    ISOLATED = "isolated"


@dataclass(frozen=True)
class PnLConfig:
    """
    Execution parameters of one simulation.

    Attributes:
        policy: Leverage policy
        margin_mode: Cross or Isolated
        daily_tp_pct: Daily take profit distance
        daily_sl_pct: Daily stop loss distance
        use_stop_loss: Disable for TP-or-timed-close mode
        use_delayed_stop_loss: Honour SL-first outcomes of delayed trades
        use_anti_direction: Enable the anti-direction overlay
    """
    policy: LeveragePolicy = ConstLeverage(5.0)
    margin_mode: MarginMode = MarginMode.CROSS
    daily_tp_pct: float = 0.03
    daily_sl_pct: float = 0.05
    use_stop_loss: bool = True
    use_delayed_stop_loss: bool = True
    use_anti_direction: bool = False
    total_capital: float = 20000.0
    daily_share: float = 0.60
    delayed_share: float = 0.15
    intraday_share: float = 0.25
    daily_position_fraction: float = 1.0
    delayed_position_fraction: float = 0.4
    commission_rate: float = 0.0004
    maintenance_margin: float = MAINTENANCE_MARGIN_RATE

    def validate(self) -> None:
        """Raise ConfigurationError on inconsistent parameters."""
        if self.total_capital <= 0:
            raise ConfigurationError(f"total_capital must be positive, got {self.total_capital}")
        shares = (self.daily_share, self.delayed_share, self.intraday_share)
        if any(s < 0 for s in shares) or sum(shares) > 1.0 + 1e-9:
            raise ConfigurationError(f"Bucket shares must be >= 0 and sum to <= 1, got {shares}")
        for name in ("daily_position_fraction", "delayed_position_fraction"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ConfigurationError(f"{name} must be in (0, 1], got {value}")
        if self.daily_tp_pct <= 0 or self.daily_sl_pct <= 0:
            raise ConfigurationError(
                f"Daily TP/SL must be positive, got tp={self.daily_tp_pct}, sl={self.daily_sl_pct}"
            )
        if not 0 <= self.commission_rate < 0.01:
            raise ConfigurationError(f"commission_rate out of range: {self.commission_rate}")
        if not isinstance(self.margin_mode, MarginMode):
            raise ConfigurationError(f"Unknown margin mode {self.margin_mode!r}")
        for leverage in policy_leverages(self.policy):
            check_leverage(leverage, self.maintenance_margin)


@dataclass
class CapitalBucket:
    """Capital sleeve. Mutated only by PnLSimulator.settle."""
    name: str
    base_capital: float
    equity: float = 0.0
    withdrawn: float = 0.0
    peak_visible_equity: float = 0.0
    max_drawdown: float = 0.0
    is_dead: bool = False

    def __post_init__(self):
        if self.base_capital < 0:
            raise ConfigurationError(f"Bucket {self.name}: negative base capital {self.base_capital}")
        self.equity = self.base_capital
        self.peak_visible_equity = self.base_capital

    @property
    def visible_equity(self) -> float:
        return self.equity + self.withdrawn

    def update_drawdown(self) -> None:
        visible = self.visible_equity
        self.peak_visible_equity = max(self.peak_visible_equity, visible)
        if self.peak_visible_equity > 1e-9:
            dd = (self.peak_visible_equity - visible) / self.peak_visible_equity
            self.max_drawdown = max(self.max_drawdown, dd)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "base_capital": float(self.base_capital),
            "equity": float(self.equity),
            "withdrawn": float(self.withdrawn),
            "max_drawdown": float(self.max_drawdown),
            "is_dead": bool(self.is_dead),
        }


@dataclass
class PnLTrade:
    """
    One settled position.

    Attributes:
        source: "daily", "delayed_A" or "delayed_B"
        exit_reason: "tp", "sl", "liquidation" or "close"
        is_real_liquidation: The minute path crossed the liquidation price
        liq_price: Theoretical liquidation price
        liq_price_simulated: Price the exit was capped at, if any
        mae / mfe: Maximum adverse / favourable excursion up to exit
    """
    entry_time: datetime
    exit_time: datetime
    source: str
    bucket: str
    go_long: bool
    leverage: float
    entry_price: float
    exit_price: float
    margin: float
    notional: float
    gross_return: float
    net_return: float
    commission: float
    pnl: float
    exit_reason: str
    is_liquidated: bool
    is_real_liquidation: bool
    liq_price: float
    liq_price_simulated: Optional[float]
    mae: float
    mfe: float
    equity_after: float
    anti_direction: bool = False

    @property
    def is_win(self) -> bool:
        return self.pnl - self.commission > 0

    def to_dict(self) -> dict:
        """Convert trade to dictionary with native Python types."""
        return {
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "source": self.source,
            "bucket": self.bucket,
            "direction": "long" if self.go_long else "short",
            "leverage": float(self.leverage),
            "entry_price": float(self.entry_price),
            "exit_price": float(self.exit_price),
            "margin": float(self.margin),
            "notional": float(self.notional),
            "gross_return_pct": round(self.gross_return * 100.0, 4),
            "net_return_pct": round(self.net_return * 100.0, 4),
            "commission": round(self.commission, 4),
            "pnl": float(self.pnl),
            "exit_reason": self.exit_reason,
            "is_liquidated": bool(self.is_liquidated),
            "is_real_liquidation": bool(self.is_real_liquidation),
            "liq_price": float(self.liq_price),
            "liq_price_simulated": None if self.liq_price_simulated is None else float(self.liq_price_simulated),
            "mae_pct": round(self.mae * 100.0, 4),
            "mfe_pct": round(self.mfe * 100.0, 4),
            "equity_after": round(self.equity_after, 2),
            "anti_direction": bool(self.anti_direction),
            "is_win": bool(self.is_win),
        }


@dataclass
class AntiDirectionStats:
    checked: int = 0
    applied: int = 0
    by_predicted_class: Dict[str, int] = field(default_factory=dict)
    by_leverage: Dict[float, int] = field(default_factory=dict)
    min_move_sum: float = 0.0
    min_move_min: Optional[float] = None
    min_move_max: Optional[float] = None

    def record(self, predicted_class: int, leverage: float, min_move: float) -> None:
        self.applied += 1
        label = LABEL_NAMES[predicted_class]
        self.by_predicted_class[label] = self.by_predicted_class.get(label, 0) + 1
        self.by_leverage[leverage] = self.by_leverage.get(leverage, 0) + 1
        self.min_move_sum += min_move
        self.min_move_min = min_move if self.min_move_min is None else min(self.min_move_min, min_move)
        self.min_move_max = min_move if self.min_move_max is None else max(self.min_move_max, min_move)

    @property
    def min_move_avg(self) -> float:
        return self.min_move_sum / self.applied if self.applied else 0.0


@dataclass
class PnLResult:
    policy_name: str
    margin_mode: MarginMode
    total_capital: float
    trades: List[PnLTrade] = field(default_factory=list)
    buckets: Dict[str, CapitalBucket] = field(default_factory=dict)
    anti_direction: AntiDirectionStats = field(default_factory=AntiDirectionStats)
    skipped_days: int = 0
    had_liquidation: bool = False
    account_dead: bool = False

    @property
    def final_equity(self) -> float:
        return sum(b.equity for b in self.buckets.values())

    @property
    def withdrawn_total(self) -> float:
        return sum(b.withdrawn for b in self.buckets.values())

    @property
    def total_pnl_pct(self) -> float:
        return (self.final_equity + self.withdrawn_total - self.total_capital) / self.total_capital * 100.0

    @property
    def max_drawdown_pct(self) -> float:
        return max((b.max_drawdown for b in self.buckets.values()), default=0.0) * 100.0

    @property
    def trades_by_source(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for t in self.trades:
            counts[t.source] = counts.get(t.source, 0) + 1
        return counts

    def get_trades_df(self) -> pd.DataFrame:
        """Convert trades to DataFrame."""
        if not self.trades:
            return pd.DataFrame()
        return pd.DataFrame([t.to_dict() for t in self.trades])

    def get_summary(self) -> dict:
        """Get summary statistics."""
        return {
            "policy": self.policy_name,
            "margin_mode": self.margin_mode.value,
            "trades": len(self.trades),
            "trades_by_source": self.trades_by_source,
            "total_pnl_pct": round(self.total_pnl_pct, 2),
            "max_drawdown_pct": round(self.max_drawdown_pct, 2),
            "withdrawn": round(self.withdrawn_total, 2),
            "final_equity": round(self.final_equity, 2),
            "liquidations": sum(1 for t in self.trades if t.is_real_liquidation),
            "had_liquidation": self.had_liquidation,
            "account_dead": self.account_dead,
            "skipped_days": self.skipped_days,
            "anti_direction_checked": self.anti_direction.checked,
            "anti_direction_applied": self.anti_direction.applied,
        }


@dataclass(frozen=True)
class ExitScan:
    exit_index: int
    exit_price: float
    exit_reason: str
    is_real_liquidation: bool
    mae: float
    mfe: float


def _excursions(window: BarWindow, entry_price: float, go_long: bool) -> Tuple[float, float]:
    if window.empty:
        return 0.0, 0.0
    if go_long:
        adverse = (entry_price - window.low.min()) / entry_price
        favorable = (window.high.max() - entry_price) / entry_price
    else:
        adverse = (window.high.max() - entry_price) / entry_price
        favorable = (entry_price - window.low.min()) / entry_price
    return max(0.0, float(adverse)), max(0.0, float(favorable))


def scan_exit(
    window: BarWindow,
    entry_price: float,
    go_long: bool,
    tp_price: Optional[float],
    sl_price: Optional[float],
    liq_price: Optional[float],
) -> ExitScan:
    """
    First level touched in a minute window.

    In one minute an adverse level beats TP. Between SL and liquidation the
    level closer to entry fills first. With no touch the trade closes at the
    last close of the window.

    Raises:
        DataQualityError: On an empty window
    """
    if window.empty:
        raise DataQualityError(f"Exit scan needs minute bars (entry price {entry_price})")

    n = len(window)
    never = np.zeros(n, dtype=bool)
    if go_long:
        tp_hits = window.high >= tp_price if tp_price is not None else never
        sl_hits = window.low <= sl_price if sl_price is not None else never
        liq_hits = window.low <= liq_price if liq_price is not None else never
    else:
        tp_hits = window.low <= tp_price if tp_price is not None else never
        sl_hits = window.high >= sl_price if sl_price is not None else never
        liq_hits = window.high >= liq_price if liq_price is not None else never

    any_hit = tp_hits | sl_hits | liq_hits
    if not any_hit.any():
        mae, mfe = _excursions(window, entry_price, go_long)
        return ExitScan(n - 1, float(window.close[-1]), "close", False, mae, mfe)

    i = int(np.argmax(any_hit))
    mae, mfe = _excursions(window.sub(0, i + 1), entry_price, go_long)

    if sl_hits[i] and liq_hits[i]:
        sl_first = sl_price >= liq_price if go_long else sl_price <= liq_price
        if sl_first:
            return ExitScan(i, float(sl_price), "sl", False, mae, mfe)
        return ExitScan(i, float(liq_price), "liquidation", True, mae, mfe)
    if liq_hits[i]:
        return ExitScan(i, float(liq_price), "liquidation", True, mae, mfe)
    if sl_hits[i]:
        return ExitScan(i, float(sl_price), "sl", False, mae, mfe)
    return ExitScan(i, float(tp_price), "tp", False, mae, mfe)


def first_hit_index(window: BarWindow, go_long: bool, level: float, take_profit: bool) -> int:
    """Index of the first minute touching `level`, or -1."""
    if take_profit:
        hits = window.high >= level if go_long else window.low <= level
    else:
        hits = window.low <= level if go_long else window.high >= level
    if not hits.any():
        return -1
    return int(np.argmax(hits))


class PnLSimulator:
    """
    Sequential settlement of decision records into capital buckets.

    Records are processed in ascending entry order. Trading stops once the
    account is dead (Cross: any bucket died; Isolated: every bucket died).
    """

    def __init__(self, config: PnLConfig):
        config.validate()
        self.config = config

    def _init_buckets(self) -> Dict[str, CapitalBucket]:
        c = self.config
        return {
            BUCKET_DAILY: CapitalBucket(BUCKET_DAILY, c.total_capital * c.daily_share),
            BUCKET_INTRADAY: CapitalBucket(BUCKET_INTRADAY, c.total_capital * c.intraday_share),
            BUCKET_DELAYED: CapitalBucket(BUCKET_DELAYED, c.total_capital * c.delayed_share),
        }

    def should_apply_anti_direction(self, record: DecisionRecord, leverage: float) -> bool:
        """
        Invert the trade when the SL overlay flags high risk and liquidation
        sits at least two MinMoves away.
        """
        if not record.has_direction or not record.high_risk:
            return False
        if not np.isfinite(record.min_move) or record.min_move <= 0:
            raise DataQualityError(f"{record.entry}: anti-direction needs a positive min_move, got {record.min_move}")
        if not ANTI_MIN_MOVE_LOW <= record.min_move <= ANTI_MIN_MOVE_HIGH:
            return False
        distance = liquidation_distance(leverage, self.config.maintenance_margin)
        return distance >= ANTI_LIQ_MULTIPLE * record.min_move

    def _liq_price(self, entry_price: float, go_long: bool, leverage: float) -> Optional[float]:
        price = liquidation_price(entry_price, leverage, go_long, self.config.maintenance_margin)
        # A 1x long cannot be liquidated above zero
        return price if price > 0 else None

    def settle(
        self,
        result: PnLResult,
        bucket: CapitalBucket,
        leverage: float,
        fraction: float,
        go_long: bool,
        entry_price: float,
        exit_price: float,
        is_real_liquidation: bool,
        **trade_fields,
    ) -> PnLTrade:
        """
        Post one trade against a bucket and update its equity.

        Returns:
            The settled PnLTrade
        """
        c = self.config
        liq = liquidation_price(entry_price, leverage, go_long, c.maintenance_margin)

        liq_simulated = liq if is_real_liquidation else None
        # Cap any exit worse than liquidation
        if (go_long and exit_price < liq) or (not go_long and exit_price > liq):
            exit_price = liq
            is_real_liquidation = True
            liq_simulated = liq
            trade_fields["exit_reason"] = "liquidation"

        margin = min(bucket.base_capital * fraction, bucket.equity)
        if margin <= 0:
            raise DataQualityError(f"Bucket {bucket.name} has no equity to open a trade")

        move = (exit_price - entry_price) / entry_price if go_long else (entry_price - exit_price) / entry_price
        notional = margin * leverage
        pnl = move * leverage * margin
        commission = notional * c.commission_rate * 2.0

        died = False
        if c.margin_mode == MarginMode.CROSS:
            if is_real_liquidation:
                new_equity = 0.0
            else:
                new_equity = bucket.equity + pnl - commission
            if new_equity <= 0.0:
                new_equity = 0.0
                died = True
            elif new_equity > bucket.base_capital:
                bucket.withdrawn += new_equity - bucket.base_capital
                new_equity = bucket.base_capital
        else:
            if is_real_liquidation:
                new_equity = max(0.0, bucket.equity - margin - commission)
                died = True
            else:
                new_equity = bucket.equity + pnl - commission
                if new_equity <= 0.0:
                    new_equity = 0.0
                    died = True
                elif new_equity > bucket.base_capital:
                    bucket.withdrawn += new_equity - bucket.base_capital
                    new_equity = bucket.base_capital

        bucket.equity = new_equity
        if died:
            bucket.is_dead = True
            result.had_liquidation = True
            if c.margin_mode == MarginMode.CROSS:
                for other in result.buckets.values():
                    other.is_dead = True
            if all(b.is_dead for b in result.buckets.values() if b.name != BUCKET_INTRADAY):
                result.account_dead = True
        bucket.update_drawdown()

        trade = PnLTrade(
            go_long=go_long,
            leverage=leverage,
            entry_price=entry_price,
            exit_price=exit_price,
            margin=margin,
            notional=notional,
            gross_return=move,
            net_return=(pnl - commission) / margin,
            commission=commission,
            pnl=pnl,
            is_liquidated=is_real_liquidation or died,
            is_real_liquidation=is_real_liquidation,
            liq_price=liq,
            liq_price_simulated=liq_simulated,
            equity_after=bucket.equity,
            bucket=bucket.name,
            **trade_fields,
        )
        result.trades.append(trade)
        if died:
            logger.warning(
                f"Bucket {bucket.name} died at {trade.entry_time:%Y-%m-%d} "
                f"({trade.exit_reason}, {leverage:g}x, {c.margin_mode.value})"
            )
        return trade

    def _daily_trade(
        self,
        result: PnLResult,
        record: DecisionRecord,
        go_long: bool,
        leverage: float,
        window: BarWindow,
        anti: bool,
    ) -> None:
        c = self.config
        bucket = result.buckets[BUCKET_DAILY]
        if bucket.is_dead:
            return
        entry_price = record.entry_price
        tp = entry_price * (1 + c.daily_tp_pct) if go_long else entry_price * (1 - c.daily_tp_pct)
        sl = None
        if c.use_stop_loss:
            sl = entry_price * (1 - c.daily_sl_pct) if go_long else entry_price * (1 + c.daily_sl_pct)

        scan = scan_exit(window, entry_price, go_long, tp, sl, self._liq_price(entry_price, go_long, leverage))
        exit_time = window.time_at(scan.exit_index) if scan.exit_reason != "close" else compute_baseline_exit(record.entry).utc
        self.settle(
            result,
            bucket,
            leverage,
            c.daily_position_fraction,
            go_long,
            entry_price,
            scan.exit_price,
            scan.is_real_liquidation,
            entry_time=record.entry.utc,
            exit_time=exit_time,
            source="daily",
            exit_reason=scan.exit_reason,
            mae=scan.mae,
            mfe=scan.mfe,
            anti_direction=anti,
        )

    def _delayed_trade(self, result: PnLResult, record: DecisionRecord, leverage: float, window: BarWindow) -> None:
        c = self.config
        bucket = result.buckets[BUCKET_DELAYED]
        if bucket.is_dead or bucket.base_capital <= 0:
            return

        go_long = record.go_long
        entry_price = record.delayed_price
        exit_utc = compute_baseline_exit(record.entry).utc
        executed_at = record.delayed_executed_at
        if executed_at < record.entry.utc or executed_at >= exit_utc:
            raise DataQualityError(
                f"{record.entry}: delayed fill {executed_at.isoformat()} outside "
                f"[{record.entry.utc.isoformat()}, {exit_utc.isoformat()})"
            )

        start = int(np.searchsorted(window.open_time_ns, pd.Timestamp(executed_at).value, side="left"))
        path = window.sub(start)
        if path.empty:
            raise DataQualityError(f"{record.entry}: no minute bars after delayed fill at {executed_at.isoformat()}")

        level = None
        reason = "close"
        if record.delayed_result == IntradayResult.TP_FIRST:
            level = entry_price * (1 + record.delayed_tp_pct) if go_long else entry_price * (1 - record.delayed_tp_pct)
            reason = "tp"
        elif record.delayed_result == IntradayResult.SL_FIRST and c.use_delayed_stop_loss:
            level = entry_price * (1 - record.delayed_sl_pct) if go_long else entry_price * (1 + record.delayed_sl_pct)
            reason = "sl"

        if level is not None:
            idx = first_hit_index(path, go_long, level, take_profit=reason == "tp")
            if idx < 0:
                raise DataQualityError(
                    f"{record.entry}: delayed {reason} level {level:.6f} not found in the minute path"
                )
            exit_price, exit_time = level, path.time_at(idx)
            held = path.sub(0, idx + 1)
        else:
            exit_price, exit_time = float(path.close[-1]), exit_utc
            held = path

        liq = self._liq_price(entry_price, go_long, leverage)
        liq_idx = -1 if liq is None else first_hit_index(held, go_long, liq, take_profit=False)
        is_liq = liq_idx >= 0
        if is_liq:
            exit_price, exit_time, reason = liq, held.time_at(liq_idx), "liquidation"
            held = held.sub(0, liq_idx + 1)

        mae, mfe = _excursions(held, entry_price, go_long)
        self.settle(
            result,
            bucket,
            leverage,
            c.delayed_position_fraction,
            go_long,
            entry_price,
            exit_price,
            is_liq,
            entry_time=executed_at,
            exit_time=exit_time,
            source=f"delayed_{record.delayed_source}",
            exit_reason=reason,
            mae=mae,
            mfe=mfe,
        )

    def run(self, records: Sequence[DecisionRecord], minutes: BarSeries) -> PnLResult:
        """
        Simulate all records.

        Args:
            records: Decisions in strictly ascending entry order
            minutes: SOL 1m bars

        Returns:
            PnLResult with trades, buckets and anti-direction stats

        Raises:
            DataQualityError: On unordered records or missing minute data
        """
        c = self.config
        result = PnLResult(
            policy_name=c.policy.name,
            margin_mode=c.margin_mode,
            total_capital=c.total_capital,
            buckets=self._init_buckets(),
        )

        previous = None
        for record in records:
            if previous is not None and not previous.entry < record.entry:
                raise DataQualityError(
                    f"Records must be strictly ascending: {previous.entry} then {record.entry}"
                )
            previous = record

            if result.account_dead:
                break
            if not record.has_direction:
                continue

            leverage = resolve_leverage(c.policy, record)
            if leverage is None:
                result.skipped_days += 1
                continue

            window = minutes.between(record.entry.utc, compute_baseline_exit(record.entry).utc)
            if window.empty or window.open_time_ns[0] != pd.Timestamp(record.entry.utc).value:
                raise DataQualityError(f"{record.entry}: minute window does not start at entry")

            go_long = record.go_long
            anti = False
            if c.use_anti_direction:
                result.anti_direction.checked += 1
                if self.should_apply_anti_direction(record, leverage):
                    anti = True
                    go_long = not go_long
                    result.anti_direction.record(record.predicted_class, leverage, record.min_move)

            self._daily_trade(result, record, go_long, leverage, window, anti)

            if result.account_dead:
                break
            if record.wants_delayed and record.delayed_executed:
                self._delayed_trade(result, record, leverage, window)

        summary = result.get_summary()
        logger.info(
            f"PnL [{summary['policy']}/{summary['margin_mode']}]: trades={summary['trades']}, "
            f"pnl={summary['total_pnl_pct']:+.2f}%, max_dd={summary['max_drawdown_pct']:.2f}%, "
            f"liquidations={summary['liquidations']}"
        )
        if c.use_anti_direction and result.anti_direction.checked:
            stats = result.anti_direction
            logger.info(
                f"Anti-direction: checked={stats.checked}, applied={stats.applied}, "
                f"by_class={stats.by_predicted_class}, by_leverage={stats.by_leverage}, "
                f"avg_min_move={stats.min_move_avg:.4f}"
            )
        return result
