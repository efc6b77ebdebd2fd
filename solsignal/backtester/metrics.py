"""
Performance metrics for a walk-forward backtest.

- Classification: accuracy and confusion matrix of out-of-sample predictions
- Trading: win rate, profit factor, Sharpe-like ratio, drawdown, exit reasons
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, confusion_matrix

from solsignal.backtester.simulator import PnLTrade
from solsignal.predictor.decision_pipeline import DecisionRecord
from solsignal.processor.rows import LABEL_DOWN, LABEL_FLAT, LABEL_NAMES, LABEL_UP


CLASS_ORDER = [LABEL_DOWN, LABEL_FLAT, LABEL_UP]


@dataclass
class ClassificationMetrics:
    total_days: int = 0
    accuracy: float = 0.0
    confusion: List[List[int]] = field(default_factory=lambda: [[0] * 3 for _ in range(3)])
    predicted_counts: Dict[str, int] = field(default_factory=dict)
    true_counts: Dict[str, int] = field(default_factory=dict)
    directional_days: int = 0
    high_risk_days: int = 0
    delayed_requests: Dict[str, int] = field(default_factory=dict)
    delayed_executed: int = 0

    @property
    def distinct_predicted_classes(self) -> int:
        return sum(1 for v in self.predicted_counts.values() if v > 0)

    def to_dict(self) -> dict:
        return {
            "total_days": self.total_days,
            "accuracy": self.accuracy,
            "confusion": self.confusion,
            "predicted_counts": dict(self.predicted_counts),
            "true_counts": dict(self.true_counts),
            "directional_days": self.directional_days,
            "high_risk_days": self.high_risk_days,
            "delayed_requests": dict(self.delayed_requests),
            "delayed_executed": self.delayed_executed,
        }

    def __repr__(self) -> str:
        return (
            f"ClassificationMetrics(days={self.total_days}, accuracy={self.accuracy:.1%}, "
            f"predicted={self.predicted_counts})"
        )


def calculate_classification_metrics(records: Sequence[DecisionRecord]) -> ClassificationMetrics:
    """
    Accuracy and confusion matrix of the predicted daily class.

    Rows of the confusion matrix are true classes, columns predicted ones,
    both in (down, flat, up) order.
    """
    metrics = ClassificationMetrics()
    if not records:
        return metrics

    y_true = np.array([r.true_label for r in records])
    y_pred = np.array([r.predicted_class for r in records])

    metrics.total_days = len(records)
    metrics.accuracy = float(accuracy_score(y_true, y_pred))
    metrics.confusion = confusion_matrix(y_true, y_pred, labels=CLASS_ORDER).tolist()
    metrics.predicted_counts = {LABEL_NAMES[c]: int((y_pred == c).sum()) for c in CLASS_ORDER}
    metrics.true_counts = {LABEL_NAMES[c]: int((y_true == c).sum()) for c in CLASS_ORDER}
    metrics.directional_days = sum(1 for r in records if r.has_direction)
    metrics.high_risk_days = sum(1 for r in records if r.high_risk)
    for r in records:
        if r.delayed_source is not None:
            metrics.delayed_requests[r.delayed_source] = metrics.delayed_requests.get(r.delayed_source, 0) + 1
            if r.delayed_executed:
                metrics.delayed_executed += 1
    return metrics


@dataclass
class PerformanceMetrics:
    """
    Trade-level performance metrics.

    Returns are net returns on margin, in percent.
    """
    # Basic metrics
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    # Return metrics
    total_pnl: float = 0.0
    avg_return_pct: float = 0.0
    avg_win_pct: float = 0.0
    avg_loss_pct: float = 0.0
    best_trade_pct: float = 0.0
    worst_trade_pct: float = 0.0

    # Risk metrics
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown_pct: float = 0.0

    # Trade characteristics
    tp_rate: float = 0.0
    sl_rate: float = 0.0
    close_rate: float = 0.0
    liquidations: int = 0
    trades_by_source: Dict[str, int] = field(default_factory=dict)
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    # Time period
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # Trade rate
    total_predictions: int = 0
    trade_rate: float = 0.0

    def to_dict(self) -> dict:
        """Convert metrics to dictionary."""
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_pnl": self.total_pnl,
            "avg_return_pct": self.avg_return_pct,
            "avg_win_pct": self.avg_win_pct,
            "avg_loss_pct": self.avg_loss_pct,
            "best_trade_pct": self.best_trade_pct,
            "worst_trade_pct": self.worst_trade_pct,
            "profit_factor": self.profit_factor,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown_pct": self.max_drawdown_pct,
            "tp_rate": self.tp_rate,
            "sl_rate": self.sl_rate,
            "close_rate": self.close_rate,
            "liquidations": self.liquidations,
            "trades_by_source": dict(self.trades_by_source),
            "max_consecutive_wins": self.max_consecutive_wins,
            "max_consecutive_losses": self.max_consecutive_losses,
            "total_predictions": self.total_predictions,
            "trade_rate": self.trade_rate,
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"PerformanceMetrics(trades={self.total_trades}, "
            f"win_rate={self.win_rate:.1%}, pnl={self.total_pnl:.2f}, "
            f"sharpe={self.sharpe_ratio:.2f}, max_dd={self.max_drawdown_pct:.2f}%)"
        )


def calculate_metrics(
    trades: Sequence[PnLTrade],
    total_predictions: Optional[int] = None,
    max_drawdown_pct: Optional[float] = None,
) -> PerformanceMetrics:
    """
    Calculate performance metrics from settled trades.

    Args:
        trades: Trades in settlement order
        total_predictions: Number of decision days (for trade rate)
        max_drawdown_pct: Bucket drawdown from the simulator; if omitted,
            drawdown is measured on cumulative trade returns

    Returns:
        PerformanceMetrics object
    """
    metrics = PerformanceMetrics()
    if total_predictions:
        metrics.total_predictions = total_predictions

    if not trades:
        return metrics

    # Basic counts
    metrics.total_trades = len(trades)
    wins = [t for t in trades if t.is_win]
    losses = [t for t in trades if not t.is_win]
    metrics.winning_trades = len(wins)
    metrics.losing_trades = len(losses)
    metrics.win_rate = metrics.winning_trades / metrics.total_trades

    # Return metrics
    returns = np.array([t.net_return * 100.0 for t in trades])
    metrics.total_pnl = float(sum(t.pnl - t.commission for t in trades))
    metrics.avg_return_pct = float(returns.mean())
    metrics.avg_win_pct = float(np.mean([t.net_return * 100.0 for t in wins])) if wins else 0.0
    metrics.avg_loss_pct = float(np.mean([t.net_return * 100.0 for t in losses])) if losses else 0.0
    metrics.best_trade_pct = float(returns.max())
    metrics.worst_trade_pct = float(returns.min())

    # Profit factor
    gross_profit = sum(t.pnl - t.commission for t in wins)
    gross_loss = abs(sum(t.pnl - t.commission for t in losses))
    metrics.profit_factor = gross_profit / gross_loss if gross_loss > 0 else float("inf")

    # Sharpe-like ratio per trade
    if len(returns) > 1:
        std = np.std(returns, ddof=1)
        metrics.sharpe_ratio = float(returns.mean() / std) if std > 0 else 0.0

    # Drawdown
    if max_drawdown_pct is not None:
        metrics.max_drawdown_pct = max_drawdown_pct
    else:
        cumulative = np.cumsum(returns)
        running_max = np.maximum.accumulate(np.concatenate([[0.0], cumulative]))[1:]
        metrics.max_drawdown_pct = float(abs((cumulative - running_max).min()))

    # Exit reasons
    reasons = [t.exit_reason for t in trades]
    metrics.tp_rate = reasons.count("tp") / metrics.total_trades
    metrics.sl_rate = reasons.count("sl") / metrics.total_trades
    metrics.close_rate = reasons.count("close") / metrics.total_trades
    metrics.liquidations = sum(1 for t in trades if t.is_real_liquidation)
    for t in trades:
        metrics.trades_by_source[t.source] = metrics.trades_by_source.get(t.source, 0) + 1

    # Consecutive wins/losses
    current_streak = 0
    current_type = None
    for trade in trades:
        kind = "win" if trade.is_win else "loss"
        current_streak = current_streak + 1 if kind == current_type else 1
        current_type = kind
        if kind == "win":
            metrics.max_consecutive_wins = max(metrics.max_consecutive_wins, current_streak)
        else:
            metrics.max_consecutive_losses = max(metrics.max_consecutive_losses, current_streak)

    # Time period
    metrics.start_time = min(t.entry_time for t in trades)
    metrics.end_time = max(t.exit_time for t in trades)

    if total_predictions:
        metrics.trade_rate = metrics.total_trades / total_predictions

    return metrics
