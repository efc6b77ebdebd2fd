#!/usr/bin/env python3
"""
Causal Walk-Forward Backtest

Trains the daily model and overlays step by step, decides every morning
out-of-sample and replays the decisions through the leveraged PnL engine.

Candles are read from {data_dir}/{SYMBOL}_1m.csv with columns
open_time, open, high, low, close, volume.

Usage:
    python scripts/run_walk_forward.py
    python scripts/run_walk_forward.py --train-days 260 --test-days 60 --policy risk_aware
    python scripts/run_walk_forward.py --sweep --output results/sweep.json
"""

import argparse
import json
import sys
import warnings
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loguru import logger
from tqdm import tqdm

from config.settings import settings
from solsignal.backtester.config import BacktestConfig, parse_margin_mode
from solsignal.backtester.walk_forward import run_policy_sweep, run_walk_forward
from solsignal.collector.candle_reader import CsvCandleReader
from solsignal.risk.leverage_policy import SWEEP_POLICIES, parse_policy
from solsignal.utils.exceptions import SolSignalError
from solsignal.utils.logger import get_backtester_logger

warnings.filterwarnings("ignore")


def setup_logging(verbose: bool = False, log_file: bool = False) -> None:
    """Configure logging."""
    logger.remove()
    log_level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=log_level,
    )
    if log_file:
        get_backtester_logger(log_level, enable_console=False)


def build_config(args: argparse.Namespace) -> BacktestConfig:
    overrides = {}
    if args.train_days is not None:
        overrides["train_window_days"] = args.train_days
    if args.test_days is not None:
        overrides["test_window_days"] = args.test_days
    if args.train_until:
        overrides["train_until"] = date.fromisoformat(args.train_until)
    if args.model_type:
        overrides["model_type"] = args.model_type
    if args.policy:
        overrides["leverage_policy"] = parse_policy(args.policy)
    if args.margin_mode:
        overrides["margin_mode"] = parse_margin_mode(args.margin_mode)
    if args.no_anti_direction:
        overrides["use_anti_direction"] = False
    return BacktestConfig.from_settings(settings, **overrides)


def print_summary(summary) -> None:
    cls = summary.classification
    perf = summary.performance
    pnl = summary.pnl

    print("\n" + "=" * 60)
    print("WALK-FORWARD RESULTS")
    print("=" * 60)
    print(f"Rows: {summary.total_rows}  Steps: {len(summary.steps)}  OOS days: {cls.total_days}")
    print(f"Accuracy: {cls.accuracy:.1%}")
    print(f"Predicted: {cls.predicted_counts}  True: {cls.true_counts}")
    print(f"High-risk days: {cls.high_risk_days}  Delayed requests: {cls.delayed_requests} "
          f"(executed {cls.delayed_executed})")
    print("-" * 60)
    print(f"Policy: {pnl.policy_name}  Margin: {pnl.margin_mode.value}")
    print(f"Trades: {perf.total_trades}  Win rate: {perf.win_rate:.1%}  PF: {perf.profit_factor:.2f}")
    print(f"PnL: {pnl.total_pnl_pct:+.2f}%  Max DD: {pnl.max_drawdown_pct:.2f}%  "
          f"Withdrawn: ${pnl.withdrawn_total:,.2f}")
    print(f"Liquidations: {perf.liquidations}  Account dead: {pnl.account_dead}")
    print("=" * 60)


def run_sweep(config: BacktestConfig, reader: CsvCandleReader) -> dict:
    """Decide once, then replay under every policy and margin mode."""
    sweep = run_policy_sweep(config, reader, policies=tqdm(SWEEP_POLICIES, desc="Sweep"))
    results = {f"{policy}/{mode}": result.get_summary() for (policy, mode), result in sweep.items()}

    print("\n" + "=" * 60)
    print(f"{'Policy':<16} {'Mode':<10} {'Trades':>7} {'PnL %':>9} {'DD %':>7} {'Dead':>5}")
    print("-" * 60)
    for key, s in results.items():
        print(f"{s['policy']:<16} {s['margin_mode']:<10} {s['trades']:>7} "
              f"{s['total_pnl_pct']:>+9.2f} {s['max_drawdown_pct']:>7.2f} {str(s['account_dead']):>5}")
    print("=" * 60)
    return results


def main():
    parser = argparse.ArgumentParser(description="Causal Walk-Forward Backtest")
    parser.add_argument('--data-dir', default=settings.DATA_DIR, help='Directory with candle CSV files')
    parser.add_argument('--train-days', type=int, help='Training window size in days')
    parser.add_argument('--test-days', type=int, help='Test window size in days')
    parser.add_argument('--train-until', help='Cap every Train boundary at this exit day (YYYY-MM-DD)')
    parser.add_argument('--model-type', choices=['xgboost', 'lightgbm'])
    parser.add_argument('--policy', help='Leverage policy: const_<L>, risk_aware or ultra_safe')
    parser.add_argument('--margin-mode', choices=['cross', 'isolated'])
    parser.add_argument('--no-anti-direction', action='store_true')
    parser.add_argument('--sweep', action='store_true', help='Run every policy in both margin modes')
    parser.add_argument('--output', help='Write results as JSON to this path')
    parser.add_argument('--verbose', '-v', action='store_true')
    parser.add_argument('--log-file', action='store_true', help='Also write rotating logs to LOG_DIR')
    args = parser.parse_args()

    setup_logging(args.verbose, args.log_file)

    try:
        config = build_config(args)
        config.validate()
        reader = CsvCandleReader(args.data_dir)

        if args.sweep:
            payload = run_sweep(config, reader)
        else:
            summary = run_walk_forward(config, reader)
            print_summary(summary)
            payload = summary.to_dict()
    except SolSignalError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        logger.info(f"Results saved to {output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
