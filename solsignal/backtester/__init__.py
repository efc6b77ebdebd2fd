"""
Walk-forward backtesting.

Components:
- walk_forward: orchestrator and entry points (run_walk_forward, run_policy_sweep)
- split: Train / OOS partition by baseline-exit day
- simulator: leveraged PnL and liquidation engine
- intraday: hourly TP/SL and delayed-entry evaluators
- metrics: classification and trading metrics
"""
