"""
Statistical analysis of backtest results across signals and accounts.
"""
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from sigtest.backtester.results import BacktestResult
from sigtest.metrics import impact_factor


def compute_confidence_interval(
    values: List[float],
    confidence: float = 0.95
) -> Tuple[float, float, float]:
    """
    Computes the confidence interval for a list of values.

    Args:
        values: List of numeric values.
        confidence: Confidence level (default: 0.95 for 95% CI).

    Returns:
        Tuple of (mean, lower_bound, upper_bound).
    """
    if not values or len(values) < 2:
        mean = values[0] if values else 0.0
        return (mean, mean, mean)

    n = len(values)
    mean = np.mean(values)
    std_err = stats.sem(values)

    # t-distribution, since samples per strategy are small
    t_value = stats.t.ppf((1 + confidence) / 2, n - 1)
    margin = t_value * std_err

    return (float(mean), float(mean - margin), float(mean + margin))


def strategy_summary(results: Sequence[BacktestResult], confidence: float = 0.95) -> pd.DataFrame:
    """
    Summarizes each strategy's performance across signals.

    Columns: exits, mean_pnl, ci_lower, ci_upper, win_rate (share of exits
    with positive P&L) and times_best.

    Args:
        results: Backtest results of a batch.
        confidence: Confidence level of the interval.

    Returns:
        pd.DataFrame: One row per strategy, indexed by strategy name, in
        order of first appearance.
    """
    pnls: Dict[str, List[float]] = {}
    best_counts: Dict[str, int] = {}
    for result in results:
        for outcome in result.outcomes:
            pnls.setdefault(outcome.strategy, []).append(outcome.pnl_pct)
        best_counts[result.best_strategy] = best_counts.get(result.best_strategy, 0) + 1

    rows = []
    for name, values in pnls.items():
        mean, lower, upper = compute_confidence_interval(values, confidence)
        rows.append({
            "strategy": name,
            "exits": len(values),
            "mean_pnl": mean,
            "ci_lower": lower,
            "ci_upper": upper,
            "win_rate": sum(1 for v in values if v > 0) / len(values),
            "times_best": best_counts.get(name, 0),
        })
    columns = ["strategy", "exits", "mean_pnl", "ci_lower", "ci_upper", "win_rate", "times_best"]
    return pd.DataFrame(rows, columns=columns).set_index("strategy")


def account_pnl(
    results: Sequence[BacktestResult],
    accounts: Mapping[str, str],
) -> pd.DataFrame:
    """
    Totals the best-strategy P&L per issuing account.

    Args:
        results: Backtest results.
        accounts: Signal id to account handle.

    Returns:
        pd.DataFrame: Indexed by account, with `total_pnl` and `signals`.
    """
    rows = [
        {"account": accounts[r.signal_id], "pnl": r.best_pnl_pct}
        for r in results
        if accounts.get(r.signal_id)
    ]
    if not rows:
        return pd.DataFrame(columns=["total_pnl", "signals"], index=pd.Index([], name="account"))
    df = pd.DataFrame(rows)
    grouped = df.groupby("account")["pnl"].agg(total_pnl="sum", signals="count")
    return grouped


def account_impact_factors(
    results: Sequence[BacktestResult],
    accounts: Mapping[str, str],
    policy: str = "v1",
) -> pd.Series:
    """
    Scores each account with the named impact factor policy.
    """
    totals = account_pnl(results, accounts)
    return pd.Series(
        {account: impact_factor(row.total_pnl, int(row.signals), policy) for account, row in totals.iterrows()},
        name="impact_factor",
        dtype=float,
    )
