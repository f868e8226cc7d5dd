"""
Tests for the cross-signal analysis helpers.
"""
import pytest

from sigtest import analysis
from sigtest.backtester.results import BacktestResult, StrategyOutcome
from sigtest.signal import Direction


def make_result(signal_id, pnls, direction=Direction.LONG):
    outcomes = [
        StrategyOutcome(strategy=name, exit_price=100.0 + pnl, pnl_pct=pnl)
        for name, pnl in pnls.items()
    ]
    best = max(outcomes, key=lambda o: o.pnl_pct)
    return BacktestResult(
        signal_id=signal_id,
        instrument_id="bitcoin",
        direction=direction,
        entry_price=100.0,
        outcomes=outcomes,
        best_strategy=best.strategy,
        best_exit_price=best.exit_price,
        best_pnl_pct=best.pnl_pct,
    )


@pytest.fixture
def sample_results():
    return [
        make_result("s1", {"Trailing Stop": 8.0, "SMA10": 4.0, "Dynamic TP/SL": 10.0}),
        make_result("s2", {"Trailing Stop": -5.0, "SMA10": -5.0, "Dynamic TP/SL": -5.0}),
        make_result("s3", {"Trailing Stop": 12.0, "Dynamic TP/SL": 10.0}),
    ]


def test_compute_confidence_interval():
    mean, lower, upper = analysis.compute_confidence_interval([1.0, 2.0, 3.0, 4.0])
    assert mean == pytest.approx(2.5)
    assert lower < mean < upper
    assert mean - lower == pytest.approx(upper - mean)


def test_compute_confidence_interval_small_samples():
    assert analysis.compute_confidence_interval([7.0]) == (7.0, 7.0, 7.0)
    assert analysis.compute_confidence_interval([]) == (0.0, 0.0, 0.0)


def test_strategy_summary(sample_results):
    summary = analysis.strategy_summary(sample_results)

    assert list(summary.index) == ["Trailing Stop", "SMA10", "Dynamic TP/SL"]
    assert summary.loc["Trailing Stop", "exits"] == 3
    assert summary.loc["SMA10", "exits"] == 2
    assert summary.loc["Trailing Stop", "mean_pnl"] == pytest.approx(5.0)
    assert summary.loc["Trailing Stop", "win_rate"] == pytest.approx(2 / 3)
    assert summary.loc["SMA10", "win_rate"] == pytest.approx(0.5)
    # s2 is a three-way tie, won by the first strategy
    assert summary.loc["Trailing Stop", "times_best"] == 2
    assert summary.loc["Dynamic TP/SL", "times_best"] == 1
    assert summary.loc["SMA10", "times_best"] == 0


def test_strategy_summary_empty():
    summary = analysis.strategy_summary([])
    assert summary.empty
    assert "mean_pnl" in summary.columns


def test_account_pnl(sample_results):
    accounts = {"s1": "alpha_calls", "s2": "alpha_calls", "s3": "bear_desk"}
    totals = analysis.account_pnl(sample_results, accounts)

    assert totals.loc["alpha_calls", "total_pnl"] == pytest.approx(5.0)
    assert totals.loc["alpha_calls", "signals"] == 2
    assert totals.loc["bear_desk", "total_pnl"] == pytest.approx(12.0)


def test_account_pnl_skips_unknown_accounts(sample_results):
    totals = analysis.account_pnl(sample_results, {"s3": "bear_desk"})
    assert list(totals.index) == ["bear_desk"]
    assert analysis.account_pnl(sample_results, {}).empty


def test_account_impact_factors(sample_results):
    accounts = {"s1": "alpha_calls", "s2": "alpha_calls", "s3": "bear_desk"}
    factors = analysis.account_impact_factors(sample_results, accounts)

    # alpha_calls: average 2.5% -> raw 1.025 -> 35.65
    assert factors["alpha_calls"] == 36.0
    # bear_desk: average 12% -> raw 1.12 -> 41.92
    assert factors["bear_desk"] == 42.0
