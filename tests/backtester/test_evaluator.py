"""
Tests for the per-strategy exit evaluators.
"""
from datetime import datetime, timedelta, timezone

import pytest

from sigtest.backtester.evaluator import (
    DynamicTargetRatchetEvaluator,
    MovingAverageEvaluator,
    TrailingStopEvaluator,
    build_evaluator,
)
from sigtest.signal import PricePoint, Signal
from sigtest.strategies import (
    DynamicTargetRatchetConfig,
    MovingAverageCrossConfig,
    TrailingStopConfig,
    WindowType,
)

START = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_series(prices, start=START):
    return [PricePoint(timestamp=start + timedelta(hours=i), price=p) for i, p in enumerate(prices)]


def make_signal(direction="long", entry=100.0, target=110.0, stop=95.0, max_exit=None) -> Signal:
    return Signal(
        signal_id="sig-1",
        instrument_id="bitcoin",
        direction=direction,
        entry_price=entry,
        target1=target,
        stop_loss=stop,
        entry_timestamp=START,
        max_exit_timestamp=max_exit,
    )


def run(evaluator, prices):
    for point in make_series(prices):
        if evaluator.update(point):
            break
    return evaluator


TRAILING = TrailingStopConfig(name="Trailing Stop", trail_fraction=0.01)
RATCHET = DynamicTargetRatchetConfig(name="Dynamic TP/SL")


def test_trailing_stop_long_example():
    """
    TP1 is hit at 111, after which the first price at or below
    111 * 0.99 = 109.89 exits.
    """
    evaluator = run(TrailingStopEvaluator(TRAILING, make_signal()), [100, 105, 111, 108, 104])
    assert evaluator.state.tp1_hit
    assert evaluator.state.peak_price == 111
    assert evaluator.state.exit_price == 108


def test_trailing_stop_short_example():
    """
    For a short, TP1 is hit at 89 and the first price at or above
    89 * 1.01 = 89.89 exits.
    """
    signal = make_signal(direction="short", target=90.0, stop=105.0)
    evaluator = run(TrailingStopEvaluator(TRAILING, signal), [100, 95, 89, 93, 97])
    assert evaluator.state.trough_price == 89
    assert evaluator.state.exit_price == 93


def test_trailing_stop_waits_for_tp1():
    """
    A retracement before TP1 is hit does not exit a gated strategy.
    """
    evaluator = run(TrailingStopEvaluator(TRAILING, make_signal()), [100, 108, 100, 101])
    assert not evaluator.state.tp1_hit
    assert evaluator.state.exit_price is None


def test_stop_loss_takes_priority_over_trailing_exit():
    """
    At 94 both the stop (95) and the trailing condition are met; the stop is
    the exit that is recorded.
    """
    evaluator = run(TrailingStopEvaluator(TRAILING, make_signal()), [100, 112, 94])
    assert evaluator.state.exit_price == 95.0


def test_stop_loss_before_target_exits_at_stop_level():
    """
    A price path that breaches the stop first exits at the stop level, not
    at the breaching price.
    """
    evaluator = run(TrailingStopEvaluator(TRAILING, make_signal()), [100, 97, 93, 120])
    assert evaluator.state.exit_price == 95.0
    assert not evaluator.state.tp1_hit


def test_time_cutoff_dominates():
    """
    With TP1 hit and the trailing condition not yet met, reaching the max
    exit time forces an exit at the price of that tick.
    """
    max_exit = START + timedelta(hours=3)
    evaluator = run(TrailingStopEvaluator(TRAILING, make_signal(max_exit=max_exit)), [100, 111, 110.5, 110.8, 120])
    assert evaluator.state.exit_price == 110.8
    assert evaluator.state.exit_timestamp == max_exit


def test_time_cutoff_dominates_stop_loss():
    """
    The time cutoff is applied before the stop, so the exit is the tick price.
    """
    max_exit = START + timedelta(hours=1)
    evaluator = run(TrailingStopEvaluator(TRAILING, make_signal(max_exit=max_exit)), [100, 90])
    assert evaluator.state.exit_price == 90


def test_exit_is_set_only_once():
    """
    Updates after an exit do not change the exit.
    """
    evaluator = TrailingStopEvaluator(TRAILING, make_signal())
    points = make_series([100, 94, 200, 50])
    assert evaluator.update(points[0]) is False
    assert evaluator.update(points[1]) is True
    for point in points[2:]:
        assert evaluator.update(point) is True
    assert evaluator.state.exit_price == 95.0
    assert evaluator.state.exit_timestamp == points[1].timestamp


def test_sma_exit_below_average():
    """
    SMA(3): the average is available from the third price; the first price
    below it after TP1 exits.
    """
    config = MovingAverageCrossConfig(name="SMA3", window_type=WindowType.SMA, period=3)
    signal = make_signal(target=105.0, stop=90.0)
    evaluator = run(MovingAverageEvaluator(config, signal), [100, 104, 106, 107, 103])
    assert evaluator.state.exit_price == 103
    assert list(evaluator.state.price_window) == [106, 107, 103]
    assert evaluator.state.moving_average == pytest.approx((106 + 107 + 103) / 3)


def test_sma_needs_full_window():
    """
    Without a full window there is no average and therefore no MA exit.
    """
    config = MovingAverageCrossConfig(name="SMA5", window_type=WindowType.SMA, period=5)
    evaluator = run(MovingAverageEvaluator(config, make_signal()), [100, 111, 101])
    assert evaluator.state.tp1_hit
    assert evaluator.state.moving_average is None
    assert evaluator.state.exit_price is None


def test_ema_seeded_from_entry_price():
    """
    EMA(3) with alpha 0.5 starts from the entry price while the window is
    not yet full.
    """
    config = MovingAverageCrossConfig(name="EMA3", window_type=WindowType.EMA, period=3)
    evaluator = run(MovingAverageEvaluator(config, make_signal(entry=100.0)), [100, 102, 104])
    assert evaluator.state.moving_average == pytest.approx(102.5)
    assert evaluator.state.prev_ema == pytest.approx(102.5)


def test_ema_period_one_seeds_from_window():
    """
    With a period of 1 the window is full on the first tick, so the EMA is
    seeded from it and tracks the price exactly.
    """
    config = MovingAverageCrossConfig(name="EMA1", window_type=WindowType.EMA, period=1)
    evaluator = run(MovingAverageEvaluator(config, make_signal(entry=100.0)), [101, 102])
    assert evaluator.state.moving_average == pytest.approx(102)


def test_ema_short_exit_above_average():
    """
    A short exits once the price rises above its EMA after TP1.
    """
    config = MovingAverageCrossConfig(name="EMA3", window_type=WindowType.EMA, period=3)
    signal = make_signal(direction="short", target=90.0, stop=110.0)
    evaluator = run(MovingAverageEvaluator(config, signal), [100, 92, 88, 86, 95])
    # EMA after each tick: 100, 96, 92, 89, 92
    assert evaluator.state.exit_price == 95


def test_ratchet_long_moves_stop_to_target():
    """
    Reaching TP1 moves the stop to TP1 and the target up by the initial
    distance; falling back to the new stop exits there.
    """
    evaluator = run(DynamicTargetRatchetEvaluator(RATCHET, make_signal()), [100, 110, 109])
    assert evaluator.state.exit_price == 110.0
    assert evaluator.state.current_target == 120.0


def test_ratchet_short():
    """
    For a short the increment is negative and the stop follows the target down.
    """
    signal = make_signal(direction="short", target=90.0, stop=105.0)
    evaluator = run(DynamicTargetRatchetEvaluator(RATCHET, signal), [100, 90, 91])
    assert evaluator.state.increment == -10.0
    assert evaluator.state.exit_price == 90.0


def test_ratchet_does_not_need_tp1_to_stop_out():
    """
    The ratchet applies its stop from the first tick.
    """
    evaluator = run(DynamicTargetRatchetEvaluator(RATCHET, make_signal()), [100, 96, 95])
    assert evaluator.state.exit_price == 95.0


@pytest.mark.parametrize("direction, target, stop, prices", [
    ("long", 110.0, 95.0, [100, 104, 111, 115, 121, 119, 133, 140, 150, 146]),
    ("short", 90.0, 105.0, [100, 96, 89, 85, 79, 81, 67, 60, 50, 54]),
])
def test_ratchet_never_loosens(direction, target, stop, prices):
    """
    The target only moves in the favorable direction and the stop never
    moves against the position.
    """
    signal = make_signal(direction=direction, target=target, stop=stop)
    evaluator = DynamicTargetRatchetEvaluator(RATCHET, signal)
    sign = 1 if direction == "long" else -1
    prev_stop, prev_target = evaluator.state.current_stop, evaluator.state.current_target
    for point in make_series(prices):
        evaluator.update(point)
        assert sign * (evaluator.state.current_stop - prev_stop) >= 0
        assert sign * (evaluator.state.current_target - prev_target) >= 0
        prev_stop, prev_target = evaluator.state.current_stop, evaluator.state.current_target
    assert sign * (evaluator.state.current_stop - stop) > 0


def test_build_evaluator_dispatches_on_kind():
    """
    The registry returns the evaluator class matching the config kind.
    """
    signal = make_signal()
    assert isinstance(build_evaluator(TRAILING, signal), TrailingStopEvaluator)
    assert isinstance(build_evaluator(RATCHET, signal), DynamicTargetRatchetEvaluator)
    sma = MovingAverageCrossConfig(name="SMA10", period=10)
    assert isinstance(build_evaluator(sma, signal), MovingAverageEvaluator)
