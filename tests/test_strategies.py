"""
Tests for the exit strategy configurations.
"""
import pytest
from pydantic import ValidationError

from sigtest.strategies import (
    DEFAULT_STRATEGIES,
    DynamicTargetRatchetConfig,
    MovingAverageCrossConfig,
    TrailingStopConfig,
    WindowType,
    ensure_unique_names,
    parse_strategies,
)


def test_default_strategies():
    """
    Tests the default strategy set and its order, which decides ties.
    """
    assert [s.name for s in DEFAULT_STRATEGIES] == [
        "Trailing Stop", "SMA10", "SMA20", "EMA10", "EMA20", "Dynamic TP/SL",
    ]
    assert DEFAULT_STRATEGIES[0].trail_fraction == 0.01
    assert DEFAULT_STRATEGIES[3].window_type is WindowType.EMA
    assert DEFAULT_STRATEGIES[4].period == 20


def test_parse_strategies():
    strategies = parse_strategies([
        {"kind": "trailing_stop", "trail_fraction": 0.05, "name": "Wide Trail"},
        {"kind": "moving_average", "name": "EMA50", "window_type": "EMA", "period": 50},
        {"kind": "dynamic_ratchet"},
    ])

    assert isinstance(strategies[0], TrailingStopConfig)
    assert strategies[0].name == "Wide Trail"
    assert isinstance(strategies[1], MovingAverageCrossConfig)
    assert strategies[1].period == 50
    assert isinstance(strategies[2], DynamicTargetRatchetConfig)


def test_parse_strategies_rejects_missing_kind():
    with pytest.raises(ValidationError):
        parse_strategies([{"name": "Mystery", "period": 3}])


def test_moving_average_defaults_to_sma():
    assert MovingAverageCrossConfig(name="MA", period=7).window_type is WindowType.SMA


def test_ensure_unique_names():
    ensure_unique_names(DEFAULT_STRATEGIES)
    with pytest.raises(ValueError, match="Duplicate strategy name"):
        ensure_unique_names([TrailingStopConfig(), TrailingStopConfig(trail_fraction=0.02)])
