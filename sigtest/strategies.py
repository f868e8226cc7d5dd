"""
Exit strategy configurations.

Each configuration is a named, parameterized exit rule. The set of configured
strategies is ordered: when two strategies realize the same P&L, the one that
appears first wins.
"""
from enum import Enum
from typing import Annotated, List, Literal, Sequence, Union

from pydantic import BaseModel, Field, TypeAdapter


class WindowType(str, Enum):
    SMA = "SMA"
    EMA = "EMA"


class TrailingStopConfig(BaseModel):
    """
    Exits once the price retraces `trail_fraction` from its favorable extreme
    after TP1 has been hit.

    Args:
        name (str): Display name of the strategy.
        trail_fraction (float): The retracement, e.g. 0.01 for 1%.
    """
    kind: Literal["trailing_stop"] = "trailing_stop"
    name: str = "Trailing Stop"
    trail_fraction: float = Field(0.01, gt=0, lt=1, description="Retracement from the extreme.")


class MovingAverageCrossConfig(BaseModel):
    """
    Exits once the price crosses its moving average against the position
    after TP1 has been hit.

    Args:
        name (str): Display name of the strategy.
        window_type (WindowType): SMA or EMA.
        period (int): The moving average period.
    """
    kind: Literal["moving_average"] = "moving_average"
    name: str
    window_type: WindowType = WindowType.SMA
    period: int = Field(..., ge=1, description="Moving average period.")


class DynamicTargetRatchetConfig(BaseModel):
    """
    Ratchets the stop to the current target, and the target by the initial
    target-entry distance, every time the target is reached.

    Args:
        name (str): Display name of the strategy.
    """
    kind: Literal["dynamic_ratchet"] = "dynamic_ratchet"
    name: str = "Dynamic TP/SL"


StrategyConfig = Annotated[
    Union[TrailingStopConfig, MovingAverageCrossConfig, DynamicTargetRatchetConfig],
    Field(discriminator="kind"),
]

_STRATEGY_LIST_ADAPTER = TypeAdapter(List[StrategyConfig])


DEFAULT_STRATEGIES: List[StrategyConfig] = [
    TrailingStopConfig(name="Trailing Stop", trail_fraction=0.01),
    MovingAverageCrossConfig(name="SMA10", window_type=WindowType.SMA, period=10),
    MovingAverageCrossConfig(name="SMA20", window_type=WindowType.SMA, period=20),
    MovingAverageCrossConfig(name="EMA10", window_type=WindowType.EMA, period=10),
    MovingAverageCrossConfig(name="EMA20", window_type=WindowType.EMA, period=20),
    DynamicTargetRatchetConfig(name="Dynamic TP/SL"),
]


def parse_strategies(raw: Sequence[dict]) -> List[StrategyConfig]:
    """
    Parses a list of raw strategy mappings (e.g. from YAML) into typed
    configurations.

    Raises:
        pydantic.ValidationError: If an entry is malformed.
        ValueError: If two strategies share a name.
    """
    strategies = _STRATEGY_LIST_ADAPTER.validate_python(list(raw))
    ensure_unique_names(strategies)
    return strategies


def ensure_unique_names(strategies: Sequence[StrategyConfig]) -> None:
    seen = set()
    for strategy in strategies:
        if strategy.name in seen:
            raise ValueError(f"Duplicate strategy name: '{strategy.name}'")
        seen.add(strategy.name)
