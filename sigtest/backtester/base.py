"""
Abstract base class for per-strategy exit evaluators.
"""
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional

from sigtest.signal import Direction, PricePoint, Signal


@dataclass
class StrategyState:
    """
    Mutable simulation state of one strategy for one signal.

    Owned by a single evaluator and discarded once the signal is resolved.
    """
    peak_price: float
    trough_price: float
    exit_price: Optional[float] = None
    exit_timestamp: Optional[datetime] = None
    tp1_hit: bool = False
    price_window: Deque[float] = field(default_factory=deque)
    moving_average: Optional[float] = None
    prev_ema: Optional[float] = None
    current_stop: Optional[float] = None
    current_target: Optional[float] = None
    increment: Optional[float] = None


class BaseEvaluator(ABC):
    """
    Abstract base class for all exit strategy evaluators.

    An evaluator consumes the price points of one signal in increasing
    timestamp order and sets an exit price at most once. The time cutoff is
    applied here so that it dominates every strategy-specific rule.
    """

    def __init__(self, config, signal: Signal):
        """
        Initializes the evaluator.

        Args:
            config: The strategy configuration.
            signal (Signal): The signal under test. It is read, never modified.
        """
        self.config = config
        self.name: str = config.name
        self.direction: Direction = signal.direction
        self.entry_price: float = signal.entry_price
        self.target1: float = signal.target1
        self.stop_loss: float = signal.stop_loss
        self.max_exit_timestamp: Optional[datetime] = signal.max_exit_timestamp
        self.state = StrategyState(peak_price=signal.entry_price, trough_price=signal.entry_price)

    @property
    def exited(self) -> bool:
        return self.state.exit_price is not None

    def update(self, point: PricePoint) -> bool:
        """
        Feeds one price point to the strategy.

        Args:
            point (PricePoint): The next price point.

        Returns:
            bool: True if the strategy has exited.
        """
        if self.exited:
            return True

        if self.max_exit_timestamp is not None and point.timestamp >= self.max_exit_timestamp:
            self._exit(point.price, point.timestamp)
            return True

        self._step(point)
        return self.exited

    @abstractmethod
    def _step(self, point: PricePoint) -> None:
        """Applies the strategy-specific rules to one price point."""
        raise NotImplementedError

    def _exit(self, price: float, timestamp: datetime) -> None:
        if self.exited:
            return
        self.state.exit_price = price
        self.state.exit_timestamp = timestamp

    def _favorable(self, price: float, level: float) -> bool:
        """True if `price` has reached `level` in the direction of profit."""
        if self.direction is Direction.LONG:
            return price >= level
        return price <= level

    def _adverse(self, price: float, level: float) -> bool:
        """True if `price` has reached `level` in the direction of loss."""
        if self.direction is Direction.LONG:
            return price <= level
        return price >= level
