"""
Concrete exit strategy evaluators and the evaluator registry.

Trailing stop and moving average strategies only look for an exit once TP1
has been hit, and always honour the fixed stop loss first. The dynamic
TP/SL ratchet runs from the first tick with its own moving stop.
"""
from collections import deque
from typing import Dict, Type

from sigtest.backtester.base import BaseEvaluator
from sigtest.indicators.factory import ema_step, sma
from sigtest.signal import Direction, PricePoint, Signal
from sigtest.strategies import WindowType

# Registry of evaluator classes, keyed by strategy config `kind`
EVALUATOR_REGISTRY: Dict[str, Type[BaseEvaluator]] = {}


def register_evaluator(kind: str, evaluator_class: Type[BaseEvaluator]):
    """
    Registers an evaluator class for a strategy kind.

    Args:
        kind (str): The `kind` tag of the strategy configuration.
        evaluator_class (Type[BaseEvaluator]): The evaluator implementing it.
    """
    if kind in EVALUATOR_REGISTRY:
        raise ValueError(f"Evaluator for '{kind}' is already registered.")
    EVALUATOR_REGISTRY[kind] = evaluator_class


def build_evaluator(config, signal: Signal) -> BaseEvaluator:
    """
    Creates a fresh evaluator, with fresh state, for one strategy and signal.

    Args:
        config: A strategy configuration with a `kind` attribute.
        signal (Signal): The signal under test.

    Returns:
        BaseEvaluator: The initialized evaluator.
    """
    kind = getattr(config, "kind", None)
    if kind not in EVALUATOR_REGISTRY:
        raise ValueError(
            f"No evaluator registered for '{kind}'. Available: {list(EVALUATOR_REGISTRY.keys())}"
        )
    return EVALUATOR_REGISTRY[kind](config, signal)


class GatedEvaluator(BaseEvaluator):
    """
    Shared per-tick rules of the strategies that arm on TP1:

    1. stop loss, exiting at the stop level;
    2. sticky TP1 flag;
    3. running peak (long) or trough (short);
    4. the strategy's own exit condition, only once TP1 was hit.
    """

    def _step(self, point: PricePoint) -> None:
        price = point.price
        self._observe(price)

        if self._adverse(price, self.stop_loss):
            self._exit(self.stop_loss, point.timestamp)
            return

        if self._favorable(price, self.target1):
            self.state.tp1_hit = True

        if self.direction is Direction.LONG:
            self.state.peak_price = max(self.state.peak_price, price)
        else:
            self.state.trough_price = min(self.state.trough_price, price)

        if self.state.tp1_hit and self._exit_condition(price):
            self._exit(price, point.timestamp)

    def _observe(self, price: float) -> None:
        """Hook for strategies that track every price, armed or not."""

    def _exit_condition(self, price: float) -> bool:
        raise NotImplementedError


class TrailingStopEvaluator(GatedEvaluator):
    """Exits when the price retraces `trail_fraction` from its extreme."""

    def _exit_condition(self, price: float) -> bool:
        fraction = self.config.trail_fraction
        if self.direction is Direction.LONG:
            return price <= self.state.peak_price * (1 - fraction)
        return price >= self.state.trough_price * (1 + fraction)


class MovingAverageEvaluator(GatedEvaluator):
    """
    Exits when the price crosses its SMA or EMA against the position.

    The SMA is available once `period` prices have been seen. The EMA is
    seeded with the average of the first `period` prices if they are
    available when the first value is needed, and with the entry price
    otherwise.
    """

    def __init__(self, config, signal: Signal):
        super().__init__(config, signal)
        self.period: int = config.period
        self.window_type: WindowType = config.window_type
        self.state.price_window = deque(maxlen=self.period)

    def _observe(self, price: float) -> None:
        window = self.state.price_window
        window.append(price)

        if self.window_type is WindowType.SMA:
            average = sma(window, self.period)
            if average is not None:
                self.state.moving_average = average
            return

        if self.state.prev_ema is None:
            seed = sma(window, self.period)
            self.state.prev_ema = seed if seed is not None else self.entry_price
        self.state.moving_average = ema_step(self.state.prev_ema, price, self.period)
        self.state.prev_ema = self.state.moving_average

    def _exit_condition(self, price: float) -> bool:
        average = self.state.moving_average
        if average is None:
            return False
        if self.direction is Direction.LONG:
            return price < average
        return price > average


class DynamicTargetRatchetEvaluator(BaseEvaluator):
    """
    Keeps a moving stop and target. Crossing the target moves the stop up to
    it and the target on by the initial entry-to-TP1 distance; crossing the
    stop exits at the stop.
    """

    def __init__(self, config, signal: Signal):
        super().__init__(config, signal)
        distance = abs(signal.target1 - signal.entry_price)
        self.state.current_stop = signal.stop_loss
        self.state.current_target = signal.target1
        self.state.increment = distance if signal.direction is Direction.LONG else -distance

    def _step(self, point: PricePoint) -> None:
        price = point.price
        if self._adverse(price, self.state.current_stop):
            self._exit(self.state.current_stop, point.timestamp)
        elif self._favorable(price, self.state.current_target):
            self.state.current_stop = self.state.current_target
            self.state.current_target += self.state.increment


register_evaluator("trailing_stop", TrailingStopEvaluator)
register_evaluator("moving_average", MovingAverageEvaluator)
register_evaluator("dynamic_ratchet", DynamicTargetRatchetEvaluator)
