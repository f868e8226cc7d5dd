"""
Resolves one signal against every configured exit strategy.

The price series is streamed once: each point is fed to every strategy that
has not exited yet, so a signal costs O(points x strategies). The
orchestrator performs no I/O and never modifies the signal it is given.
"""
import logging
from enum import Enum
from typing import List, Optional, Sequence

from sigtest.backtester.base import BaseEvaluator
from sigtest.backtester.evaluator import build_evaluator
from sigtest.backtester.results import BacktestResult, Resolution, ResolutionStatus, StrategyOutcome
from sigtest.errors import SignalValidationError
from sigtest.metrics import pnl_percent
from sigtest.signal import PricePoint, Signal
from sigtest.strategies import DEFAULT_STRATEGIES, ensure_unique_names

logger = logging.getLogger(__name__)


class NoExitPolicy(str, Enum):
    """
    What to do with strategies that never trigger before the series ends.

    UNRESOLVED leaves them out; if no strategy exited the signal stays
    pending until more data arrives or the max exit time forces an exit.
    LAST_PRICE exits them synthetically at the last available price.
    """
    UNRESOLVED = "unresolved"
    LAST_PRICE = "last_price"


def select_best(outcomes: Sequence[StrategyOutcome]) -> Optional[StrategyOutcome]:
    """
    Picks the outcome with the highest P&L. Ties go to the outcome that
    comes first, i.e. the earliest strategy in configured order.

    Returns:
        Optional[StrategyOutcome]: The best outcome, or None if there is none.
    """
    best: Optional[StrategyOutcome] = None
    for outcome in outcomes:
        if best is None or outcome.pnl_pct > best.pnl_pct:
            best = outcome
    return best


class BacktestOrchestrator:
    """
    Drives one signal through all configured strategies and selects the
    best-performing exit.
    """

    def __init__(
        self,
        strategies: Optional[Sequence] = None,
        no_exit_policy: NoExitPolicy = NoExitPolicy.UNRESOLVED,
    ):
        """
        Initializes the orchestrator.

        Args:
            strategies (Optional[Sequence]): Ordered strategy configurations.
                Defaults to `DEFAULT_STRATEGIES`.
            no_exit_policy (NoExitPolicy): Fallback for strategies that never
                trigger.
        """
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)
        if not self.strategies:
            raise ValueError("At least one strategy must be configured.")
        ensure_unique_names(self.strategies)
        self.no_exit_policy = NoExitPolicy(no_exit_policy)

    def simulate(self, signal: Signal, points: Sequence[PricePoint]) -> List[BaseEvaluator]:
        """
        Streams the price points through a fresh evaluator per strategy.

        Args:
            signal (Signal): A validated signal.
            points (Sequence[PricePoint]): Points at or after entry, in
                increasing timestamp order.

        Returns:
            List[BaseEvaluator]: The evaluators, in configured order.
        """
        evaluators = [build_evaluator(config, signal) for config in self.strategies]
        active = list(evaluators)
        for point in points:
            active = [evaluator for evaluator in active if not evaluator.update(point)]
            if not active:
                break
        return evaluators

    def resolve(self, signal: Signal, series: Sequence[PricePoint]) -> Resolution:
        """
        Resolves one signal end-to-end.

        Args:
            signal (Signal): The signal under test.
            series (Sequence[PricePoint]): The full, unfiltered, sorted price
                series of the signal's instrument.

        Returns:
            Resolution: RESOLVED with a result, or the reason it was not.
        """
        if signal.is_processed:
            return Resolution(
                signal_id=signal.signal_id,
                status=ResolutionStatus.ALREADY_PROCESSED,
                reason="signal already processed",
            )

        try:
            signal.validate_levels()
        except SignalValidationError as e:
            return Resolution(signal_id=signal.signal_id, status=ResolutionStatus.INVALID, reason=str(e))

        points = [point for point in series if point.timestamp >= signal.entry_timestamp]
        if not points:
            return Resolution(
                signal_id=signal.signal_id,
                status=ResolutionStatus.NO_DATA,
                reason=f"no price data after entry for '{signal.instrument_id}'",
            )

        evaluators = self.simulate(signal, points)
        outcomes = self._collect_outcomes(signal, evaluators, points[-1])
        if not outcomes:
            return Resolution(
                signal_id=signal.signal_id,
                status=ResolutionStatus.UNRESOLVED,
                reason="no strategy exited before the end of the price series",
            )

        best = select_best(outcomes)
        result = BacktestResult(
            signal_id=signal.signal_id,
            instrument_id=signal.instrument_id,
            direction=signal.direction,
            entry_price=signal.entry_price,
            outcomes=outcomes,
            best_strategy=best.strategy,
            best_exit_price=best.exit_price,
            best_pnl_pct=best.pnl_pct,
            fallback_exit=any(outcome.synthetic for outcome in outcomes),
        )
        logger.debug(
            "Signal %s resolved: best=%s pnl=%.2f%%", signal.signal_id, best.strategy, best.pnl_pct
        )
        return Resolution(signal_id=signal.signal_id, status=ResolutionStatus.RESOLVED, result=result)

    def _collect_outcomes(
        self,
        signal: Signal,
        evaluators: Sequence[BaseEvaluator],
        last_point: PricePoint,
    ) -> List[StrategyOutcome]:
        outcomes: List[StrategyOutcome] = []
        for evaluator in evaluators:
            if evaluator.exited:
                exit_price = evaluator.state.exit_price
                outcomes.append(StrategyOutcome(
                    strategy=evaluator.name,
                    exit_price=exit_price,
                    pnl_pct=pnl_percent(signal.direction, signal.entry_price, exit_price),
                    exit_timestamp=evaluator.state.exit_timestamp,
                ))
            elif self.no_exit_policy is NoExitPolicy.LAST_PRICE:
                outcomes.append(StrategyOutcome(
                    strategy=evaluator.name,
                    exit_price=last_point.price,
                    pnl_pct=pnl_percent(signal.direction, signal.entry_price, last_point.price),
                    exit_timestamp=None,
                    synthetic=True,
                ))
        return outcomes
