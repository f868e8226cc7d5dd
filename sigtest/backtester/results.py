"""
Data structures for holding the results of a signal backtest.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sigtest.signal import Direction


def format_pct(value: float) -> str:
    """Formats a P&L percentage the way result documents store it, e.g. '8.00%'."""
    return f"{value:.2f}%"


class StrategyOutcome(BaseModel):
    """
    The exit reached by one strategy for one signal.

    Args:
        strategy (str): The strategy name.
        exit_price (float): The price at which the strategy exited.
        pnl_pct (float): Realized P&L in percent, sign-adjusted for direction.
        exit_timestamp (Optional[datetime]): Time of the tick that triggered
            the exit. None for a synthetic last-price exit.
        synthetic (bool): True if the exit was filled in at the last price
            because the strategy never triggered.
    """
    model_config = ConfigDict(frozen=True)

    strategy: str
    exit_price: float
    pnl_pct: float
    exit_timestamp: Optional[datetime] = None
    synthetic: bool = False


class BacktestResult(BaseModel):
    """
    Holds the outcome of one signal run through every configured strategy.

    Args:
        signal_id (str): The signal this result belongs to.
        instrument_id (str): The instrument that was priced.
        direction (Direction): The signal direction.
        entry_price (float): The signal's entry price.
        outcomes (List[StrategyOutcome]): One entry per strategy that exited,
            in configured strategy order.
        best_strategy (str): Name of the strategy with the highest P&L.
        best_exit_price (float): Exit price of the best strategy.
        best_pnl_pct (float): P&L of the best strategy.
        fallback_exit (bool): True if any outcome is a synthetic last-price exit.
    """
    model_config = ConfigDict(frozen=True)

    signal_id: str
    instrument_id: str
    direction: Direction
    entry_price: float
    outcomes: List[StrategyOutcome] = Field(..., min_length=1)
    best_strategy: str
    best_exit_price: float
    best_pnl_pct: float
    fallback_exit: bool = False

    def pnl_by_strategy(self) -> Dict[str, float]:
        """Returns the P&L of every exited strategy, in configured order."""
        return {outcome.strategy: outcome.pnl_pct for outcome in self.outcomes}

    def outcome_for(self, strategy: str) -> Optional[StrategyOutcome]:
        for outcome in self.outcomes:
            if outcome.strategy == strategy:
                return outcome
        return None

    def to_document(self) -> Dict[str, object]:
        """
        Flattens the result into the column layout of the result documents:
        'Exit Price (<name>)', 'P&L (<name>)', 'Final Exit Price', 'Final P&L'
        and 'Best Strategy'.
        """
        document: Dict[str, object] = {
            "Signal ID": self.signal_id,
            "Token ID": self.instrument_id,
            "Signal Type": self.direction.value,
            "Entry Price": self.entry_price,
        }
        for outcome in self.outcomes:
            document[f"Exit Price ({outcome.strategy})"] = outcome.exit_price
            document[f"P&L ({outcome.strategy})"] = format_pct(outcome.pnl_pct)
        document["Final Exit Price"] = self.best_exit_price
        document["Final P&L"] = format_pct(self.best_pnl_pct)
        document["Best Strategy"] = self.best_strategy
        return document


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    NO_DATA = "no_data"
    INVALID = "invalid"
    ALREADY_PROCESSED = "already_processed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Resolution(BaseModel):
    """
    The outcome of resolving one signal, successful or not.

    Args:
        signal_id (str): The signal id.
        status (ResolutionStatus): What happened.
        result (Optional[BacktestResult]): The result, only when RESOLVED.
        reason (str): Why the signal was not resolved, if it was not.
        reasoning (Optional[str]): The annotation attached after resolution.
        deliveries (Dict[str, bool]): Per-subscriber delivery outcome.
    """
    signal_id: str
    status: ResolutionStatus
    result: Optional[BacktestResult] = None
    reason: str = ""
    reasoning: Optional[str] = None
    deliveries: Dict[str, bool] = Field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED
