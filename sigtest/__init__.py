"""
This __init__.py file exposes the public API of the sigtest framework.
"""

from .config import Config
from .io import load_config, load_signals
from .signal import Direction, PricePoint, Signal
from .backtester.orchestrator import BacktestOrchestrator, NoExitPolicy
from .backtester.results import BacktestResult, Resolution, ResolutionStatus
from .backtester.evaluator import register_evaluator
from .batch import BatchRunner
from .results import BatchSummary
from .metrics import register_impact_policy
from .llm.client import register_client

__all__ = [
    "Config",
    "load_config",
    "load_signals",
    "Direction",
    "PricePoint",
    "Signal",
    "BacktestOrchestrator",
    "NoExitPolicy",
    "BacktestResult",
    "Resolution",
    "ResolutionStatus",
    "register_evaluator",
    "BatchRunner",
    "BatchSummary",
    "register_impact_policy",
    "register_client",
]
