"""
Functions for scoring signals and the accounts that issue them.

`pnl_percent` is the payoff convention shared by every strategy. Impact
factor policies turn an account's accumulated P&L into a bounded score; each
policy is a pure, versioned function registered by name.
"""
from typing import Callable, Dict

from sigtest.signal import Direction

# Registry for impact factor policies
IMPACT_POLICY_REGISTRY: Dict[str, Callable[[float, int], float]] = {}

IMPACT_FACTOR_FLOOR = 0.5
IMPACT_FACTOR_CEILING = 2.0


def register_impact_policy(name: str, func: Callable[[float, int], float]):
    """
    Registers a new impact factor policy.

    Args:
        name (str): The policy version name (e.g. 'v1').
        func (Callable[[float, int], float]): `(total_pnl, signal_count) -> impact_factor`.
    """
    if name in IMPACT_POLICY_REGISTRY:
        raise ValueError(f"Impact policy '{name}' is already registered.")
    IMPACT_POLICY_REGISTRY[name] = func


def get_impact_policy(name: str) -> Callable[[float, int], float]:
    """
    Retrieves an impact factor policy from the registry.

    Args:
        name (str): The name of the policy to retrieve.
    """
    if name not in IMPACT_POLICY_REGISTRY:
        raise ValueError(f"Impact policy '{name}' is not registered. Available: {list(IMPACT_POLICY_REGISTRY.keys())}")
    return IMPACT_POLICY_REGISTRY[name]


def pnl_percent(direction: Direction, entry_price: float, exit_price: float) -> float:
    """
    Calculates the realized P&L of a single entry/exit episode, in percent.

    Args:
        direction (Direction): LONG profits when the price rises, SHORT when
            it falls.
        entry_price (float): The entry price. Must be non-zero.
        exit_price (float): The exit price.

    Returns:
        float: The P&L in percent of the entry price.
    """
    if direction is Direction.LONG:
        return (exit_price - entry_price) / entry_price * 100
    return (entry_price - exit_price) / entry_price * 100


def impact_factor_v1(total_pnl: float, signal_count: int) -> float:
    """
    Impact factor policy v1.

    The average P&L per signal moves a neutral factor of 1.0 by 1% for every
    1% of average P&L. The raw factor is clamped to [0.5, 2.0] and scaled
    linearly onto 1..100.

    Args:
        total_pnl (float): Sum of the best-strategy P&L of the account's
            signals, in percent.
        signal_count (int): Number of signals contributing to `total_pnl`.

    Returns:
        float: The impact factor in [1, 100]. An account without signals
        scores the neutral 1.0 raw factor.
    """
    if signal_count < 0:
        raise ValueError("signal_count must not be negative")
    average_pnl = total_pnl / signal_count if signal_count else 0.0
    raw = 1.0 + 0.1 * (average_pnl / 10.0)
    bounded = max(IMPACT_FACTOR_FLOOR, min(IMPACT_FACTOR_CEILING, raw))
    scaled = (bounded - IMPACT_FACTOR_FLOOR) / (IMPACT_FACTOR_CEILING - IMPACT_FACTOR_FLOOR) * 99 + 1
    return float(round(scaled))


def impact_factor(total_pnl: float, signal_count: int, policy: str = "v1") -> float:
    """
    Calculates an account's impact factor with the named policy.
    """
    return get_impact_policy(policy)(total_pnl, signal_count)


# Register the default policies
register_impact_policy("v1", impact_factor_v1)
