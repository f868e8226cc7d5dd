"""
Moving average helpers used by the exit strategies.

The strategies consume prices one tick at a time, so these helpers work on a
window of recent prices or a previous value rather than on a full series.
"""
from typing import Optional, Sequence


def ema_alpha(period: int) -> float:
    """Smoothing factor of an EMA of the given period."""
    return 2.0 / (period + 1)


def sma(window: Sequence[float], length: int) -> Optional[float]:
    """
    Calculates the Simple Moving Average of the last `length` prices.

    Args:
        window (Sequence[float]): Recent prices, oldest first.
        length (int): The time period.

    Returns:
        Optional[float]: The SMA, or None if the window is not long enough.
    """
    if len(window) < length:
        return None
    recent = list(window)[-length:]
    return sum(recent) / length


def ema_step(prev_ema: float, price: float, period: int) -> float:
    """
    Advances an Exponential Moving Average by one price.

    Args:
        prev_ema (float): The previous EMA value.
        price (float): The new price.
        period (int): The EMA period.

    Returns:
        float: The updated EMA.
    """
    alpha = ema_alpha(period)
    return alpha * price + (1 - alpha) * prev_ema

