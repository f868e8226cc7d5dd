"""
Delivery of backtest outcomes to an account's subscribers.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence

import requests

from sigtest.backtester.results import BacktestResult, format_pct
from sigtest.retry import RetryPolicy
from sigtest.signal import Direction, Signal
from sigtest.sink import Subscriber

logger = logging.getLogger(__name__)


def format_outcome_message(signal: Signal, result: BacktestResult, reasoning: Optional[str] = None) -> str:
    """
    Renders the outcome of a backtested signal as a plain-text message.
    """
    label = "Buy" if signal.direction is Direction.LONG else "Put Options"
    lines = [
        f"Signal outcome: {signal.instrument_id.upper()} ({label})",
        f"Entry: {signal.entry_price:g} | TP1: {signal.target1:g} | SL: {signal.stop_loss:g}",
        f"Best strategy: {result.best_strategy}",
        f"Exit: {result.best_exit_price:g} | P&L: {format_pct(result.best_pnl_pct)}",
    ]
    if signal.account:
        lines.insert(1, f"Source: {signal.account}")
    if reasoning:
        lines.append(f"Why: {reasoning}")
    return "\n".join(lines)


class Notifier(ABC):
    """
    Abstract base class for subscriber notifiers.
    """

    @abstractmethod
    def send(self, username: str, message: str) -> bool:
        """
        Sends one message to one subscriber.

        Returns:
            bool: True if the message was accepted.

        Raises:
            DeliveryError: If the subscriber cannot be reached. Any exception
            is recorded as a failed delivery by `notify_subscribers`.
        """
        raise NotImplementedError


class HTTPNotifier(Notifier):
    """
    Posts `{"username", "message"}` to a message relay endpoint.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.session = session or requests.Session()

    def _post(self, payload: Dict[str, str]) -> None:
        response = self.session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()

    def send(self, username: str, message: str) -> bool:
        try:
            self.retry.call(
                self._post,
                {"username": username, "message": message},
                retry_on=(requests.RequestException,),
            )
        except requests.RequestException as e:
            logger.error("Failed to send message to %s: %s", username, e)
            return False
        return True


def notify_subscribers(
    notifier: Notifier,
    signal_id: str,
    message: str,
    subscribers: Sequence[Subscriber],
) -> Dict[str, bool]:
    """
    Sends `message` to every subscriber that has not received it yet.

    A failure for one subscriber is recorded and does not stop delivery to
    the others.

    Returns:
        Dict[str, bool]: Delivery outcome per attempted username.
    """
    outcomes: Dict[str, bool] = {}
    for subscriber in subscribers:
        if subscriber.sent:
            continue
        try:
            ok = notifier.send(subscriber.username, message)
        except Exception as e:
            logger.error("Delivery of %s to %s failed: %s", signal_id, subscriber.username, e)
            ok = False
        outcomes[subscriber.username] = ok
    return outcomes
