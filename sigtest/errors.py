"""
Exception hierarchy for the sigtest framework.

Per-signal errors (validation, missing data, enrichment, delivery) are caught
by the batch driver and never abort a run. Only `FatalBatchError` does.
"""
from typing import Optional


class SigtestError(Exception):
    """Base class for all sigtest errors."""


class SignalValidationError(SigtestError):
    """
    Raised when a signal cannot be simulated: unparseable dates, non-finite
    levels or entry/target/stop ordering that contradicts its direction.

    Args:
        message (str): Human readable reason.
        signal_id (Optional[str]): The id of the offending signal, if known.
    """

    def __init__(self, message: str, signal_id: Optional[str] = None):
        self.signal_id = signal_id
        prefix = f"[{signal_id}] " if signal_id else ""
        super().__init__(f"{prefix}{message}")


class DataUnavailableError(SigtestError):
    """Raised when no usable price series exists for an instrument."""

    def __init__(self, instrument_id: str, reason: str = "no price data"):
        self.instrument_id = instrument_id
        self.reason = reason
        super().__init__(f"{reason} for '{instrument_id}'")


class EnrichmentError(SigtestError):
    """Raised by LLM clients when an explanation could not be produced."""


class DeliveryError(SigtestError):
    """Raised by notifiers when a message could not be delivered."""


class FatalBatchError(SigtestError):
    """
    Raised for unrecoverable conditions, such as an unreachable result store.
    This is the only error that stops a batch run.
    """
