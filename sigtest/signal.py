"""
Core data structures for representing a trading signal and its price path.
"""
import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sigtest.errors import SignalValidationError

_DAY_FIRST_PATTERN = re.compile(r"^\s*(\d{1,2})([/-])(\d{1,2})\2(\d{4})\s*$")

# Column names used by the signal sheets the influencer pipeline exports.
RECORD_COLUMNS = {
    "signal_id": "Signal ID",
    "instrument_id": "Token ID",
    "direction": "Signal Message",
    "entry_price": "Price at Tweet",
    "target1": "TP1",
    "target2": "TP2",
    "stop_loss": "SL",
    "entry_timestamp": "Tweet Date",
    "max_exit_timestamp": "Max Exit Time",
    "account": "Twitter Account",
}


class Direction(str, Enum):
    """
    The payoff direction of a signal.

    LONG profits when the price rises ("Buy"); SHORT profits when the price
    falls ("Put Options").
    """
    LONG = "long"
    SHORT = "short"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        """
        Parses a direction from either its enum value or the signal labels
        used by the signal generator.

        Raises:
            ValueError: If the label does not describe a tradable direction.
        """
        if isinstance(value, Direction):
            return value
        label = str(value or "").strip().lower()
        if label in ("long", "buy"):
            return cls.LONG
        if label in ("short", "put options", "put"):
            return cls.SHORT
        raise ValueError(f"Unsupported signal direction: {value!r}")

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class LifecycleState(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parses the timestamp formats found in signal records and price feeds.

    Accepted inputs:
    - `datetime` (naive values are taken as UTC),
    - epoch milliseconds as int or float (price feed format),
    - ISO-8601 strings, including a trailing 'Z',
    - day-first dates such as '05/03/2025' or '5-3-2025',
    - a `{"$date": ...}` mapping as exported from the document store.

    Args:
        value (Any): The raw value.

    Returns:
        Optional[datetime]: A timezone-aware UTC datetime, or None if the
        value is empty.

    Raises:
        SignalValidationError: If the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, Mapping) and "$date" in value:
        return parse_timestamp(value["$date"])
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise SignalValidationError(f"Invalid date format: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise SignalValidationError(f"Invalid date format: {value!r}")
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        match = _DAY_FIRST_PATTERN.match(text)
        if match:
            day, _, month, year = match.groups()
            try:
                return datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
            except ValueError:
                raise SignalValidationError(f"Invalid date format: {value}")
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise SignalValidationError(f"Invalid date format: {value}")
        return parse_timestamp(parsed)
    raise SignalValidationError(f"Invalid date format: {value!r}")


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    # pydantic only converts ValueError into a ValidationError.
    try:
        return parse_timestamp(value)
    except SignalValidationError as e:
        raise ValueError(str(e))


class PricePoint(BaseModel):
    """
    A single (timestamp, price) sample of an instrument.

    Args:
        timestamp (datetime): The sample time (UTC).
        price (float): The observed price.
    """
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    price: float

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> datetime:
        return _coerce_timestamp(value)


class Signal(BaseModel):
    """
    A tradable event under test.

    Args:
        signal_id (str): Unique identifier of the signal.
        instrument_id (str): Identifier of the priced asset (e.g. a CoinGecko id).
        direction (Direction): LONG or SHORT.
        entry_price (float): Reference price at signal creation.
        target1 (float): First take-profit level (TP1).
        stop_loss (float): Stop-loss level (SL).
        target2 (Optional[float]): Second take-profit level, carried through
            to outputs but not simulated.
        entry_timestamp (datetime): Signal creation time.
        max_exit_timestamp (Optional[datetime]): Forced exit time. None means
            no limit.
        account (Optional[str]): The influencer account that issued the signal.
        lifecycle_state (LifecycleState): PENDING until resolved or skipped.
    """
    signal_id: str
    instrument_id: str
    direction: Direction
    entry_price: float
    target1: float
    stop_loss: float
    target2: Optional[float] = None
    entry_timestamp: datetime
    max_exit_timestamp: Optional[datetime] = None
    account: Optional[str] = None
    lifecycle_state: LifecycleState = LifecycleState.PENDING
    raw: dict = Field(default_factory=dict, repr=False, description="The source record.")

    @field_validator("direction", mode="before")
    @classmethod
    def _parse_direction(cls, value: Any) -> Direction:
        return Direction.parse(value)

    @field_validator("entry_timestamp", "max_exit_timestamp", mode="before")
    @classmethod
    def _parse_timestamps(cls, value: Any) -> Optional[datetime]:
        return _coerce_timestamp(value)

    @property
    def is_processed(self) -> bool:
        return self.lifecycle_state is LifecycleState.PROCESSED

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Signal":
        """
        Builds a Signal from a raw record, accepting either the exported
        sheet column names ('Token ID', 'Price at Tweet', 'TP1', ...) or the
        model's own field names.

        Args:
            record (Mapping[str, Any]): The raw record.

        Returns:
            Signal: The parsed signal.

        Raises:
            SignalValidationError: If any field cannot be parsed.
        """
        data = {}
        for field, column in RECORD_COLUMNS.items():
            value = record.get(field, record.get(column))
            if isinstance(value, float) and math.isnan(value):
                value = None
            if isinstance(value, str) and not value.strip():
                value = None
            data[field] = value

        if not data["signal_id"]:
            # Account, instrument and tweet date identify a signal across runs.
            data["signal_id"] = f"{data['account'] or 'unknown'}_{data['instrument_id']}_{data['entry_timestamp']}"
        data["signal_id"] = str(data["signal_id"])

        if data["max_exit_timestamp"] is None:
            data.pop("max_exit_timestamp")
        if data["target2"] is None:
            data.pop("target2")
        data["raw"] = dict(record)

        try:
            return cls(**data)
        except ValidationError as e:
            raise SignalValidationError(str(e), signal_id=data["signal_id"]) from e

    def validate_levels(self) -> None:
        """
        Rejects signals whose levels cannot be simulated.

        LONG requires stop_loss <= entry_price <= target1; SHORT requires
        target1 <= entry_price <= stop_loss. All levels must be finite and
        positive.

        Raises:
            SignalValidationError: If the levels are invalid.
        """
        levels = {"entry_price": self.entry_price, "target1": self.target1, "stop_loss": self.stop_loss}
        for name, level in levels.items():
            if not math.isfinite(level) or level <= 0:
                raise SignalValidationError(f"{name} must be a positive finite number, got {level}", self.signal_id)

        if self.direction is Direction.LONG:
            if self.entry_price > self.target1 or self.entry_price < self.stop_loss:
                raise SignalValidationError(
                    f"Invalid price conditions: entry {self.entry_price} > TP1 {self.target1} "
                    f"or < SL {self.stop_loss}",
                    self.signal_id,
                )
        else:
            if self.entry_price < self.target1 or self.entry_price > self.stop_loss:
                raise SignalValidationError(
                    f"Invalid price conditions for short: entry {self.entry_price} < TP1 {self.target1} "
                    f"or > SL {self.stop_loss}",
                    self.signal_id,
                )
