"""
Result sinks: where resolved signals, annotations and delivery state go.

The backtester only needs a narrow write interface. Persistence of a result
is idempotent: a second write for the same signal is ignored and reported
as such, so retries never duplicate documents or notifications.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from sigtest.backtester.results import BacktestResult
from sigtest.errors import FatalBatchError
from sigtest.signal import Signal

logger = logging.getLogger(__name__)


class Subscriber(BaseModel):
    """
    A subscriber to an account's signals.

    Args:
        username (str): The messaging handle to deliver to.
        sent (bool): Whether the current signal was already delivered.
    """
    username: str
    sent: bool = False

    @classmethod
    def normalize(cls, value: Any) -> "Subscriber":
        """
        Accepts the legacy subscriber shapes (a bare username string, or a
        mapping with 'username' and optionally 'sent').
        """
        if isinstance(value, Subscriber):
            return value
        if isinstance(value, str):
            return cls(username=value)
        if isinstance(value, Mapping):
            return cls(username=str(value["username"]), sent=bool(value.get("sent", False)))
        raise ValueError(f"Unsupported subscriber record: {value!r}")


class SignalRecordSink(ABC):
    """
    Abstract base class for result sinks.
    """

    @abstractmethod
    def persist_result(self, signal: Signal, result: BacktestResult) -> bool:
        """
        Stores the result of a signal.

        Returns:
            bool: True if the result was written, False if a result for this
            signal already existed.

        Raises:
            FatalBatchError: If the store is unreachable.
        """
        raise NotImplementedError

    @abstractmethod
    def mark_processed(self, signal_id: str) -> None:
        """Marks a signal as processed. Calling it again has no effect."""
        raise NotImplementedError

    @abstractmethod
    def is_processed(self, signal_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def attach_annotation(self, signal_id: str, text: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribers_for(self, signal: Signal) -> List[Subscriber]:
        raise NotImplementedError

    @abstractmethod
    def record_delivery(self, signal_id: str, username: str, ok: bool) -> None:
        raise NotImplementedError


class InMemorySink(SignalRecordSink):
    """
    Dictionary-backed sink. Subscribers are configured per account.
    """

    def __init__(self, subscribers: Optional[Mapping[str, Sequence[Any]]] = None):
        """
        Args:
            subscribers (Optional[Mapping[str, Sequence[Any]]]): Subscriber
                records per account, in any shape `Subscriber.normalize` accepts.
        """
        self._lock = threading.Lock()
        self.results: Dict[str, BacktestResult] = {}
        self.annotations: Dict[str, str] = {}
        self.processed: set = set()
        self.deliveries: Dict[str, Dict[str, bool]] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {
            account: [Subscriber.normalize(s) for s in records]
            for account, records in (subscribers or {}).items()
        }

    def persist_result(self, signal: Signal, result: BacktestResult) -> bool:
        with self._lock:
            if signal.signal_id in self.results:
                return False
            self.results[signal.signal_id] = result
            return True

    def mark_processed(self, signal_id: str) -> None:
        with self._lock:
            self.processed.add(signal_id)

    def is_processed(self, signal_id: str) -> bool:
        with self._lock:
            return signal_id in self.processed

    def attach_annotation(self, signal_id: str, text: str) -> None:
        with self._lock:
            self.annotations[signal_id] = text

    def subscribers_for(self, signal: Signal) -> List[Subscriber]:
        with self._lock:
            delivered = self.deliveries.get(signal.signal_id, {})
            return [
                Subscriber(username=s.username, sent=s.sent or delivered.get(s.username, False))
                for s in self._subscribers.get(signal.account or "", [])
            ]

    def record_delivery(self, signal_id: str, username: str, ok: bool) -> None:
        with self._lock:
            sent = self.deliveries.setdefault(signal_id, {})
            sent[username] = sent.get(username, False) or ok


class JSONLinesSink(InMemorySink):
    """
    Appends every persisted result, annotation and processed marker to a
    JSON Lines file, and reloads that state on construction so that signals
    persisted by an earlier run are recognised.
    """

    def __init__(self, path: str, subscribers: Optional[Mapping[str, Sequence[Any]]] = None):
        super().__init__(subscribers=subscribers)
        self.path = path
        self._file_lock = threading.Lock()
        directory = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(directory, exist_ok=True)
            if os.path.exists(path):
                self._replay()
        except OSError as e:
            raise FatalBatchError(f"Result store '{path}' is unreachable: {e}") from e

    def _replay(self) -> None:
        """
        Reloads the stored state. A truncated last line, left by a run that
        died mid-write, is dropped from the file; any other unreadable line
        aborts.

        Raises:
            FatalBatchError: If a line before the last one cannot be read.
        """
        with open(self.path, "r", encoding="utf-8") as f:
            lines = f.readlines()
        last = max((i for i, line in enumerate(lines) if line.strip()), default=-1)
        for i, line in enumerate(lines):
            if not line.strip():
                continue
            try:
                self._apply(json.loads(line))
            except (ValueError, KeyError, TypeError) as e:
                if i != last:
                    raise FatalBatchError(f"Result store '{self.path}' is corrupt at line {i + 1}: {e}") from e
                logger.warning("Dropping unreadable last line of %s: %s", self.path, e)
                with open(self.path, "w", encoding="utf-8") as f:
                    f.writelines(lines[:i])

    def _apply(self, entry: Dict[str, Any]) -> None:
        kind, signal_id = entry["type"], entry["signal_id"]
        if kind == "result":
            self.results[signal_id] = BacktestResult.model_validate(entry["result"])
        elif kind == "processed":
            self.processed.add(signal_id)
        elif kind == "annotation":
            self.annotations[signal_id] = entry["text"]
        elif kind == "delivery":
            sent = self.deliveries.setdefault(signal_id, {})
            sent[entry["username"]] = sent.get(entry["username"], False) or entry["ok"]

    def _append(self, entry: Dict[str, Any]) -> None:
        line = json.dumps(entry, default=str) + "\n"
        try:
            with self._file_lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise FatalBatchError(f"Result store '{self.path}' is unreachable: {e}") from e

    def persist_result(self, signal: Signal, result: BacktestResult) -> bool:
        written = super().persist_result(signal, result)
        if written:
            self._append({
                "type": "result",
                "signal_id": signal.signal_id,
                "result": result.model_dump(mode="json"),
            })
        return written

    def mark_processed(self, signal_id: str) -> None:
        if self.is_processed(signal_id):
            return
        super().mark_processed(signal_id)
        self._append({"type": "processed", "signal_id": signal_id})

    def attach_annotation(self, signal_id: str, text: str) -> None:
        super().attach_annotation(signal_id, text)
        self._append({"type": "annotation", "signal_id": signal_id, "text": text})

    def record_delivery(self, signal_id: str, username: str, ok: bool) -> None:
        super().record_delivery(signal_id, username, ok)
        self._append({"type": "delivery", "signal_id": signal_id, "username": username, "ok": ok})
