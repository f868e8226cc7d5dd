"""
Price series provider interfaces and implementations.

A provider returns the price history of an instrument as a list of
`PricePoint`s, sorted by timestamp and without duplicate timestamps. The
backtester relies on that ordering and does not sort or deduplicate itself.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd
import requests

from sigtest.errors import DataUnavailableError
from sigtest.retry import RetryPolicy
from sigtest.signal import PricePoint, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_COINGECKO_URL = "https://www.coingecko.com/price_charts"


def to_price_points(pairs: Iterable[Tuple[object, float]]) -> List[PricePoint]:
    """
    Converts raw (timestamp, price) pairs into sorted, deduplicated points.
    When a timestamp repeats, the last price wins.

    Args:
        pairs (Iterable[Tuple[object, float]]): Timestamps in any format
            `parse_timestamp` accepts, paired with prices.
    """
    by_time: Dict[datetime, float] = {}
    for raw_ts, price in pairs:
        if price is None:
            continue
        by_time[parse_timestamp(raw_ts)] = float(price)
    return [PricePoint(timestamp=ts, price=price) for ts, price in sorted(by_time.items())]


def _since(points: List[PricePoint], since: Optional[datetime]) -> List[PricePoint]:
    if since is None:
        return points
    return [point for point in points if point.timestamp >= since]


class PriceSeriesProvider(ABC):
    """
    Abstract base class for all price series providers.
    """

    @abstractmethod
    def fetch(self, instrument_id: str, since: Optional[datetime] = None) -> List[PricePoint]:
        """
        Fetches the price series of an instrument.

        Args:
            instrument_id (str): The instrument to fetch.
            since (Optional[datetime]): If given, only points at or after it.

        Returns:
            List[PricePoint]: Sorted, deduplicated points.

        Raises:
            DataUnavailableError: If there is no price data for the instrument.
        """
        raise NotImplementedError


class CoinGeckoProvider(PriceSeriesProvider):
    """
    Fetches the 365-day price chart of a coin from CoinGecko.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_COINGECKO_URL,
        timeout: float = 60.0,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initializes the provider.

        Args:
            base_url (str): Base URL of the price chart endpoint.
            timeout (float): Per-request timeout in seconds.
            retry (Optional[RetryPolicy]): Retry policy for failed requests.
            session (Optional[requests.Session]): HTTP session to use.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.session = session or requests.Session()

    def _request(self, url: str) -> dict:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def fetch(self, instrument_id: str, since: Optional[datetime] = None) -> List[PricePoint]:
        url = f"{self.base_url}/{instrument_id}/usd/365_days.json"
        try:
            payload = self.retry.call(self._request, url, retry_on=(requests.RequestException,))
        except (requests.RequestException, ValueError) as e:
            logger.error("Error fetching price data for %s: %s", instrument_id, e)
            raise DataUnavailableError(instrument_id, reason=f"price request failed ({e})") from e

        stats = payload.get("stats") if isinstance(payload, dict) else None
        if not stats:
            raise DataUnavailableError(instrument_id)
        return _since(to_price_points(stats), since)


class CSVPriceProvider(PriceSeriesProvider):
    """
    Loads price series from a CSV file with `instrument`, `timestamp` and
    `price` columns. The file is read once, on first use.
    """
    REQUIRED_COLUMNS: List[str] = ["instrument", "timestamp", "price"]

    def __init__(self, path: str):
        """
        Initializes the data provider.

        Args:
            path (str): The path to the CSV file.
        """
        self._path = path
        self._series: Optional[Dict[str, List[PricePoint]]] = None
        self._lock = threading.Lock()

    def _validate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Lowercases the column names and checks the required columns exist.

        Raises:
            ValueError: If a required column is missing.
        """
        df.columns = [str(col).strip().lower() for col in df.columns]
        if not all(col in df.columns for col in self.REQUIRED_COLUMNS):
            missing = set(self.REQUIRED_COLUMNS) - set(df.columns)
            raise ValueError(f"Price data is missing required columns: {missing}")
        return df

    def _load(self) -> Dict[str, List[PricePoint]]:
        df = self._validate(pd.read_csv(self._path))
        df = df.dropna(subset=["price"])
        if pd.api.types.is_numeric_dtype(df["timestamp"]):
            # Numeric timestamps are epoch milliseconds, as in the price feed.
            df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
        else:
            df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        series = {}
        for instrument, group in df.groupby("instrument"):
            pairs = zip(group["timestamp"].dt.to_pydatetime(), group["price"].astype(float))
            series[str(instrument)] = to_price_points(pairs)
        return series

    def fetch(self, instrument_id: str, since: Optional[datetime] = None) -> List[PricePoint]:
        with self._lock:
            if self._series is None:
                self._series = self._load()
        points = self._series.get(instrument_id)
        if not points:
            raise DataUnavailableError(instrument_id)
        return _since(points, since)


class InMemoryPriceProvider(PriceSeriesProvider):
    """
    Serves price series held in memory, e.g. for replays and tests.
    """

    def __init__(self, series: Mapping[str, Sequence[Union[PricePoint, Tuple[object, float]]]]):
        self._series: Dict[str, List[PricePoint]] = {}
        for instrument_id, points in series.items():
            pairs = [(p.timestamp, p.price) if isinstance(p, PricePoint) else p for p in points]
            self._series[instrument_id] = to_price_points(pairs)
        self.calls: List[str] = []

    def fetch(self, instrument_id: str, since: Optional[datetime] = None) -> List[PricePoint]:
        self.calls.append(instrument_id)
        points = self._series.get(instrument_id)
        if not points:
            raise DataUnavailableError(instrument_id)
        return _since(points, since)


class CachedPriceProvider(PriceSeriesProvider):
    """
    Memoizes another provider by instrument id for the lifetime of one batch
    run. Missing instruments are remembered too, so each instrument is
    requested from the wrapped provider at most once.
    """

    def __init__(self, inner: PriceSeriesProvider):
        self.inner = inner
        self._cache: Dict[str, Union[List[PricePoint], DataUnavailableError]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, instrument_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(instrument_id, threading.Lock())

    def fetch(self, instrument_id: str, since: Optional[datetime] = None) -> List[PricePoint]:
        with self._lock_for(instrument_id):
            if instrument_id not in self._cache:
                try:
                    self._cache[instrument_id] = self.inner.fetch(instrument_id)
                except DataUnavailableError as e:
                    self._cache[instrument_id] = e
        cached = self._cache[instrument_id]
        if isinstance(cached, DataUnavailableError):
            raise cached
        return _since(cached, since)

    def clear(self) -> None:
        with self._guard:
            self._cache.clear()
            self._locks.clear()
