"""
Batch execution: resolves every pending signal of a run.

Signals are independent. Each one is fully evaluated, then persisted, then
annotated and delivered; only the persistence step can abort the run (when
the store is unreachable). Every other failure is contained to its signal.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from sigtest.backtester.orchestrator import BacktestOrchestrator
from sigtest.backtester.results import Resolution, ResolutionStatus
from sigtest.config import Config
from sigtest.data.provider import (
    CachedPriceProvider,
    CoinGeckoProvider,
    CSVPriceProvider,
    DEFAULT_COINGECKO_URL,
    PriceSeriesProvider,
)
from sigtest.delivery import HTTPNotifier, Notifier, format_outcome_message, notify_subscribers
from sigtest.errors import DataUnavailableError, FatalBatchError, SignalValidationError
from sigtest.llm.client import ReasoningAnnotator, get_client
from sigtest.results import BatchSummary
from sigtest.signal import Signal
from sigtest.sink import InMemorySink, JSONLinesSink, SignalRecordSink

logger = logging.getLogger(__name__)


class BatchRunner:
    """
    Runs the backtest over a batch of signals.
    """

    def __init__(
        self,
        orchestrator: BacktestOrchestrator,
        price_provider: PriceSeriesProvider,
        sink: SignalRecordSink,
        annotator: Optional[ReasoningAnnotator] = None,
        notifier: Optional[Notifier] = None,
        max_workers: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initializes the runner.

        Args:
            orchestrator (BacktestOrchestrator): Resolves a single signal.
            price_provider (PriceSeriesProvider): Source of price series. It is
                wrapped in a fresh cache for every run.
            sink (SignalRecordSink): Where results go.
            annotator (Optional[ReasoningAnnotator]): Optional LLM enrichment.
            notifier (Optional[Notifier]): Optional subscriber delivery.
            max_workers (int): Signals resolved concurrently. 1 is sequential.
            cancel_event (Optional[threading.Event]): When set, no further
                signal is started.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.orchestrator = orchestrator
        self.price_provider = price_provider
        self.sink = sink
        self.annotator = annotator
        self.notifier = notifier
        self.max_workers = max_workers
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def from_config(cls, config: Config, cancel_event: Optional[threading.Event] = None) -> "BatchRunner":
        """
        Builds a runner and its collaborators from a configuration.
        """
        if config.data.source == "csv":
            if not config.data.path:
                raise ValueError("data.path is required for the 'csv' price source")
            provider: PriceSeriesProvider = CSVPriceProvider(path=config.data.path)
        else:
            provider = CoinGeckoProvider(
                base_url=config.data.base_url or DEFAULT_COINGECKO_URL,
                timeout=config.data.timeout,
                retry=config.retry,
            )

        sink: SignalRecordSink = JSONLinesSink(config.sink.path) if config.sink.path else InMemorySink()

        annotator = None
        if config.llm.enabled:
            client = get_client(
                config.llm.client,
                model=config.llm.model,
                timeout=config.llm.timeout,
                retry=config.retry,
                base_url=config.llm.base_url,
            )
            annotator = ReasoningAnnotator(client)

        notifier = None
        if config.delivery.enabled and config.delivery.url:
            notifier = HTTPNotifier(url=config.delivery.url, timeout=config.delivery.timeout, retry=config.retry)

        orchestrator = BacktestOrchestrator(
            strategies=config.backtest.strategies,
            no_exit_policy=config.backtest.no_exit_policy,
        )
        return cls(
            orchestrator=orchestrator,
            price_provider=provider,
            sink=sink,
            annotator=annotator,
            notifier=notifier,
            max_workers=config.backtest.max_workers,
            cancel_event=cancel_event,
        )

    def cancel(self) -> None:
        """Stops the run after the signals already in progress."""
        self.cancel_event.set()

    def mark_rejected(self, errors: Iterable[SignalValidationError], signals: Iterable[Signal] = ()) -> List[str]:
        """
        Marks sheet rows that could not be parsed as processed, so they are
        not picked up again on every run. Ids shared with a loaded signal
        are left alone.

        Args:
            errors (Iterable[SignalValidationError]): Rows rejected by `load_signals`.
            signals (Iterable[Signal]): The signals that did load.

        Returns:
            List[str]: The ids that were marked.
        """
        loaded = {signal.signal_id for signal in signals}
        marked = []
        for error in errors:
            if error.signal_id is None or error.signal_id in loaded or error.signal_id in marked:
                continue
            self.sink.mark_processed(error.signal_id)
            marked.append(error.signal_id)
        if marked:
            logger.info("Marked %d rejected rows as processed", len(marked))
        return marked

    def run(self, signals: Iterable[Signal]) -> BatchSummary:
        """
        Resolves all given signals.

        Args:
            signals (Iterable[Signal]): The batch.

        Returns:
            BatchSummary: One resolution per signal.

        Raises:
            FatalBatchError: If the result store became unreachable.
        """
        signals = list(signals)
        prices = CachedPriceProvider(self.price_provider)
        logger.info("Starting batch of %d signals (workers: %d)", len(signals), self.max_workers)

        if self.max_workers == 1:
            resolutions = self._run_sequential(signals, prices)
        else:
            resolutions = self._run_parallel(signals, prices)

        summary = BatchSummary(resolutions=resolutions)
        logger.info("Batch complete: %s", summary.describe())
        return summary

    def _run_sequential(self, signals: List[Signal], prices: PriceSeriesProvider) -> List[Resolution]:
        resolutions = []
        for signal in signals:
            resolutions.append(self._guarded(signal, prices))
        return resolutions

    def _run_parallel(self, signals: List[Signal], prices: PriceSeriesProvider) -> List[Resolution]:
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self._guarded, signal, prices) for signal in signals]
            resolutions = []
            try:
                for future in futures:
                    resolutions.append(future.result())
            except BaseException:
                # Signals not yet started see the flag and return CANCELLED.
                self.cancel_event.set()
                raise
        return resolutions

    def _guarded(self, signal: Signal, prices: PriceSeriesProvider) -> Resolution:
        if self.cancel_event.is_set():
            return Resolution(signal_id=signal.signal_id, status=ResolutionStatus.CANCELLED, reason="batch cancelled")
        try:
            return self.process_signal(signal, prices)
        except FatalBatchError:
            raise
        except Exception as e:
            logger.exception("Signal %s failed: %s", signal.signal_id, e)
            return Resolution(signal_id=signal.signal_id, status=ResolutionStatus.FAILED, reason=str(e))

    def process_signal(self, signal: Signal, prices: Optional[PriceSeriesProvider] = None) -> Resolution:
        """
        Resolves, persists and post-processes one signal.

        Args:
            signal (Signal): The signal.
            prices (Optional[PriceSeriesProvider]): Provider to read from.
                Defaults to the runner's own provider.

        Returns:
            Resolution: What happened to the signal.
        """
        prices = prices or self.price_provider
        signal_id = signal.signal_id

        if signal.is_processed or self.sink.is_processed(signal_id):
            logger.info("Skipping signal %s: already processed", signal_id)
            return Resolution(signal_id=signal_id, status=ResolutionStatus.ALREADY_PROCESSED,
                              reason="signal already processed")

        try:
            series = prices.fetch(signal.instrument_id)
        except DataUnavailableError as e:
            # Left pending; the data may exist on a later run.
            logger.warning("Skipping signal %s: %s", signal_id, e)
            return Resolution(signal_id=signal_id, status=ResolutionStatus.NO_DATA, reason=str(e))

        resolution = self.orchestrator.resolve(signal, series)

        if resolution.status in (ResolutionStatus.INVALID, ResolutionStatus.NO_DATA):
            logger.warning("Skipping signal %s: %s", signal_id, resolution.reason)
            self.sink.mark_processed(signal_id)
            return resolution

        if resolution.status is ResolutionStatus.UNRESOLVED:
            logger.info("Signal %s left pending: %s", signal_id, resolution.reason)
            return resolution

        if resolution.status is not ResolutionStatus.RESOLVED:
            return resolution

        written = self.sink.persist_result(signal, resolution.result)
        self.sink.mark_processed(signal_id)
        if not written:
            logger.info("Result for signal %s already persisted", signal_id)
            return resolution

        logger.info(
            "Signal %s: best strategy %s, exit %s, P&L %.2f%%",
            signal_id, resolution.result.best_strategy,
            resolution.result.best_exit_price, resolution.result.best_pnl_pct,
        )
        return self._post_process(signal, resolution)

    def _post_process(self, signal: Signal, resolution: Resolution) -> Resolution:
        """Annotation and delivery. Failures here never undo the persisted result."""
        result = resolution.result
        reasoning = None
        deliveries = {}
        try:
            if self.annotator is not None:
                reasoning = self.annotator.annotate(
                    signal.instrument_id, result.best_strategy, result.pnl_by_strategy(), signal.direction
                )
                self.sink.attach_annotation(signal.signal_id, reasoning)

            if self.notifier is not None:
                message = format_outcome_message(signal, result, reasoning)
                subscribers = self.sink.subscribers_for(signal)
                deliveries = notify_subscribers(self.notifier, signal.signal_id, message, subscribers)
                for username, ok in deliveries.items():
                    self.sink.record_delivery(signal.signal_id, username, ok)
        except FatalBatchError:
            raise
        except Exception as e:
            logger.error("Post-processing of signal %s failed: %s", signal.signal_id, e)

        return resolution.model_copy(update={"reasoning": reasoning, "deliveries": deliveries})
