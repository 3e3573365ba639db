"""Periodic alert monitor.

Each tick loads the active alerts, fetches every distinct (symbol, source)
price once with retries, evaluates the alerts and, for those that fire,
notifies the owner before recording the trigger. A failure for one price
or one alert never stops the rest of the tick.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from pegwatch.config import AppConfig
from pegwatch.db.base import AlertStore
from pegwatch.engine.evaluator import render_message, should_trigger
from pegwatch.engine.retry import RetryPolicy
from pegwatch.errors import PegwatchError, PersistenceError, SourceUnavailable
from pegwatch.models import Alert, PriceSample, utcnow
from pegwatch.notify.base import NotificationSink
from pegwatch.sources.base import PriceSource


logger = logging.getLogger(__name__)

QuoteKey = tuple[str, Optional[str]]

DEFAULT_INTERVAL = 60.0
DEFAULT_CALL_TIMEOUT = 10.0


class TickReport(BaseModel):
    """What happened during one monitor tick."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    alerts_checked: int = 0
    quotes_fetched: int = 0
    quotes_failed: list[str] = Field(default_factory=list)
    triggered: list[int] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False


def _describe(key: QuoteKey) -> str:
    symbol, source = key
    return f"{symbol}@{source or 'primary'}"


class MonitorLoop:
    """Fetch-evaluate-notify loop running in its own thread."""

    def __init__(
        self,
        store: AlertStore,
        prices: PriceSource,
        notifier: NotificationSink,
        interval: float = DEFAULT_INTERVAL,
        retry_policy: Optional[RetryPolicy] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = 4,
    ):
        """Initialize the monitor.

        Args:
            store: Alert storage.
            prices: Price source for primary and per-venue quotes.
            notifier: Where triggered alerts are delivered.
            interval: Seconds between tick starts.
            retry_policy: Retry policy for price fetches (3 attempts by default).
            call_timeout: Upper bound in seconds on any single price or
                notification call.
            clock: Source of trigger timestamps.
            max_workers: Threads available for timed I/O calls.
        """
        self._store = store
        self._prices = prices
        self._notifier = notifier
        self.interval = interval
        self._retry = retry_policy or RetryPolicy()
        self._call_timeout = call_timeout
        self._clock = clock
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: AlertStore,
        prices: PriceSource,
        notifier: NotificationSink,
    ) -> "MonitorLoop":
        settings = config.monitor
        return cls(
            store=store,
            prices=prices,
            notifier=notifier,
            interval=settings.interval,
            retry_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                delay=settings.retry_delay,
                backoff=settings.retry_backoff,
            ),
            call_timeout=settings.call_timeout,
        )

    # ==================== I/O helpers ====================

    def _get_executor(self) -> ThreadPoolExecutor:
        """The I/O pool, created on first use and again after stop()."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="pegwatch-io"
                )
            return self._executor

    def _timed(self, fn: Callable[..., Any], *args: Any, description: str) -> Any:
        """Run a call in the I/O pool, giving up after call_timeout.

        A timeout surfaces as SourceUnavailable so it counts as a failed
        attempt for retries. The abandoned call keeps its worker until it
        returns on its own.
        """
        future = self._get_executor().submit(fn, *args)
        try:
            return future.result(timeout=self._call_timeout)
        except FutureTimeout:
            future.cancel()
            raise SourceUnavailable(
                f"{description} timed out after {self._call_timeout:g}s"
            )

    def _fetch_once(self, key: QuoteKey) -> PriceSample:
        symbol, source = key
        if source is None:
            return self._timed(self._prices.get_price, symbol, description=_describe(key))
        return self._timed(
            self._prices.get_price_from_source, symbol, source, description=_describe(key)
        )

    def fetch_quotes(self, keys: list[QuoteKey], report: TickReport) -> dict[QuoteKey, PriceSample]:
        """Fetch each distinct key with retries; failed keys are left out."""
        results: dict[QuoteKey, PriceSample] = {}
        for key in keys:
            try:
                results[key] = self._retry.call(
                    self._fetch_once, key, description=f"price {_describe(key)}"
                )
                report.quotes_fetched += 1
            except Exception as e:
                logger.warning("No price for %s this tick: %s", _describe(key), e)
                report.quotes_failed.append(_describe(key))
        return results

    # ==================== Tick ====================

    def _process_alert(
        self, alert: Alert, quotes: dict[QuoteKey, PriceSample], report: TickReport
    ) -> None:
        samples = [quotes[k] for k in alert.required_quotes() if k in quotes]
        if not should_trigger(alert, samples):
            return

        logger.info("Alert #%s (%s %s) triggered", alert.id, alert.kind, alert.symbol)
        message = render_message(alert, samples)

        try:
            self._timed(
                self._notifier.send_alert, alert.owner, message,
                description=f"notify {alert.owner}",
            )
        except Exception as e:
            # Left active so the next tick retries the notification
            logger.error("Failed to notify owner of alert #%s: %s", alert.id, e)
            report.errors.append(f"notify #{alert.id}: {e}")
            return

        try:
            self._store.mark_triggered(alert.id, self._clock())
        except PersistenceError as e:
            logger.error("Failed to mark alert #%s triggered: %s", alert.id, e)
            report.errors.append(f"mark #{alert.id}: {e}")
            return

        report.triggered.append(alert.id)

    def run_once(self) -> TickReport:
        """Run a single tick.

        Returns:
            TickReport; ``skipped`` is set if another tick was already running.
        """
        report = TickReport(started_at=self._clock())

        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous tick still running; skipping")
            report.skipped = True
            return report

        try:
            try:
                alerts = self._store.get_active_alerts()
            except PersistenceError as e:
                logger.error("Cannot load active alerts: %s", e)
                report.errors.append(f"load: {e}")
                return report

            logger.info("Checking %d active alert(s)", len(alerts))
            keys = list(dict.fromkeys(k for a in alerts for k in a.required_quotes()))
            quotes = self.fetch_quotes(keys, report)

            for alert in alerts:
                report.alerts_checked += 1
                try:
                    self._process_alert(alert, quotes, report)
                except PegwatchError as e:
                    logger.error("Error processing alert #%s: %s", alert.id, e)
                    report.errors.append(f"#{alert.id}: {e}")
                except Exception:
                    logger.exception("Unexpected error processing alert #%s", alert.id)
                    report.errors.append(f"#{alert.id}: unexpected error")

            return report
        finally:
            report.finished_at = self._clock()
            self._tick_lock.release()
            logger.info(
                "Tick done: %d checked, %d triggered, %d price(s) missing",
                report.alerts_checked, len(report.triggered), len(report.quotes_failed),
            )

    # ==================== Loop control ====================

    def verify_notifier(self) -> bool:
        """Advisory reachability check; failures are only logged."""
        try:
            self._timed(self._notifier.verify_reachable, description="notifier check")
        except Exception as e:
            logger.error("Notification sink unreachable, continuing anyway: %s", e)
            return False
        return True

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Run ticks until the stop event is set.

        Ticks start ``interval`` seconds apart. A tick that overruns delays
        the next one rather than overlapping it, and a stop request lets the
        in-flight tick finish.
        """
        stop = stop_event or self._stop_event
        logger.info("Starting price monitor (interval %gs)", self.interval)
        self.verify_notifier()

        while not stop.is_set():
            started = time.monotonic()
            try:
                self.run_once()
            except Exception:
                logger.exception("Monitor tick failed")
            elapsed = time.monotonic() - started
            stop.wait(max(0.0, self.interval - elapsed))

        logger.info("Price monitor stopped")

    def start(self) -> threading.Thread:
        """Run the loop in a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run, args=(self._stop_event,), name="pegwatch-monitor", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to stop and wait for it to exit.

        A tick already running finishes first. The I/O pool is shut down and
        recreated on next use.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
