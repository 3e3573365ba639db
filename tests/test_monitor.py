"""Tests for the monitor loop.

**Feature: pegwatch**
"""

import sqlite3
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from pegwatch.db.store import SQLiteAlertStore
from pegwatch.engine.monitor import MonitorLoop
from pegwatch.engine.retry import RetryPolicy
from pegwatch.errors import PersistenceError, QuoteNotSupported, SourceUnavailable
from pegwatch.models import (
    Alert,
    DepegTarget,
    PairDepegTarget,
    PriceCondition,
    PriceSample,
    PriceTarget,
)
from pegwatch.notify.base import NotificationSink
from pegwatch.sources.base import PriceSource


FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fakes
# ============================================================================

class FakePriceSource(PriceSource):
    """Serves fixed prices.

    ``failures`` makes a key fail N times first; ``unsupported`` keys
    always raise QuoteNotSupported.
    """

    def __init__(
        self,
        prices: dict,
        failures: Optional[dict] = None,
        delay: float = 0.0,
        unsupported: tuple = (),
    ):
        self.prices = prices
        self.failures = dict(failures or {})
        self.unsupported = unsupported
        self.delay = delay
        self.calls: list[tuple[str, Optional[str]]] = []

    def _quote(self, symbol: str, source: Optional[str]) -> PriceSample:
        key = (symbol, source)
        self.calls.append(key)
        if self.delay:
            time.sleep(self.delay)
        if key in self.unsupported:
            raise QuoteNotSupported(f"{key} cannot be quoted")
        if self.failures.get(key, 0) > 0:
            self.failures[key] -= 1
            raise SourceUnavailable(f"{key} flaked")
        if key not in self.prices:
            raise SourceUnavailable(f"{key} unknown")
        return PriceSample(symbol=symbol, source=source or "coingecko", price=self.prices[key])

    def get_price(self, symbol: str) -> PriceSample:
        return self._quote(symbol, None)

    def get_price_from_source(self, symbol: str, source: str) -> PriceSample:
        return self._quote(symbol, source)


class FakeNotifier(NotificationSink):
    def __init__(self, fail_for: tuple[str, ...] = (), reachable: bool = True):
        self.sent: list[tuple[str, str]] = []
        self.fail_for = fail_for
        self.reachable = reachable

    def send_alert(self, owner: str, message: str) -> None:
        if owner in self.fail_for:
            raise SourceUnavailable(f"cannot reach {owner}")
        self.sent.append((owner, message))

    def verify_reachable(self) -> None:
        if not self.reachable:
            raise SourceUnavailable("bot offline")


@pytest.fixture
def store():
    """Create a temporary store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield SQLiteAlertStore(Path(tmpdir) / "test.db")


def no_sleep_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, delay=0.5, sleep=lambda _: None)


def make_loop(store, prices, notifier, **kwargs) -> MonitorLoop:
    kwargs.setdefault("retry_policy", no_sleep_policy())
    kwargs.setdefault("call_timeout", 2.0)
    return MonitorLoop(store, prices, notifier, clock=lambda: FIXED_NOW, **kwargs)


def add_price_alert(store, symbol="BTC", target=100.0, condition=PriceCondition.ABOVE, owner="1") -> Alert:
    return store.save_alert(Alert(
        owner=owner,
        symbol=symbol,
        variant=PriceTarget(target_price=target, condition=condition),
    ))


# ============================================================================
# Tests
# ============================================================================

class TestTriggerFlow:
    """Triggered alerts are notified and then marked inactive."""

    def test_price_alert_fires_once(self, store):
        alert = add_price_alert(store)
        notifier = FakeNotifier()
        loop = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier)

        report = loop.run_once()

        assert report.triggered == [alert.id]
        assert len(notifier.sent) == 1
        assert notifier.sent[0][0] == "1"
        stored = store.get_alert_by_id(alert.id)
        assert stored.active is False
        assert stored.triggered_at == FIXED_NOW

    def test_condition_not_met_stays_active(self, store):
        alert = add_price_alert(store, target=200.0)
        notifier = FakeNotifier()
        loop = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier)

        report = loop.run_once()

        assert report.alerts_checked == 1
        assert report.triggered == []
        assert notifier.sent == []
        assert store.get_alert_by_id(alert.id).active is True

    def test_depeg_and_pair_alerts(self, store):
        depeg = store.save_alert(Alert(
            owner="2",
            symbol="USDT",
            variant=DepegTarget(differential_pct=1.0, sources=["binance", "coinbase"]),
        ))
        pair = store.save_alert(Alert(
            owner="3",
            symbol="WBTC/BTC",
            variant=PairDepegTarget(
                token_a="WBTC", token_b="BTC", expected_ratio=1.0, differential_pct=1.0
            ),
        ))
        prices = FakePriceSource({
            ("USDT", "binance"): 0.99,
            ("USDT", "coinbase"): 1.02,
            ("WBTC", None): 100.0,
            ("BTC", None): 102.0,
        })
        notifier = FakeNotifier()

        report = make_loop(store, prices, notifier).run_once()

        assert sorted(report.triggered) == sorted([depeg.id, pair.id])
        assert {owner for owner, _ in notifier.sent} == {"2", "3"}


class TestIdempotentTrigger:
    """
    **Feature: pegwatch, Property 4: Idempotent Trigger**

    Once marked triggered, an alert is never notified again.
    """

    def test_second_tick_does_not_renotify(self, store):
        add_price_alert(store)
        notifier = FakeNotifier()
        loop = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier)

        loop.run_once()
        report = loop.run_once()

        assert len(notifier.sent) == 1
        assert report.alerts_checked == 0
        assert store.get_active_alerts() == []


class TestBatchedFetches:
    """Each (symbol, source) is fetched once per tick."""

    def test_shared_symbol_fetched_once(self, store):
        add_price_alert(store, target=100.0)
        add_price_alert(store, target=90.0, condition=PriceCondition.BELOW)
        add_price_alert(store, target=80.0, owner="2")
        prices = FakePriceSource({("BTC", None): 95.0})

        make_loop(store, prices, FakeNotifier()).run_once()

        assert prices.calls == [("BTC", None)]


class TestRetryResilience:
    """
    **Feature: pegwatch, Property 7: Retry Resilience**

    A source that fails twice then succeeds still yields a sample.
    """

    def test_succeeds_on_third_attempt(self, store):
        alert = add_price_alert(store)
        prices = FakePriceSource({("BTC", None): 150.0}, failures={("BTC", None): 2})
        notifier = FakeNotifier()

        report = make_loop(store, prices, notifier).run_once()

        assert len(prices.calls) == 3
        assert report.triggered == [alert.id]
        assert report.quotes_failed == []

    def test_gives_up_after_max_attempts(self, store):
        alert = add_price_alert(store)
        prices = FakePriceSource({("BTC", None): 150.0}, failures={("BTC", None): 3})
        notifier = FakeNotifier()

        report = make_loop(store, prices, notifier).run_once()

        assert len(prices.calls) == 3
        assert report.quotes_failed == ["BTC@primary"]
        assert notifier.sent == []
        assert store.get_alert_by_id(alert.id).active is True

    def test_failed_source_does_not_block_others(self, store):
        add_price_alert(store, symbol="BTC")
        eth = add_price_alert(store, symbol="ETH")
        prices = FakePriceSource({("ETH", None): 150.0})

        report = make_loop(store, prices, FakeNotifier()).run_once()

        assert report.triggered == [eth.id]
        assert report.quotes_failed == ["BTC@primary"]

    def test_timeout_counts_as_failed_attempt(self, store):
        add_price_alert(store)
        prices = FakePriceSource({("BTC", None): 150.0}, delay=0.3)
        notifier = FakeNotifier()

        report = make_loop(
            store, prices, notifier,
            call_timeout=0.05,
            retry_policy=no_sleep_policy(max_attempts=2),
        ).run_once()

        assert len(prices.calls) == 2
        assert report.quotes_failed == ["BTC@primary"]
        assert notifier.sent == []


class TestPartialFailureIsolation:
    """
    **Feature: pegwatch, Property 8: Partial-Failure Isolation**

    A failure marking alert A does not stop alert B in the same tick.
    """

    def test_mark_failure_isolated(self, store):
        a = add_price_alert(store, owner="a")
        b = add_price_alert(store, owner="b")
        notifier = FakeNotifier()
        original_mark = store.mark_triggered

        def flaky_mark(alert_id, triggered_at):
            if alert_id == a.id:
                raise PersistenceError("database is locked")
            original_mark(alert_id, triggered_at)

        store.mark_triggered = flaky_mark
        report = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier).run_once()

        assert [owner for owner, _ in notifier.sent] == ["a", "b"]
        assert report.triggered == [b.id]
        assert len(report.errors) == 1
        assert store.get_alert_by_id(a.id).active is True
        assert store.get_alert_by_id(b.id).active is False

    def test_notify_failure_leaves_alert_active(self, store):
        a = add_price_alert(store, owner="a")
        b = add_price_alert(store, owner="b")
        notifier = FakeNotifier(fail_for=("a",))

        report = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier).run_once()

        assert report.triggered == [b.id]
        assert store.get_alert_by_id(a.id).active is True
        assert store.get_alert_by_id(b.id).active is False

    def test_undecodable_row_does_not_block_tick(self, store):
        good = add_price_alert(store)
        conn = sqlite3.connect(store.db_path)
        conn.execute(
            """
            INSERT INTO alerts (owner, symbol, kind, variant, created_at, triggered_at, active)
            VALUES ('legacy', 'BTC', 'legacy', '{"type": "legacy"}', '2024-05-01T12:00:00+00:00', NULL, 1)
            """
        )
        conn.commit()
        conn.close()
        notifier = FakeNotifier()

        report = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier).run_once()

        assert report.triggered == [good.id]
        assert [owner for owner, _ in notifier.sent] == ["1"]

    def test_unsupported_venue_tried_once(self, store):
        alert = store.save_alert(Alert(
            owner="2",
            symbol="USDT",
            variant=DepegTarget(differential_pct=1.0, sources=["binance", "coinbase"]),
        ))
        prices = FakePriceSource(
            {("USDT", "coinbase"): 0.97},
            unsupported=(("USDT", "binance"),),
        )

        report = make_loop(store, prices, FakeNotifier()).run_once()

        assert prices.calls.count(("USDT", "binance")) == 1
        assert report.quotes_failed == ["USDT@binance"]
        assert report.triggered == [alert.id]

    def test_store_load_failure_ends_tick(self, store):
        def broken():
            raise PersistenceError("no such table")

        store.get_active_alerts = broken
        report = make_loop(store, FakePriceSource({}), FakeNotifier()).run_once()

        assert report.alerts_checked == 0
        assert report.errors


class TestLoopControl:
    """The loop runs in its own thread and stops on request."""

    def test_start_and_stop(self, store):
        add_price_alert(store)
        notifier = FakeNotifier(reachable=False)
        loop = make_loop(store, FakePriceSource({("BTC", None): 150.0}), notifier, interval=0.05)

        thread = loop.start()
        assert thread.name == "pegwatch-monitor"
        deadline = time.monotonic() + 5
        while not notifier.sent and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=5)

        assert not thread.is_alive()
        assert len(notifier.sent) == 1

    def test_ticks_do_not_overlap(self, store):
        add_price_alert(store, target=1000.0)
        prices = FakePriceSource({("BTC", None): 150.0}, delay=0.3)
        loop = make_loop(store, prices, FakeNotifier())

        results = []
        worker = threading.Thread(target=lambda: results.append(loop.run_once()))
        worker.start()
        time.sleep(0.1)
        second = loop.run_once()
        worker.join()

        assert second.skipped is True
        assert results[0].skipped is False

    def test_run_exits_when_stop_event_set(self, store):
        loop = make_loop(store, FakePriceSource({}), FakeNotifier(), interval=60)
        stop = threading.Event()
        stop.set()
        loop.run(stop)

    def test_stop_lets_inflight_tick_finish(self, store):
        alert = add_price_alert(store)
        prices = FakePriceSource({("BTC", None): 150.0}, delay=0.3)
        notifier = FakeNotifier()
        loop = make_loop(store, prices, notifier, interval=60)

        thread = loop.start()
        deadline = time.monotonic() + 5
        while not prices.calls and time.monotonic() < deadline:
            time.sleep(0.01)
        assert notifier.sent == []

        loop.stop(timeout=5)

        assert not thread.is_alive()
        assert [owner for owner, _ in notifier.sent] == ["1"]
        assert store.get_alert_by_id(alert.id).active is False


class TestRestartAfterStop:
    """A stopped loop can tick again and be restarted."""

    def _wait_for_first_tick(self, loop: MonitorLoop, prices: FakePriceSource) -> None:
        loop.start()
        deadline = time.monotonic() + 5
        while not prices.calls and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=5)

    def test_run_once_after_stop(self, store):
        alert = add_price_alert(store)
        prices = FakePriceSource({("BTC", None): 50.0})
        notifier = FakeNotifier()
        loop = make_loop(store, prices, notifier, interval=60)
        self._wait_for_first_tick(loop, prices)

        prices.prices[("BTC", None)] = 150.0
        report = loop.run_once()

        assert report.quotes_failed == []
        assert report.triggered == [alert.id]
        assert len(notifier.sent) == 1

    def test_start_again_after_stop(self, store):
        alert = add_price_alert(store)
        prices = FakePriceSource({("BTC", None): 50.0})
        notifier = FakeNotifier()
        loop = make_loop(store, prices, notifier, interval=60)
        self._wait_for_first_tick(loop, prices)

        prices.prices[("BTC", None)] = 150.0
        thread = loop.start()
        deadline = time.monotonic() + 5
        while not notifier.sent and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=5)

        assert not thread.is_alive()
        assert store.get_alert_by_id(alert.id).active is False
