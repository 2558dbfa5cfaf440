import threading
import time

import pytest

from promoter.engine.waiter import AsyncOperationWaiter, StatusEvent, SystemClock, WaitPolicy
from promoter.exceptions import (
    RenameNotConvergedError,
    ResourceNotFoundError,
    TerminalStatusError,
    UnclassifiedProviderError,
    WaitCancelledError,
    WaitTimeoutError,
)

from conftest import FakeControlPlane


def sequence(*items):
    """Fetch function returning (or raising) each item in turn."""
    remaining = list(items)
    calls = []

    def fetch():
        calls.append(len(calls))
        item = remaining.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    fetch.calls = calls
    return fetch


def not_found(identifier="sitedb-dev"):
    return ResourceNotFoundError("DescribeDBClusters", identifier, "DBClusterNotFoundFault", "missing")


class TestAvailability:
    def test_returns_on_first_available(self, waiter, clock):
        fetch = sequence("available")

        assert waiter.wait_until_available(fetch, resource="sitedb-dev") == "available"
        assert len(fetch.calls) == 1
        assert clock.sleeps == []

    def test_polls_at_fixed_interval_until_available(self, waiter, clock):
        fetch = sequence("creating", "backing-up", "available")

        waiter.wait_until_available(fetch, resource="sitedb-dev")

        assert len(fetch.calls) == 3
        assert clock.sleeps == [10.0, 10.0]

    @pytest.mark.parametrize("status", ["available-read-only", "Available", "AVAILABLE", " available"])
    def test_near_matches_keep_polling(self, waiter, status):
        fetch = sequence(status, "available")

        waiter.wait_until_available(fetch, resource="sitedb-dev")

        assert len(fetch.calls) == 2

    @pytest.mark.parametrize("status", ["failed", "deleting", "incompatible-restore"])
    def test_failure_status_aborts(self, waiter, status):
        fetch = sequence("creating", status, "available")

        with pytest.raises(TerminalStatusError) as exc_info:
            waiter.wait_until_available(fetch, resource="sitedb-dev")

        assert exc_info.value.last_status == status
        assert len(fetch.calls) == 2


class TestBounds:
    def test_max_polls_raises_timeout(self, clock, policy):
        waiter = AsyncOperationWaiter(clock=clock, policy=WaitPolicy(max_polls=3))
        fetch = sequence(*["modifying"] * 10)

        with pytest.raises(WaitTimeoutError) as exc_info:
            waiter.wait_until_available(fetch, resource="sitedb-test")

        assert exc_info.value.polls == 3
        assert exc_info.value.last_status == "modifying"
        assert len(fetch.calls) == 3

    def test_deadline_raises_timeout(self, clock):
        waiter = AsyncOperationWaiter(
            clock=clock, policy=WaitPolicy(poll_interval=10.0, timeout=25.0)
        )
        fetch = sequence(*["modifying"] * 10)

        with pytest.raises(WaitTimeoutError):
            waiter.wait_until_available(fetch, resource="sitedb-test")

        assert len(fetch.calls) == 3
        assert clock.now == pytest.approx(25.0)

    def test_cancel_event_stops_wait(self, clock, policy):
        cancel = threading.Event()
        waiter = AsyncOperationWaiter(clock=clock, policy=policy, cancel_event=cancel)

        def fetch():
            cancel.set()
            return "modifying"

        with pytest.raises(WaitCancelledError) as exc_info:
            waiter.wait_until_available(fetch, resource="sitedb-test")

        assert exc_info.value.last_status == "modifying"


class TestRenamePropagation:
    def test_settle_delay_precedes_first_check(self, waiter, clock):
        fetch = sequence("available")

        waiter.wait_until_available(fetch, resource="sitedb-dev", settle_delay=40.0)

        assert clock.sleeps == [40.0]

    def test_not_found_is_retried_until_available(self, waiter, clock):
        fetch = sequence(not_found(), not_found(), "renaming", "available")

        status = waiter.wait_until_available(
            fetch, resource="sitedb-dev", settle_delay=40.0, tolerate_not_found=True
        )

        assert status == "available"
        assert clock.sleeps == [40.0, 2.0, 2.0, 10.0]

    def test_not_found_without_rename_propagates(self, waiter):
        fetch = sequence(not_found(), "available")

        with pytest.raises(ResourceNotFoundError):
            waiter.wait_until_available(fetch, resource="sitedb-dev")

    def test_not_found_retries_are_bounded(self, waiter, policy):
        fetch = sequence(*[not_found()] * 20)

        with pytest.raises(RenameNotConvergedError) as exc_info:
            waiter.wait_until_available(fetch, resource="sitedb-dev", tolerate_not_found=True)

        assert exc_info.value.attempts == policy.max_not_found_retries + 1

    def test_other_errors_abort_without_retry(self, waiter):
        error = UnclassifiedProviderError(
            "DescribeDBClusters", "sitedb-dev", "AccessDenied", "not authorized"
        )
        fetch = sequence(error, "available")

        with pytest.raises(UnclassifiedProviderError):
            waiter.wait_until_available(fetch, resource="sitedb-dev", tolerate_not_found=True)

        assert len(fetch.calls) == 1

    def test_provider_error_carries_last_status(self, waiter):
        error = UnclassifiedProviderError(
            "DescribeDBClusters", "sitedb-dev", "Throttling", "Rate exceeded"
        )
        fetch = sequence("creating", "creating", error)

        with pytest.raises(UnclassifiedProviderError) as exc_info:
            waiter.wait_until_available(fetch, resource="sitedb-dev")

        assert exc_info.value.last_status == "creating"

    def test_not_found_mid_wait_carries_last_status(self, waiter):
        fetch = sequence("modifying", not_found())

        with pytest.raises(ResourceNotFoundError) as exc_info:
            waiter.wait_until_available(fetch, resource="sitedb-dev")

        assert exc_info.value.last_status == "modifying"


class TestStatusEvents:
    def test_every_poll_emits_an_event(self, waiter, events):
        fetch = sequence("creating", "creating", "available")

        waiter.wait_until_available(fetch, resource="sitedb-dev", step="create cluster sitedb-dev")

        assert [e.status for e in events] == ["creating", "creating", "available"]
        assert [e.poll for e in events] == [1, 2, 3]
        assert all(isinstance(e, StatusEvent) for e in events)
        assert events[0].step == "create cluster sitedb-dev"
        assert events[-1].elapsed == pytest.approx(20.0)


class TestResourceWaits:
    def test_wait_for_cluster_returns_latest_resource(self, waiter):
        cp = FakeControlPlane(polls_until_available=2)
        cp.create_cluster("sitedb-dev", "sitedb", "admin", "pw")

        cluster = waiter.wait_for_cluster(cp, "sitedb-dev")

        assert cluster.status == "available"
        assert cluster.endpoint == "sitedb-dev.cluster.example.com"

    def test_wait_for_renamed_instance_tolerates_propagation(self, waiter, clock):
        cp = FakeControlPlane(rename_invisible_polls=3)
        cp.add_slot("sitedb-test")
        cp.rename_instance("sitedb-test", "sitedb-dev", publicly_accessible=True)

        instance = waiter.wait_for_instance(cp, "sitedb-dev", after_rename=True)

        assert instance.status == "available"
        assert instance.publicly_accessible is True
        assert clock.sleeps[:4] == [40.0, 2.0, 2.0, 2.0]


class TestSystemClock:
    def test_sleep_returns_at_once_when_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        clock = SystemClock(cancel)

        started = time.monotonic()
        clock.sleep(60)

        assert time.monotonic() - started < 5

    def test_sleep_wakes_when_cancelled_from_another_thread(self):
        cancel = threading.Event()
        clock = SystemClock(cancel)
        timer = threading.Timer(0.05, cancel.set)
        timer.start()

        started = time.monotonic()
        try:
            clock.sleep(60)
        finally:
            timer.cancel()

        assert time.monotonic() - started < 5

    def test_sleep_without_cancel_event(self):
        clock = SystemClock()

        started = clock.monotonic()
        clock.sleep(0.01)

        assert clock.monotonic() > started

    def test_cancelled_wait_stops_polling(self):
        cancel = threading.Event()
        waiter = AsyncOperationWaiter(policy=WaitPolicy(poll_interval=60), cancel_event=cancel)
        timer = threading.Timer(0.05, cancel.set)

        started = time.monotonic()
        timer.start()
        try:
            with pytest.raises(WaitCancelledError):
                waiter.wait_until_available(lambda: "modifying", resource="sitedb-test")
        finally:
            timer.cancel()

        assert time.monotonic() - started < 5
