"""Polling waiter for asynchronous control-plane operations."""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ..exceptions import (
    ControlPlaneError,
    RenameNotConvergedError,
    ResourceNotFoundError,
    TerminalStatusError,
    WaitCancelledError,
    WaitTimeoutError,
)
from ..models import AVAILABLE, FAILED_STATUSES, ClusterResource, InstanceResource
from .control_plane import CloudControlPlane

logger = structlog.get_logger()


class Clock(ABC):
    @abstractmethod
    def monotonic(self) -> float: ...

    @abstractmethod
    def sleep(self, seconds: float) -> None: ...


class SystemClock(Clock):
    """Wall clock whose sleeps return early when the cancel event is set."""

    def __init__(self, cancel_event: Optional[threading.Event] = None):
        self.cancel_event = cancel_event

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if self.cancel_event is not None:
            self.cancel_event.wait(seconds)
        else:
            time.sleep(seconds)


@dataclass(frozen=True)
class WaitPolicy:
    poll_interval: float = 10.0
    rename_settle_delay: float = 40.0
    not_found_retry_interval: float = 2.0
    max_not_found_retries: int = 60
    max_polls: int = 360
    timeout: float = 3600.0

    @classmethod
    def from_settings(cls, settings) -> "WaitPolicy":
        return cls(
            poll_interval=settings.poll_interval_seconds,
            rename_settle_delay=settings.rename_settle_seconds,
            not_found_retry_interval=settings.not_found_retry_seconds,
            max_not_found_retries=settings.max_not_found_retries,
            max_polls=settings.max_polls,
            timeout=settings.wait_timeout_seconds,
        )


@dataclass(frozen=True)
class StatusEvent:
    """One observed status of the resource being waited on."""

    step: str
    resource: str
    status: str
    poll: int
    elapsed: float


StatusListener = Callable[[StatusEvent], None]


class AsyncOperationWaiter:
    """
    Blocks until a resource reports the "available" status.

    Every wait is bounded by ``policy.max_polls`` and ``policy.timeout`` and
    stops early when ``cancel_event`` is set.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        policy: Optional[WaitPolicy] = None,
        listener: Optional[StatusListener] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.cancel_event = cancel_event
        self.clock = clock or SystemClock(cancel_event)
        self.policy = policy or WaitPolicy()
        self.listener = listener

    def wait_until_available(
        self,
        fetch_status: Callable[[], str],
        resource: str,
        step: Optional[str] = None,
        settle_delay: float = 0.0,
        tolerate_not_found: bool = False,
    ) -> str:
        """
        Poll ``fetch_status`` until it returns "available".

        Args:
            fetch_status: Returns the current provider status string
            resource: Identifier used in logs, events and errors
            step: Name of the promotion step being waited on
            settle_delay: Seconds to sleep before the first check
            tolerate_not_found: Retry ResourceNotFoundError up to
                ``policy.max_not_found_retries`` times (rename propagation)

        Returns:
            The final status

        Raises:
            WaitTimeoutError: If the poll cap or deadline is reached
            RenameNotConvergedError: If the resource stays unresolvable
            TerminalStatusError: If the resource reaches a failure status
            WaitCancelledError: If the cancel event is set
            ControlPlaneError: For any other provider error
        """
        policy = self.policy
        step = step or resource
        start = self.clock.monotonic()
        polls = 0
        not_found = 0
        last_status: Optional[str] = None

        log = logger.bind(step=step, resource=resource)

        if settle_delay > 0:
            log.info("Waiting for change to settle", seconds=settle_delay)
            self._sleep(settle_delay, start)

        while True:
            self._check(resource, last_status, start, polls)

            try:
                status = fetch_status()
            except ResourceNotFoundError as e:
                if not tolerate_not_found:
                    e.last_status = last_status
                    raise

                not_found += 1
                if not_found > policy.max_not_found_retries:
                    raise RenameNotConvergedError(resource, not_found)

                log.info("Still waiting for the rename to happen", attempt=not_found)
                self._sleep(policy.not_found_retry_interval, start)
                continue
            except ControlPlaneError as e:
                e.last_status = last_status
                raise

            polls += 1
            elapsed = self.clock.monotonic() - start

            if status != last_status:
                log.info("Status changed", status=status, previous=last_status, poll=polls)
            else:
                log.debug("Status unchanged", status=status, poll=polls)
            last_status = status

            self._emit(StatusEvent(step, resource, status, polls, elapsed))

            if status == AVAILABLE:
                return status

            if status in FAILED_STATUSES:
                raise TerminalStatusError(resource, status)

            if polls >= policy.max_polls:
                raise WaitTimeoutError(resource, last_status, polls, elapsed)

            self._sleep(policy.poll_interval, start)

    def wait_for_cluster(
        self,
        control_plane: CloudControlPlane,
        cluster_id: str,
        step: Optional[str] = None,
        after_rename: bool = False,
    ) -> ClusterResource:
        latest: Optional[ClusterResource] = None

        def fetch() -> str:
            nonlocal latest
            latest = control_plane.describe_cluster(cluster_id)
            return latest.status

        self.wait_until_available(
            fetch,
            resource=cluster_id,
            step=step,
            settle_delay=self.policy.rename_settle_delay if after_rename else 0.0,
            tolerate_not_found=after_rename,
        )
        return latest  # type: ignore

    def wait_for_instance(
        self,
        control_plane: CloudControlPlane,
        instance_id: str,
        step: Optional[str] = None,
        after_rename: bool = False,
    ) -> InstanceResource:
        latest: Optional[InstanceResource] = None

        def fetch() -> str:
            nonlocal latest
            latest = control_plane.describe_instance(instance_id)
            return latest.status

        self.wait_until_available(
            fetch,
            resource=instance_id,
            step=step,
            settle_delay=self.policy.rename_settle_delay if after_rename else 0.0,
            tolerate_not_found=after_rename,
        )
        return latest  # type: ignore

    def _emit(self, event: StatusEvent) -> None:
        if self.listener is not None:
            self.listener(event)

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _check(self, resource: str, last_status: Optional[str], start: float, polls: int) -> None:
        if self._cancelled():
            raise WaitCancelledError(resource, last_status)

        elapsed = self.clock.monotonic() - start
        if elapsed >= self.policy.timeout:
            raise WaitTimeoutError(resource, last_status, polls, elapsed)

    def _sleep(self, seconds: float, start: float) -> None:
        remaining = self.policy.timeout - (self.clock.monotonic() - start)
        self.clock.sleep(max(0.0, min(seconds, remaining)))
