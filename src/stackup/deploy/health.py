"""Health polling for stackup units.

A unit is waited on with a fixed-interval poll: query status, stop at the
first healthy observation, otherwise sleep and re-check until the timeout
elapses.

State machine::

    WAITING ──(status contains healthy marker)──▶ HEALTHY
       │
       └──(elapsed >= timeout, no healthy observation)──▶ TIMED_OUT

There is no debounce: a single healthy observation ends the wait. The
poller never sleeps past the deadline, so TIMED_OUT is returned at (or just
after) ``timeout`` and HEALTHY no later than one ``interval`` after the
real transition.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from stackup.core.errors import StackError
from stackup.core.logging import get_logger
from stackup.deploy.compose import ComposeClient, UnitStatus

logger = get_logger(__name__)

DEFAULT_INTERVAL = 5.0


class HealthState(str, Enum):
    WAITING = "WAITING"
    HEALTHY = "HEALTHY"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class HealthResult:
    """Outcome of one :meth:`HealthPoller.wait_healthy` call."""

    unit: str
    state: HealthState
    elapsed_seconds: float
    checks: int
    last_status: str = ""

    @property
    def healthy(self) -> bool:
        return self.state == HealthState.HEALTHY


class HealthPoller:
    """Polls a unit's status until healthy or timed out.

    Parameters
    ----------
    compose
        Compose client used for status queries.
    clock
        Monotonic clock; injectable for tests.
    sleep
        Blocking sleep; injectable for tests.
    """

    def __init__(
        self,
        compose: ComposeClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.compose = compose
        self.clock = clock
        self.sleep = sleep

    def check(self, unit: str) -> UnitStatus:
        """Single status query. A failed query reads as ``not_found``."""
        try:
            return self.compose.unit_status(unit)
        except StackError as exc:
            logger.debug("health.query_failed", unit=unit, error=exc.message)
            return UnitStatus(service=unit)

    def wait_healthy(self, unit: str, timeout: float, interval: float = DEFAULT_INTERVAL) -> HealthResult:
        """Block until ``unit`` reports healthy or ``timeout`` seconds pass."""
        start = self.clock()
        checks = 0
        last = ""
        logger.info("health.waiting", unit=unit, timeout=timeout, interval=interval)

        while True:
            status = self.check(unit)
            checks += 1
            last = status.status or status.summary
            elapsed = self.clock() - start

            if status.healthy:
                logger.info("health.healthy", unit=unit, elapsed=round(elapsed, 1), checks=checks)
                return HealthResult(unit, HealthState.HEALTHY, elapsed, checks, last)

            if elapsed >= timeout:
                logger.warning("health.timed_out", unit=unit, timeout=timeout, last_status=last)
                return HealthResult(unit, HealthState.TIMED_OUT, elapsed, checks, last)

            self.sleep(min(interval, timeout - elapsed))
