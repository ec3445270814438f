"""Bounded polling for provider convergence.

Provider creates and deletes are asynchronous on the provider side: a
scaling group enters a "Delete in progress" state and only disappears
from listings later; a security group cannot be deleted while network
interfaces still reference it. The :class:`Waiter` bridges synchronous
orchestration code and that eventual consistency.

Semantics:
    - ``check`` is invoked up to ``retries`` times.
    - ``check`` returns ``True`` when converged, ``False`` to keep waiting,
      or a ``(done, state)`` tuple to also report the state it observed.
    - An exception raised by ``check`` is non-retryable and propagates
      unchanged on the spot.
    - Between checks the waiter sleeps ``delay`` seconds on its
      :class:`Clock`; no sleep follows the final check.
    - When the budget is spent, :class:`ConvergenceTimeoutError` carries
      the waiter name, the number of checks and the last observed state.

Example:
    >>> waiter = Waiter(
    ...     name="Stop Autoscaling es-dev-prod1a2b3c4d",
    ...     check=lambda: asg_is_gone(),
    ...     retries=50,
    ...     delay=10.0,
    ... )
    >>> waiter.wait()

Tests inject :class:`FakeClock` to simulate elapsed time without sleeping.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, Union

from envspine.core.errors import ConvergenceTimeoutError, ValidationError
from envspine.core.logging import get_logger

logger = get_logger(__name__)

CheckResult = Union[bool, tuple[bool, Union[str, None]]]


class Clock(Protocol):
    def sleep(self, seconds: float) -> None: ...

    def monotonic(self) -> float: ...


class RealClock:
    """Wall clock backed by :mod:`time`."""

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def monotonic(self) -> float:
        return time.monotonic()


class FakeClock:
    """Clock that advances instantly; records every sleep."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def monotonic(self) -> float:
        return self.now

    @property
    def elapsed(self) -> float:
        return sum(self.sleeps)


@dataclass
class Waiter:
    """Polls ``check`` until it reports done or the retry budget runs out."""

    name: str
    check: Callable[[], CheckResult]
    retries: int = 50
    delay: float = 10.0
    clock: Clock = field(default_factory=RealClock)
    attempts: int = field(default=0, init=False)
    last_state: str | None = field(default=None, init=False)

    def wait(self) -> int:
        """Block until converged.

        Returns:
            Number of checks performed.

        Raises:
            ConvergenceTimeoutError: If ``retries`` checks never reported done.
            Exception: Whatever ``check`` raised, unchanged.
        """
        if self.retries < 1:
            raise ValidationError(f"Waiter '{self.name}' needs a positive retry budget")

        started = self.clock.monotonic()
        for attempt in range(1, self.retries + 1):
            self.attempts = attempt
            done = self._run_check()
            if done:
                logger.debug(
                    "waiter.converged",
                    waiter=self.name,
                    attempts=attempt,
                    elapsed=round(self.clock.monotonic() - started, 3),
                )
                return attempt

            if attempt < self.retries:
                self.clock.sleep(self.delay)

        logger.warning("waiter.timed_out", waiter=self.name, attempts=self.attempts, last_state=self.last_state)
        raise ConvergenceTimeoutError(self.name, self.attempts, self.last_state)

    def _run_check(self) -> bool:
        result = self.check()
        if isinstance(result, tuple):
            done, state = result
            self.last_state = state
            return bool(done)
        return bool(result)
