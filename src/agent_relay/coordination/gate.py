"""Dependency gate: block an agent until every upstream handoff exists."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum

from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.handoffs import HandoffBoard
from agent_relay.coordination.models import Severity

logger = logging.getLogger(__name__)


class GateResult(str, Enum):
    """Outcome of one ``await_dependencies`` call."""

    READY = "ready"
    TIMEOUT = "timeout"
    STOPPED = "stopped"


class DependencyGate:
    """Polls the handoff board for the deliverables an agent depends on.

    ``dependencies`` maps each upstream agent to the resource it publishes.
    There is no permanent-failure result: without ``max_wait_seconds`` the
    gate waits until the handoffs appear or a stop is requested, filing one
    WARNING blocker per missing dependency once ``warn_after_seconds`` pass.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        handoffs: HandoffBoard,
        channel: CoordinationChannel,
        agent: str,
        dependencies: Mapping[str, str],
        poll_interval_seconds: float = 30.0,
        warn_after_seconds: float = 3600.0,
        max_wait_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        stop_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.handoffs = handoffs
        self.channel = channel
        self.agent = agent
        self.dependencies = dict(sorted(dependencies.items()))
        self.poll_interval_seconds = max(0.0, poll_interval_seconds)
        self.warn_after_seconds = max(0.0, warn_after_seconds)
        self.max_wait_seconds = max_wait_seconds
        self._sleep = sleep
        self._monotonic = monotonic
        self._stop_requested = stop_requested or (lambda: False)
        self._warned: set[str] = set()

    def missing(self) -> list[str]:
        """Upstream agents whose handoff marker is not published yet."""

        return [
            dependency
            for dependency, resource in self.dependencies.items()
            if not self.handoffs.is_published(dependency, resource)
        ]

    def await_dependencies(self) -> GateResult:
        if not self.dependencies:
            return GateResult.READY

        started = self._monotonic()
        while True:
            if self._stop_requested():
                logger.info("Dependency wait for %s interrupted by stop request", self.agent)
                return GateResult.STOPPED

            missing = self.missing()
            if not missing:
                logger.info(
                    "All dependencies ready for %s: %s",
                    self.agent,
                    ", ".join(self.dependencies),
                )
                return GateResult.READY

            waited = self._monotonic() - started
            if waited >= self.warn_after_seconds:
                self._warn_missing(missing, waited=waited)
            if self.max_wait_seconds is not None and waited >= self.max_wait_seconds:
                logger.info(
                    "Dependency wait for %s timed out after %.0fs; missing: %s",
                    self.agent,
                    waited,
                    ", ".join(missing),
                )
                return GateResult.TIMEOUT

            logger.info("%s waiting for: %s", self.agent, ", ".join(missing))
            self._sleep_with_stop(self._next_delay(waited))

    def _next_delay(self, waited: float) -> float:
        delay = self.poll_interval_seconds
        if self.max_wait_seconds is not None:
            delay = min(delay, max(0.0, self.max_wait_seconds - waited))
        return delay

    def _warn_missing(self, missing: list[str], *, waited: float) -> None:
        for dependency in missing:
            if dependency in self._warned:
                continue
            self._warned.add(dependency)
            resource = self.dependencies[dependency]
            try:
                self.channel.report_blocker(
                    Severity.WARNING,
                    self.agent,
                    f"Still waiting for {dependency} to publish '{resource}'.",
                    impact=f"{self.agent} cannot start work; waited {int(waited)}s so far.",
                    needs_from=dependency,
                )
            except OSError as error:
                logger.error("Could not file dependency blocker for %s: %s", self.agent, error)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = self._monotonic() + seconds
        while not self._stop_requested() and self._monotonic() < deadline:
            self._sleep(min(0.1, max(0.0, deadline - self._monotonic())))
