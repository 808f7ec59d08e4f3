"""One agent process lifetime: init, wait, run a cycle, decide.

A lifetime runs at most one improvement cycle. Continuing means persisting
the restart counter and returning so the process can exit cleanly; the
supervisor (or ``--in-process-restarts``) starts the next lifetime, which
resumes from durable state only.
"""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from agent_relay.coordination.backend import (
    AgentExecutor,
    ExecutorRequest,
    ExecutorResult,
    ExecutorRunError,
)
from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.common import utc_now
from agent_relay.coordination.gate import DependencyGate, GateResult
from agent_relay.coordination.handoffs import HandoffBoard
from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.measurement import MeasurementRunner
from agent_relay.coordination.models import (
    AgentDescriptor,
    AgentStatus,
    Severity,
    StatusMutation,
    TerminalReason,
    TestMeasurement,
)
from agent_relay.coordination.progress import ProgressLog
from agent_relay.coordination.prompts import CyclePromptContext, build_cycle_prompt
from agent_relay.coordination.restart import RestartCounter
from agent_relay.coordination.status import Heartbeat, StatusHandle, StatusRecordManager
from agent_relay.coordination.store import RecordStore

logger = logging.getLogger(__name__)


class CycleDecision(str, Enum):
    """What the Deciding state concluded for the cycle just measured."""

    CONTINUE = "continue"
    TARGET_REACHED = "target_reached"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class RunnerOptions:
    """Per-process knobs; durable state lives in the store, not here."""

    workspace: Path = field(default_factory=Path.cwd)
    project_description: str = ""
    agent_instructions: str = ""
    min_sample_size: int = 1
    heartbeat_interval_seconds: float = 60.0
    dependency_poll_seconds: float = 30.0
    dependency_warn_after_seconds: float = 3600.0
    max_wait_seconds: float | None = None
    test_timeout_seconds: float = 900.0
    executor_timeout_seconds: float = 3600.0
    transient_retry_limit: int = 2
    transient_exit_codes: tuple[int, ...] = (137, 143)
    status_write_retries: int = 3
    status_write_backoff_seconds: float = 0.2
    fresh_start: bool = False
    debug: bool = False
    maintenance_hold: bool = True
    maintenance_poll_seconds: float = 30.0


@dataclass(slots=True)
class LifetimeOutcome:
    """Result of one ``run_lifetime`` call."""

    agent: str
    cycle: int
    gate: GateResult
    decision: CycleDecision | None = None
    measurement: TestMeasurement | None = None

    @property
    def restart_requested(self) -> bool:
        return self.decision == CycleDecision.CONTINUE

    @property
    def finished(self) -> bool:
        return self.decision in {CycleDecision.TARGET_REACHED, CycleDecision.EXHAUSTED}


class AgentCycleRunner:
    """Drives one agent through Initializing, Waiting, Running and Deciding."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        descriptor: AgentDescriptor,
        store: RecordStore,
        layout: CoordinationLayout,
        executor: AgentExecutor,
        test_runner: MeasurementRunner,
        options: RunnerOptions | None = None,
        dependencies: Mapping[str, str] | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.descriptor = descriptor
        self.options = options or RunnerOptions()
        self.layout = layout
        self.executor = executor
        self.test_runner = test_runner
        if dependencies is None:
            dependencies = {name: "complete" for name in descriptor.dependencies}
        self.dependencies = dict(dependencies)
        self._sleep = sleep
        self._monotonic = monotonic

        self.channel = CoordinationChannel(store=store, layout=layout, clock=clock)
        self.handoffs = HandoffBoard(store=store, layout=layout, clock=clock)
        self.counter = RestartCounter(store=store, layout=layout, agent=descriptor.name)
        self.progress = ProgressLog(store=store, layout=layout, agent=descriptor.name, clock=clock)
        self.status = StatusRecordManager(
            store=store,
            layout=layout,
            agent=descriptor.name,
            max_cycles=descriptor.max_cycles,
            channel=self.channel,
            clock=clock,
            write_retries=self.options.status_write_retries,
            write_backoff_seconds=self.options.status_write_backoff_seconds,
            sleep=sleep,
        )

        self.cycle = 0
        self._handle: StatusHandle | None = None
        self._heartbeat: Heartbeat | None = None
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @property
    def agent(self) -> str:
        return self.descriptor.name

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, *, signal_name: str = "manual") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name
        logger.info("Stop requested for %s (%s)", self.agent, signal_name)

    def run_lifetime(self) -> LifetimeOutcome:
        """Run exactly one process lifetime; everything needed to resume is persisted."""

        with self._signal_handlers():
            self.initialize()
            try:
                return self._run_initialized()
            finally:
                self._stop_heartbeat()

    def initialize(self) -> StatusHandle:
        """Load the restart counter, write the initial record, then start the heartbeat.

        Raises ``StatusInitError`` if the initial record cannot be written.
        """

        previous = self.counter.load(fresh_start=self.options.fresh_start)
        self.cycle = previous + 1
        self._handle = self.status.init_status(self.cycle)
        self._heartbeat = Heartbeat(
            self.status,
            self._handle,
            interval_seconds=self.options.heartbeat_interval_seconds,
        )
        self._heartbeat.start()
        self.progress.log(
            f"Agent {self.agent} starting cycle {self.cycle} of {self.descriptor.max_cycles}",
        )
        if self.options.debug:
            self.progress.log("DEBUG MODE ENABLED - analysis only, no code modifications")
        return self._handle

    def wait_for_dependencies(self) -> GateResult:
        self.status.update(StatusMutation(status=AgentStatus.WAITING))
        if self.dependencies:
            self.progress.log(f"Waiting for dependencies: {', '.join(sorted(self.dependencies))}")
        gate = DependencyGate(
            handoffs=self.handoffs,
            channel=self.channel,
            agent=self.agent,
            dependencies=self.dependencies,
            poll_interval_seconds=self.options.dependency_poll_seconds,
            warn_after_seconds=self.options.dependency_warn_after_seconds,
            max_wait_seconds=self.options.max_wait_seconds,
            sleep=self._sleep,
            monotonic=self._monotonic,
            stop_requested=lambda: self._stop_requested,
        )
        result = gate.await_dependencies()
        if result == GateResult.READY and self.dependencies:
            self.progress.log("All dependencies ready")
        return result

    def run_cycle(self) -> TestMeasurement:
        """Baseline, execute, re-measure and record; returns the post-cycle measurement."""

        self.status.update(StatusMutation(status=AgentStatus.RUNNING, cycle=self.cycle))
        self.progress.log(f"Starting improvement cycle {self.cycle}")

        feedback = self.channel.check_feedback(self.agent)
        if feedback is not None:
            self.progress.log("Operator feedback received; prepending to instructions")

        errors: list[str] = []
        baseline = self._measure("Baseline", errors)
        prompt = build_cycle_prompt(
            CyclePromptContext(
                agent=self.agent,
                project_description=self.options.project_description,
                cycle=self.cycle,
                max_cycles=self.descriptor.max_cycles,
                target_pass_rate=self.descriptor.target_pass_rate,
                baseline=baseline,
                feedback=feedback.content if feedback is not None else None,
                agent_instructions=self.options.agent_instructions,
                debug=self.options.debug,
            ),
        )
        execution = self._execute(prompt, errors)
        after = self._measure("Post-cycle", errors)

        self.status.update(
            StatusMutation(
                cycle=self.cycle,
                tests_pass=after.tests_pass,
                tests_fail=after.tests_fail,
                pass_rate=after.pass_rate,
                files_modified=tuple(execution.files_modified) if execution else (),
                errors=(*errors, *self.progress.drain_failures()),
                work_summary=_work_summary(self.cycle, after),
            ),
        )
        self.progress.log(f"Cycle {self.cycle} complete: {after.pass_rate}% pass rate")
        return after

    def final_measurement(self) -> TestMeasurement:
        """Measure without invoking the executor; used when cycles are already spent."""

        errors: list[str] = []
        measurement = self._measure("Final", errors)
        self.status.update(
            StatusMutation(
                status=AgentStatus.RUNNING,
                tests_pass=measurement.tests_pass,
                tests_fail=measurement.tests_fail,
                pass_rate=measurement.pass_rate,
                errors=(*errors, *self.progress.drain_failures()),
                work_summary=_work_summary(self.cycle, measurement),
            ),
        )
        return measurement

    def decide(self, measurement: TestMeasurement) -> CycleDecision:
        if self._target_met(measurement):
            summary = _work_summary(self.cycle, measurement)
            self.handoffs.publish(self.agent, self.descriptor.deliverable, payload=summary)
            self.status.update(
                StatusMutation(
                    status=AgentStatus.COMPLETED,
                    reason=TerminalReason.TARGET_REACHED,
                ),
            )
            self.progress.log(
                f"Target {self.descriptor.target_pass_rate}% reached "
                f"({measurement.pass_rate}%); published '{self.descriptor.deliverable}'",
            )
            return CycleDecision.TARGET_REACHED

        if self.cycle >= self.descriptor.max_cycles:
            self.status.update(
                StatusMutation(
                    status=AgentStatus.COMPLETED,
                    reason=TerminalReason.MAX_RESTARTS_REACHED,
                ),
            )
            if self.cycle > self.descriptor.max_cycles:
                # Escalated by the lifetime that spent the last cycle.
                self.progress.log("Cycles already exhausted; final measurement below target")
                return CycleDecision.EXHAUSTED
            self.counter.persist(self.cycle)
            self.channel.report_blocker(
                Severity.WARNING,
                self.agent,
                (
                    f"{self.agent} used all {self.descriptor.max_cycles} cycles at "
                    f"{measurement.pass_rate}% (target {self.descriptor.target_pass_rate}%)."
                ),
                impact=(
                    f"Deliverable '{self.descriptor.deliverable}' was not published; "
                    "dependent agents stay blocked."
                ),
                needs_from="operator",
            )
            self.progress.log(
                f"Maximum cycles reached ({self.descriptor.max_cycles}); work incomplete",
            )
            return CycleDecision.EXHAUSTED

        self.counter.persist(self.cycle)
        self.progress.log(f"Cycle {self.cycle} below target; restart requested")
        return CycleDecision.CONTINUE

    def hold_maintenance(self) -> None:
        """Keep the heartbeat alive after a terminal decision until a stop is requested."""

        self.progress.log("Entering maintenance mode")
        while not self._stop_requested:
            self._sleep_with_stop(self.options.maintenance_poll_seconds)
        self.progress.log("Maintenance mode ended")

    def _run_initialized(self) -> LifetimeOutcome:
        if self.handoffs.is_published(self.agent, self.descriptor.deliverable):
            self.status.update(
                StatusMutation(
                    status=AgentStatus.COMPLETED,
                    reason=TerminalReason.TARGET_REACHED,
                ),
            )
            self.progress.log(f"Deliverable '{self.descriptor.deliverable}' already published")
            outcome = LifetimeOutcome(
                agent=self.agent,
                cycle=self.cycle,
                gate=GateResult.READY,
                decision=CycleDecision.TARGET_REACHED,
            )
            self._maybe_hold()
            return outcome

        gate_result = self.wait_for_dependencies()
        if gate_result != GateResult.READY:
            return LifetimeOutcome(agent=self.agent, cycle=self.cycle, gate=gate_result)

        if self.cycle > self.descriptor.max_cycles:
            logger.info(
                "%s starts at cycle %d beyond max %d; deciding on a final measurement",
                self.agent,
                self.cycle,
                self.descriptor.max_cycles,
            )
            measurement = self.final_measurement()
        else:
            measurement = self.run_cycle()

        decision = self.decide(measurement)
        outcome = LifetimeOutcome(
            agent=self.agent,
            cycle=self.cycle,
            gate=gate_result,
            decision=decision,
            measurement=measurement,
        )
        if outcome.finished:
            self._maybe_hold()
        return outcome

    def _maybe_hold(self) -> None:
        if self.options.maintenance_hold:
            self.hold_maintenance()

    def _target_met(self, measurement: TestMeasurement) -> bool:
        return (
            measurement.total > 0
            and measurement.total >= self.options.min_sample_size
            and measurement.pass_rate >= self.descriptor.target_pass_rate
        )

    def _measure(self, label: str, errors: list[str]) -> TestMeasurement:
        attempts = self.options.transient_retry_limit + 1
        measurement = TestMeasurement(ok=False, error="Test command was not run.")
        for attempt in range(1, attempts + 1):
            measurement = self.test_runner.run(
                self.descriptor.test_command,
                workspace=self.options.workspace,
                timeout_seconds=self.options.test_timeout_seconds,
            )
            if measurement.ok or not measurement.transient or attempt == attempts:
                break
            logger.warning(
                "%s measurement for %s failed transiently (attempt %d/%d): %s",
                label,
                self.agent,
                attempt,
                attempts,
                measurement.error,
            )

        if measurement.output:
            self.progress.save_test_output(measurement.output)
        if not measurement.ok:
            message = f"{label} tests: {measurement.error}"
            errors.append(message)
            self.progress.log(message)
        else:
            self.progress.log(
                f"{label} tests: {measurement.tests_pass} passed, "
                f"{measurement.tests_fail} failed ({measurement.pass_rate}%)",
            )
        return measurement

    def _execute(self, prompt: str, errors: list[str]) -> ExecutorResult | None:
        attempts = self.options.transient_retry_limit + 1
        request = ExecutorRequest(
            agent=self.agent,
            cycle=self.cycle,
            workspace=self.options.workspace,
            prompt=prompt,
            command_template=self.descriptor.cycle_command,
            timeout_seconds=self.options.executor_timeout_seconds,
            debug=self.options.debug,
            stop_requested=lambda: self._stop_requested,
        )
        self.progress.log(f"Invoking agent executor for cycle {self.cycle}")
        result: ExecutorResult | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = self.executor.run(request)
            except ExecutorRunError as error:
                if error.transient and attempt < attempts:
                    logger.warning(
                        "Executor for %s failed transiently (attempt %d/%d): %s",
                        self.agent,
                        attempt,
                        attempts,
                        error,
                    )
                    continue
                errors.append(f"Executor: {error}")
                self.progress.log(f"Executor failed: {error}")
                return None
            if result.exit_code in self.options.transient_exit_codes and attempt < attempts:
                logger.warning(
                    "Executor for %s exited with %d; retrying (attempt %d/%d)",
                    self.agent,
                    result.exit_code,
                    attempt,
                    attempts,
                )
                continue
            break

        if result is None:
            return None
        errors.extend(result.errors)
        if result.timed_out:
            errors.append(f"Executor timed out after {self.options.executor_timeout_seconds}s.")
        elif result.exit_code != 0:
            errors.append(f"Executor exited with code {result.exit_code}.")
        for path in result.files_modified:
            self.progress.log(f"Modified: {path}")
        return result

    def _stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = self._monotonic() + seconds
        while not self._stop_requested and self._monotonic() < deadline:
            self._sleep(min(0.1, max(0.0, deadline - self._monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _work_summary(cycle: int, measurement: TestMeasurement) -> str:
    return (
        f"Cycle {cycle}: {measurement.tests_pass}/{measurement.total} tests passing "
        f"({measurement.pass_rate}%)"
    )
