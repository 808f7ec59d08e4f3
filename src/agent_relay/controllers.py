"""Controllers for agent-relay CLI commands."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path

import uvicorn

from agent_relay.config import Settings
from agent_relay.coordination.api import create_monitor_app
from agent_relay.coordination.backend import CliAgentExecutor
from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.common import to_iso
from agent_relay.coordination.cycle import AgentCycleRunner, LifetimeOutcome, RunnerOptions
from agent_relay.coordination.handoffs import HandoffBoard
from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.measurement import TestCommandRunner
from agent_relay.coordination.models import Severity
from agent_relay.coordination.monitor import MonitoringAggregator
from agent_relay.coordination.restart import RestartCounter
from agent_relay.coordination.store import FileRecordStore
from agent_relay.project import ProjectConfig, load_project_config

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunAgentCommand:
    """CLI input for one agent process."""

    agent: str
    config_path: Path | None = None
    shared_dir: Path | None = None
    workspace: Path | None = None
    fresh_start: bool = False
    debug: bool = False
    max_wait_seconds: float | None = None
    maintenance_hold: bool = True
    in_process_restarts: bool = False


@dataclass(slots=True)
class ConfigCheckCommand:
    """CLI input for project descriptor validation."""

    config_path: Path | None = None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for the monitoring snapshot."""

    config_path: Path | None = None
    shared_dir: Path | None = None
    output_format: str = "table"


@dataclass(slots=True)
class MonitorServeCommand:
    """CLI input for the read-only HTTP monitor."""

    config_path: Path | None = None
    shared_dir: Path | None = None
    host: str | None = None
    port: int | None = None


@dataclass(slots=True)
class BlockerReportCommand:
    """CLI input for filing a blocker by hand."""

    severity: str
    agent: str
    issue: str
    impact: str = ""
    needs_from: str = ""
    config_path: Path | None = None
    shared_dir: Path | None = None


@dataclass(slots=True)
class BlockerListCommand:
    """CLI input for blocker listing."""

    config_path: Path | None = None
    shared_dir: Path | None = None
    output_format: str = "table"


@dataclass(slots=True)
class FeedbackPostCommand:
    """CLI input for operator feedback."""

    agent: str
    message: str
    config_path: Path | None = None
    shared_dir: Path | None = None


@dataclass(slots=True)
class HandoffsListCommand:
    """CLI input for handoff listing."""

    config_path: Path | None = None
    shared_dir: Path | None = None


@dataclass(slots=True)
class ResetAgentCommand:
    """CLI input for an explicit restart counter reset."""

    agent: str
    config_path: Path | None = None
    shared_dir: Path | None = None


@dataclass(slots=True)
class _Context:
    settings: Settings
    config: ProjectConfig
    store: FileRecordStore
    layout: CoordinationLayout


class AgentRelayCliController:
    """Wires settings, the project descriptor and the shared store for each command."""

    def run_agent(self, command: RunAgentCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        settings = context.settings
        descriptor = context.config.agent(command.agent)
        options = RunnerOptions(
            workspace=command.workspace or settings.workspace,
            project_description=context.config.description,
            agent_instructions=context.config.load_instructions(descriptor),
            min_sample_size=context.config.min_sample_size,
            heartbeat_interval_seconds=settings.timing.heartbeat_interval_seconds,
            dependency_poll_seconds=settings.timing.dependency_poll_seconds,
            dependency_warn_after_seconds=settings.timing.dependency_warn_after_seconds,
            max_wait_seconds=command.max_wait_seconds,
            test_timeout_seconds=settings.timing.test_timeout_seconds,
            executor_timeout_seconds=settings.timing.executor_timeout_seconds,
            transient_retry_limit=settings.retry.transient_retry_limit,
            status_write_retries=settings.retry.status_write_retries,
            status_write_backoff_seconds=settings.retry.status_write_backoff_seconds,
            fresh_start=command.fresh_start or settings.fresh_start,
            debug=command.debug or settings.debug,
            maintenance_hold=command.maintenance_hold,
        )
        dependencies = context.config.dependency_resources(descriptor.name)

        lines: list[str] = []
        while True:
            runner = AgentCycleRunner(
                descriptor=descriptor,
                store=context.store,
                layout=context.layout,
                executor=CliAgentExecutor(),
                test_runner=TestCommandRunner(),
                options=options,
                dependencies=dependencies,
            )
            outcome = runner.run_lifetime()
            lines.append(_outcome_line(outcome))
            if not command.in_process_restarts or not outcome.restart_requested:
                break
            if runner.stop_requested:
                break
            # Only the first lifetime may reset the counter.
            options = replace(options, fresh_start=False)
        return lines

    def check_config(self, command: ConfigCheckCommand) -> list[str]:
        settings = Settings.from_env()
        config = load_project_config(command.config_path or settings.project_config)
        for descriptor in config.agents:
            config.load_instructions(descriptor)

        lines = [
            f"Project: {config.name}",
            f"Agents: {len(config.agents)} (min sample size {config.min_sample_size})",
            f"Start order: {' -> '.join(config.topological_order())}",
        ]
        for name in config.topological_order():
            descriptor = config.agent(name)
            depends = ", ".join(sorted(descriptor.dependencies)) or "-"
            unblocks = ", ".join(config.dependents(name)) or "-"
            lines.append(
                f"- {descriptor.name} [{descriptor.kind.value}] depends_on={depends} "
                f"unblocks={unblocks} "
                f"deliverable={descriptor.deliverable} max_cycles={descriptor.max_cycles} "
                f"target={descriptor.target_pass_rate}%",
            )
        return lines

    def status(self, command: StatusCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        aggregator = _aggregator(context)
        if command.output_format == "json":
            return [
                json.dumps(
                    {
                        "agents": [view.to_dict() for view in aggregator.agent_views()],
                        "summary": aggregator.summary(),
                    },
                    ensure_ascii=False,
                    indent=2,
                ),
            ]
        return aggregator.render_lines()

    def serve_monitor(self, command: MonitorServeCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        app = create_monitor_app(
            _aggregator(context),
            CoordinationChannel(store=context.store, layout=context.layout),
        )
        host = command.host or context.settings.monitor.host
        port = command.port or context.settings.monitor.port
        logger.info("Serving monitor for %s on http://%s:%d", context.config.name, host, port)
        uvicorn.run(app, host=host, port=port, log_level="info")
        return ["Monitor stopped."]

    def report_blocker(self, command: BlockerReportCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        try:
            severity = Severity(command.severity.upper())
        except ValueError as error:
            raise ValueError(f"Unsupported severity: {command.severity!r}") from error
        channel = CoordinationChannel(store=context.store, layout=context.layout)
        record = channel.report_blocker(
            severity,
            command.agent,
            command.issue,
            impact=command.impact,
            needs_from=command.needs_from,
        )
        return [f"Blocker filed: {record.key}"]

    def list_blockers(self, command: BlockerListCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        channel = CoordinationChannel(store=context.store, layout=context.layout)
        records = channel.list_blockers()
        if command.output_format == "json":
            return [
                json.dumps(
                    {
                        "blockers": [
                            {
                                "severity": record.severity.value,
                                "agent": record.agent,
                                "issue": record.issue,
                                "impact": record.impact,
                                "needs_from": record.needs_from,
                                "created_at": to_iso(record.created_at),
                                "key": record.key,
                            }
                            for record in records
                        ],
                    },
                    ensure_ascii=False,
                    indent=2,
                ),
            ]
        if not records:
            return ["No blockers reported."]
        return [
            f"[{record.severity.value}] {to_iso(record.created_at)} {record.agent}: "
            f"{' '.join(record.issue.split())}"
            for record in records
        ]

    def post_feedback(self, command: FeedbackPostCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        context.config.agent(command.agent)
        if not command.message.strip():
            raise ValueError("Feedback message is empty.")
        channel = CoordinationChannel(store=context.store, layout=context.layout)
        channel.post_feedback(command.agent, command.message)
        return [f"Feedback posted for {command.agent}."]

    def list_handoffs(self, command: HandoffsListCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        board = HandoffBoard(store=context.store, layout=context.layout)
        lines = [f"Handoffs for project {context.config.name}:"]
        for name in context.config.topological_order():
            descriptor = context.config.agent(name)
            marker = board.read(descriptor.name, descriptor.deliverable)
            if marker is None:
                lines.append(f"- {descriptor.name}-{descriptor.deliverable}: pending")
            else:
                lines.append(
                    f"- {descriptor.name}-{descriptor.deliverable}: published "
                    f"{to_iso(marker.created_at)}",
                )
        return lines

    def reset_agent(self, command: ResetAgentCommand) -> list[str]:
        context = _context(command.config_path, command.shared_dir)
        descriptor = context.config.agent(command.agent)
        counter = RestartCounter(store=context.store, layout=context.layout, agent=descriptor.name)
        counter.load(fresh_start=True)
        return [f"Restart counter for {descriptor.name} reset to 0."]


def _context(config_path: Path | None, shared_dir: Path | None) -> _Context:
    settings = Settings.from_env()
    settings.validate()
    config = load_project_config(config_path or settings.project_config)
    return _Context(
        settings=settings,
        config=config,
        store=FileRecordStore(shared_dir or settings.shared_dir),
        layout=CoordinationLayout(config.name),
    )


def _aggregator(context: _Context) -> MonitoringAggregator:
    return MonitoringAggregator(
        store=context.store,
        layout=context.layout,
        expected_agents=context.config.topological_order(),
        target_pass_rates={
            descriptor.name: descriptor.target_pass_rate for descriptor in context.config.agents
        },
        liveness_threshold_seconds=context.settings.timing.liveness_threshold_seconds,
    )


def _outcome_line(outcome: LifetimeOutcome) -> str:
    if outcome.decision is None:
        return f"{outcome.agent}: cycle {outcome.cycle} not started (dependencies {outcome.gate.value})"
    line = f"{outcome.agent}: cycle {outcome.cycle} -> {outcome.decision.value}"
    if outcome.measurement is not None:
        line += (
            f" ({outcome.measurement.tests_pass}/{outcome.measurement.total} passing, "
            f"{outcome.measurement.pass_rate}%)"
        )
    return line

