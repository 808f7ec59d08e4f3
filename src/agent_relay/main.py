"""CLI entrypoint for agent-relay."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from agent_relay import __version__
from agent_relay.controllers import (
    AgentRelayCliController,
    BlockerListCommand,
    BlockerReportCommand,
    ConfigCheckCommand,
    FeedbackPostCommand,
    HandoffsListCommand,
    MonitorServeCommand,
    ResetAgentCommand,
    RunAgentCommand,
    StatusCommand,
)
from agent_relay.coordination.status import StatusInitError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentRelayCliController()

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Project descriptor (YAML). Defaults to AGENT_RELAY_PROJECT_CONFIG.",
)
_shared_dir_option = click.option(
    "--shared-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Shared coordination directory. Defaults to AGENT_RELAY_SHARED_DIR.",
)
_format_option = click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
    help="Output format.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-relay")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def agent_relay(log_level: str) -> None:
    """Coordinate long-running agents through a shared directory."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_relay.command("run-agent")
@click.option("--agent", required=True, help="Agent name from the project descriptor.")
@_config_option
@_shared_dir_option
@click.option(
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory the executor and test command run in.",
)
@click.option("--fresh-start", is_flag=True, help="Reset the restart counter before starting.")
@click.option("--debug", is_flag=True, help="Analysis-only prompt; the executor must not edit code.")
@click.option(
    "--max-wait",
    "max_wait_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Give up waiting for dependencies after this many seconds (default: wait forever).",
)
@click.option(
    "--no-maintenance-hold",
    is_flag=True,
    help="Exit after a terminal decision instead of keeping the heartbeat alive.",
)
@click.option(
    "--in-process-restarts",
    is_flag=True,
    help="Start the next cycle in this process instead of exiting for the supervisor.",
)
def run_agent(  # noqa: PLR0913
    agent: str,
    config_path: Path | None,
    shared_dir: Path | None,
    workspace: Path | None,
    fresh_start: bool,
    debug: bool,
    max_wait_seconds: float | None,
    no_maintenance_hold: bool,
    in_process_restarts: bool,
) -> None:
    """Run one agent process lifetime (exit 0 means "restart me for the next cycle")."""

    with _cli_errors():
        try:
            lines = CONTROLLER.run_agent(
                RunAgentCommand(
                    agent=agent,
                    config_path=config_path,
                    shared_dir=shared_dir,
                    workspace=workspace,
                    fresh_start=fresh_start,
                    debug=debug,
                    max_wait_seconds=max_wait_seconds,
                    maintenance_hold=not no_maintenance_hold,
                    in_process_restarts=in_process_restarts,
                ),
            )
        except StatusInitError as error:
            raise click.ClickException(f"Startup aborted: {error}") from error
    _emit_lines(lines)


@agent_relay.group()
def config() -> None:
    """Project descriptor commands."""


@config.command("check")
@_config_option
def config_check(config_path: Path | None) -> None:
    """Validate the project descriptor and print the start order."""

    with _cli_errors():
        lines = CONTROLLER.check_config(ConfigCheckCommand(config_path=config_path))
    _emit_lines(lines)


@agent_relay.command("status")
@_config_option
@_shared_dir_option
@_format_option
def status(config_path: Path | None, shared_dir: Path | None, output_format: str) -> None:
    """Show the monitoring snapshot of every agent."""

    with _cli_errors():
        lines = CONTROLLER.status(
            StatusCommand(
                config_path=config_path,
                shared_dir=shared_dir,
                output_format=output_format,
            ),
        )
    _emit_lines(lines)


@agent_relay.group()
def monitor() -> None:
    """Monitoring commands."""


@monitor.command("serve")
@_config_option
@_shared_dir_option
@click.option("--host", default=None, help="Bind host. Defaults to AGENT_RELAY_MONITOR_HOST.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Bind port. Defaults to AGENT_RELAY_MONITOR_PORT.",
)
def monitor_serve(
    config_path: Path | None,
    shared_dir: Path | None,
    host: str | None,
    port: int | None,
) -> None:
    """Serve the read-only JSON monitor."""

    with _cli_errors():
        lines = CONTROLLER.serve_monitor(
            MonitorServeCommand(
                config_path=config_path,
                shared_dir=shared_dir,
                host=host,
                port=port,
            ),
        )
    _emit_lines(lines)


@agent_relay.group()
def blocker() -> None:
    """Blocker commands."""


@blocker.command("report")
@_config_option
@_shared_dir_option
@click.option(
    "--severity",
    type=click.Choice(["INFO", "WARNING", "CRITICAL"], case_sensitive=False),
    required=True,
    help="CRITICAL blockers are also appended to the sync log.",
)
@click.option("--agent", required=True, help="Reporting agent.")
@click.option("--issue", required=True, help="What is blocked.")
@click.option("--impact", default="", help="Who or what is affected.")
@click.option("--needs-from", default="", help="Who can unblock it.")
def blocker_report(  # noqa: PLR0913
    config_path: Path | None,
    shared_dir: Path | None,
    severity: str,
    agent: str,
    issue: str,
    impact: str,
    needs_from: str,
) -> None:
    """File a blocker record."""

    with _cli_errors():
        lines = CONTROLLER.report_blocker(
            BlockerReportCommand(
                severity=severity,
                agent=agent,
                issue=issue,
                impact=impact,
                needs_from=needs_from,
                config_path=config_path,
                shared_dir=shared_dir,
            ),
        )
    _emit_lines(lines)


@blocker.command("list")
@_config_option
@_shared_dir_option
@_format_option
def blocker_list(config_path: Path | None, shared_dir: Path | None, output_format: str) -> None:
    """List blocker records, oldest first."""

    with _cli_errors():
        lines = CONTROLLER.list_blockers(
            BlockerListCommand(
                config_path=config_path,
                shared_dir=shared_dir,
                output_format=output_format,
            ),
        )
    _emit_lines(lines)


@agent_relay.group()
def feedback() -> None:
    """Operator feedback commands."""


@feedback.command("post")
@_config_option
@_shared_dir_option
@click.option("--agent", required=True, help="Agent that should read the feedback.")
@click.option("--message", default=None, help="Feedback text.")
@click.option(
    "--file",
    "message_file",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    default=None,
    help="Read feedback text from a file.",
)
def feedback_post(
    config_path: Path | None,
    shared_dir: Path | None,
    agent: str,
    message: str | None,
    message_file: Path | None,
) -> None:
    """Post guidance that the agent reads at its next cycle boundary."""

    if (message is None) == (message_file is None):
        raise click.UsageError("Pass exactly one of --message or --file.")
    text = message if message is not None else message_file.read_text("utf-8")
    with _cli_errors():
        lines = CONTROLLER.post_feedback(
            FeedbackPostCommand(
                agent=agent,
                message=text,
                config_path=config_path,
                shared_dir=shared_dir,
            ),
        )
    _emit_lines(lines)


@agent_relay.group()
def handoffs() -> None:
    """Handoff commands."""


@handoffs.command("list")
@_config_option
@_shared_dir_option
def handoffs_list(config_path: Path | None, shared_dir: Path | None) -> None:
    """Show which deliverables are published."""

    with _cli_errors():
        lines = CONTROLLER.list_handoffs(
            HandoffsListCommand(config_path=config_path, shared_dir=shared_dir),
        )
    _emit_lines(lines)


@agent_relay.command("reset")
@_config_option
@_shared_dir_option
@click.option("--agent", required=True, help="Agent whose restart counter is reset.")
def reset(config_path: Path | None, shared_dir: Path | None, agent: str) -> None:
    """Reset an agent's restart counter so its next start is cycle 1."""

    with _cli_errors():
        lines = CONTROLLER.reset_agent(
            ResetAgentCommand(agent=agent, config_path=config_path, shared_dir=shared_dir),
        )
    _emit_lines(lines)


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_relay()
