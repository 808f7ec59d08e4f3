from __future__ import annotations

import sys
from pathlib import Path

import allure
import pytest

from agent_relay.coordination.backend import CliAgentExecutor, ExecutorRequest, ExecutorRunError
from agent_relay.coordination.backend.cli_backend import _build_run_args, parse_executor_output

pytestmark = [
    allure.epic("Agent Lifecycle"),
    allure.feature("Executor Command Rendering"),
]


def test_build_run_args_quotes_every_placeholder() -> None:
    run_args, command_head = _build_run_args(
        command_template="coder --agent {agent} --cycle {cycle} --cwd {workspace} -p {prompt}",
        prompt='fix "the" tests',
        prompt_file=Path("/tmp/prompt.md"),
        workspace=Path("/work/my app"),
        agent="role-hooks",
        cycle=3,
    )

    assert command_head == "coder"
    assert run_args == [
        "coder",
        "--agent",
        "role-hooks",
        "--cycle",
        "3",
        "--cwd",
        "/work/my app",
        "-p",
        'fix "the" tests',
    ]


def test_build_run_args_requires_prompt_placeholder() -> None:
    with pytest.raises(ExecutorRunError, match="must include"):
        _build_run_args(
            command_template="coder --cwd {workspace}",
            prompt="p",
            prompt_file=Path("p.md"),
            workspace=Path("."),
            agent="a",
            cycle=1,
        )


def test_build_run_args_rejects_unknown_placeholder() -> None:
    with pytest.raises(ExecutorRunError, match="Unsupported command template placeholder") as info:
        _build_run_args(
            command_template="coder {prompt_file} --model {model}",
            prompt="p",
            prompt_file=Path("p.md"),
            workspace=Path("."),
            agent="a",
            cycle=1,
        )
    assert info.value.transient is False


def test_parse_executor_output_collects_files_and_errors() -> None:
    output = "\n".join(
        [
            "Reading project...",
            "File modified: src/hooks/useAuth.ts",
            "Created file: src/hooks/useCart.ts",
            "File modified: src/hooks/useAuth.ts",
            "Error: type check failed in useCart.ts",
            "  Failed: 2 snapshots",
            "No errors here",
        ],
    )

    files, errors = parse_executor_output(output)

    assert files == ["src/hooks/useAuth.ts", "src/hooks/useCart.ts"]
    assert errors == ["Error: type check failed in useCart.ts", "Failed: 2 snapshots"]


def _request(workspace: Path, template: str, **kwargs) -> ExecutorRequest:
    return ExecutorRequest(
        agent="role-hooks",
        cycle=2,
        workspace=workspace,
        prompt="Cycle 2 of 5 for role-hooks\nDo the work.",
        command_template=template,
        timeout_seconds=30,
        **kwargs,
    )


def test_echo_agent_round_trip(workspace: Path, echo_command: str) -> None:
    result = CliAgentExecutor(poll_interval_seconds=0.05).run(
        _request(workspace, echo_command),
    )

    assert result.exit_code == 0
    assert not result.timed_out
    assert result.files_modified == ["echo_agent.log"]
    assert result.errors == []
    assert (workspace / "echo_agent.log").read_text("utf-8") == (
        "cycle 2: Cycle 2 of 5 for role-hooks\n"
    )


def test_echo_agent_failure_is_reported(workspace: Path, echo_command: str) -> None:
    result = CliAgentExecutor(poll_interval_seconds=0.05).run(
        _request(workspace, f"{echo_command} --fail"),
    )

    assert result.exit_code == 1
    assert result.errors == ["Error: demo failure requested"]


def test_executor_timeout_returns_124(workspace: Path) -> None:
    template = f"{sys.executable} -c 'import time; time.sleep(30)' {{prompt_file}}"
    request = ExecutorRequest(
        agent="role-hooks",
        cycle=1,
        workspace=workspace,
        prompt="p",
        command_template=template,
        timeout_seconds=0.3,
    )

    result = CliAgentExecutor(poll_interval_seconds=0.05).run(request)

    assert result.timed_out
    assert result.exit_code == 124


def test_missing_executor_binary_is_not_transient(workspace: Path) -> None:
    with pytest.raises(ExecutorRunError, match="not found") as info:
        CliAgentExecutor().run(_request(workspace, "no-such-coding-agent {prompt_file}"))

    assert info.value.transient is False
