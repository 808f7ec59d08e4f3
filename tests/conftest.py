"""Shared test fixtures."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from agent_relay.coordination.backend import ExecutorRequest, ExecutorResult
from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.models import TestMeasurement
from agent_relay.coordination.store import FileRecordStore

_ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m agent_relay.coordination.backend.echo_agent "
    "--workspace {workspace} --prompt-file {prompt_file}"
)


class FakeClock:
    """Deterministic, manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class CounterFileExecutor:
    """Increments ``counter.txt`` in the workspace, like an agent making progress."""

    workspace: Path
    calls: list[ExecutorRequest] = field(default_factory=list)

    def run(self, request: ExecutorRequest) -> ExecutorResult:
        self.calls.append(request)
        counter = self.workspace / "counter.txt"
        value = int(counter.read_text("utf-8")) if counter.exists() else 0
        counter.write_text(str(value + 1), "utf-8")
        return ExecutorResult(exit_code=0, timed_out=False, files_modified=["counter.txt"])


@dataclass
class CounterFileTestRunner:
    """Maps the workspace counter value to a fixed (passed, failed) pair."""

    __test__ = False

    workspace: Path
    results: dict[int, tuple[int, int]]
    calls: int = 0

    def run(self, command: str, *, workspace: Path, timeout_seconds: float) -> TestMeasurement:
        self.calls += 1
        counter = self.workspace / "counter.txt"
        value = int(counter.read_text("utf-8")) if counter.exists() else 0
        tests_pass, tests_fail = self.results[min(value, max(self.results))]
        return TestMeasurement(
            tests_pass=tests_pass,
            tests_fail=tests_fail,
            output=f"Tests: {tests_fail} failed, {tests_pass} passed, "
            f"{tests_pass + tests_fail} total",
        )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path) -> FileRecordStore:
    return FileRecordStore(tmp_path / "shared")


@pytest.fixture()
def layout() -> CoordinationLayout:
    return CoordinationLayout("demo")


@pytest.fixture()
def channel(store: FileRecordStore, layout: CoordinationLayout, clock: FakeClock):
    return CoordinationChannel(store=store, layout=layout, clock=clock)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture()
def echo_command() -> str:
    """Executor template that runs the bundled demo agent."""
    return _ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def counter_executor(workspace: Path) -> CounterFileExecutor:
    return CounterFileExecutor(workspace=workspace)


@pytest.fixture()
def counter_test_runner(workspace: Path):
    """Factory for a test runner whose results depend on the workspace counter."""

    def _make(results: dict[int, tuple[int, int]]) -> CounterFileTestRunner:
        return CounterFileTestRunner(workspace=workspace, results=results)

    return _make
