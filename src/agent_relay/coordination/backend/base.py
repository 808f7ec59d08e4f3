"""Executor interface for one agent improvement cycle."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class ExecutorRequest:
    """Inputs required to run the opaque agent executor once."""

    agent: str
    cycle: int
    workspace: Path
    prompt: str
    command_template: str
    timeout_seconds: float
    debug: bool = False
    stop_requested: Callable[[], bool] | None = None


@dataclass(slots=True)
class ExecutorResult:
    """Execution outcome; files and errors are scraped from executor output."""

    exit_code: int
    timed_out: bool
    files_modified: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    output: str = ""


class AgentExecutor(Protocol):
    """Protocol implemented by executor runners."""

    def run(self, request: ExecutorRequest) -> ExecutorResult:
        """Run one cycle's work and return execution metadata."""
