"""Run an agent's test command and reduce its output to pass/fail counts."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from agent_relay.coordination.backend.cli_backend import terminate_process
from agent_relay.coordination.models import TestMeasurement

logger = logging.getLogger(__name__)

_JEST_SUMMARY = re.compile(r"^\s*Tests:\s+(?P<body>.*\d+\s+total)", re.MULTILINE)
_PYTEST_SUMMARY = re.compile(
    r"^[=\s]*(?P<body>(?:\d+ \w+(?:, )?)+)\s+in\s+[\d.]+s",
    re.MULTILINE,
)
_COUNT = re.compile(r"(?P<count>\d+)\s+(?P<label>passed|failed|errors?|passing|failing)")
_GENERIC_PASSING = re.compile(r"(?P<count>\d+)\s+(?:tests?\s+)?passing")
_GENERIC_FAILING = re.compile(r"(?P<count>\d+)\s+(?:tests?\s+)?failing")

_OUTPUT_TAIL_CHARS = 200_000


class MeasurementRunner(Protocol):
    """Anything that can measure a workspace; swapped for fakes in tests."""

    def run(self, command: str, *, workspace: Path, timeout_seconds: float) -> TestMeasurement:
        """Execute ``command`` and return the pass/fail summary."""


def parse_test_counts(output: str) -> tuple[int, int] | None:
    """Extract ``(passed, failed)`` from Jest, pytest or mocha-style output.

    The last summary in the output wins; ``None`` means no summary was found.
    """

    jest = list(_JEST_SUMMARY.finditer(output))
    if jest:
        return _sum_counts(jest[-1].group("body"))

    pytest_matches = [
        match for match in _PYTEST_SUMMARY.finditer(output) if _COUNT.search(match.group("body"))
    ]
    if pytest_matches:
        return _sum_counts(pytest_matches[-1].group("body"))

    passing = _GENERIC_PASSING.findall(output)
    failing = _GENERIC_FAILING.findall(output)
    if passing or failing:
        return (
            int(passing[-1]) if passing else 0,
            int(failing[-1]) if failing else 0,
        )
    return None


def _sum_counts(body: str) -> tuple[int, int]:
    passed = 0
    failed = 0
    for match in _COUNT.finditer(body):
        count = int(match.group("count"))
        if match.group("label") in {"passed", "passing"}:
            passed += count
        else:
            failed += count
    return passed, failed


class TestCommandRunner:
    """Subprocess test runner with a hard timeout.

    Never raises for command problems: a missing binary, a timeout or
    unparseable output all become an unsuccessful 0/0 measurement.
    """

    __test__ = False

    def __init__(
        self,
        *,
        poll_interval_seconds: float = 0.1,
        stop_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = stop_requested or (lambda: False)

    def run(self, command: str, *, workspace: Path, timeout_seconds: float) -> TestMeasurement:
        stripped = command.strip()
        if not stripped:
            return TestMeasurement(ok=False, error="No test command configured.")
        try:
            argv = shlex.split(stripped)
        except ValueError as error:
            return TestMeasurement(ok=False, error=f"Cannot parse test command: {error}")

        with tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as sink:
            try:
                process = subprocess.Popen(  # noqa: S603
                    argv,
                    cwd=workspace,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                    text=True,
                )
            except FileNotFoundError:
                return TestMeasurement(ok=False, error=f"Test command not found: {argv[0]}")
            except OSError as error:
                return TestMeasurement(
                    ok=False,
                    error=f"Test command failed to start: {error}",
                    transient=True,
                )

            exit_code, timed_out = self._wait(process, timeout_seconds=timeout_seconds)
            sink.seek(0)
            output = sink.read()[-_OUTPUT_TAIL_CHARS:]

        if timed_out:
            logger.warning("Test command timed out after %ss: %s", timeout_seconds, stripped)
            return TestMeasurement(
                ok=False,
                error=f"Test command timed out after {timeout_seconds}s.",
                output=output,
            )

        counts = parse_test_counts(output)
        if counts is None:
            return TestMeasurement(
                ok=False,
                error=f"No test summary found in output (exit code {exit_code}).",
                output=output,
            )
        tests_pass, tests_fail = counts
        logger.info("Measured %d passed / %d failed (exit %d)", tests_pass, tests_fail, exit_code)
        return TestMeasurement(tests_pass=tests_pass, tests_fail=tests_fail, output=output)

    def _wait(self, process: subprocess.Popen[str], *, timeout_seconds: float) -> tuple[int, bool]:
        started = time.monotonic()
        while True:
            returncode = process.poll()
            if returncode is not None:
                return returncode, False
            if time.monotonic() - started >= timeout_seconds or self._stop_requested():
                terminate_process(process)
                return 124, True
            time.sleep(self.poll_interval_seconds)

