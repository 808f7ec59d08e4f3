"""Subprocess-based executor for CLI coding agents."""

from __future__ import annotations

import os
import re
import shlex
import subprocess
import tempfile
import time
from pathlib import Path

from agent_relay.coordination.backend.base import ExecutorRequest, ExecutorResult

_FILE_EVENT = re.compile(r"(?:File (?:created|modified)|Created file):\s*(?P<path>\S.*?)\s*$")
_ERROR_EVENT = re.compile(r"(?:^|\s)(?:Error|Failed):\s*\S")
_OUTPUT_TAIL_CHARS = 200_000


class ExecutorRunError(RuntimeError):
    """Executor error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliAgentExecutor:
    """Execute the agent's command template with the cycle prompt."""

    def __init__(self, *, poll_interval_seconds: float = 0.1) -> None:
        self.poll_interval_seconds = poll_interval_seconds

    def run(self, request: ExecutorRequest) -> ExecutorResult:
        fd, prompt_name = tempfile.mkstemp(prefix=f"{request.agent}-cycle-", suffix=".md")
        prompt_file = Path(prompt_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(request.prompt)

            run_args, command_head = _build_run_args(
                command_template=request.command_template,
                prompt=request.prompt,
                prompt_file=prompt_file,
                workspace=request.workspace,
                agent=request.agent,
                cycle=request.cycle,
            )

            env = os.environ.copy()
            env["AGENT_RELAY_AGENT"] = request.agent
            env["AGENT_RELAY_CYCLE"] = str(request.cycle)
            env["AGENT_RELAY_DEBUG"] = "1" if request.debug else "0"

            try:
                with tempfile.TemporaryFile(
                    mode="w+",
                    encoding="utf-8",
                    errors="replace",
                ) as sink:
                    exit_code, timed_out = self._run_subprocess(
                        run_args=run_args,
                        env=env,
                        cwd=request.workspace,
                        sink=sink,
                        request=request,
                    )
                    sink.seek(0)
                    output = sink.read()[-_OUTPUT_TAIL_CHARS:]
            except FileNotFoundError as error:
                raise ExecutorRunError(
                    f"Executor command not found: {command_head}",
                    transient=False,
                ) from error
            except OSError as error:
                raise ExecutorRunError(
                    f"Executor failed to start: {error}",
                    transient=True,
                ) from error
        finally:
            prompt_file.unlink(missing_ok=True)

        files_modified, errors = parse_executor_output(output)
        return ExecutorResult(
            exit_code=exit_code,
            timed_out=timed_out,
            files_modified=files_modified,
            errors=errors,
            output=output,
        )

    def _run_subprocess(
        self,
        *,
        run_args: list[str],
        env: dict[str, str],
        cwd: Path,
        sink,
        request: ExecutorRequest,
    ) -> tuple[int, bool]:
        process = subprocess.Popen(  # noqa: S603
            run_args,
            env=env,
            cwd=cwd,
            stdout=sink,
            stderr=subprocess.STDOUT,
            text=True,
        )
        started = time.monotonic()
        while True:
            returncode = process.poll()
            if returncode is not None:
                return returncode, False
            if time.monotonic() - started >= request.timeout_seconds:
                terminate_process(process)
                return 124, True
            if request.stop_requested is not None and request.stop_requested():
                terminate_process(process)
                return 124, True
            time.sleep(self.poll_interval_seconds)


def parse_executor_output(output: str) -> tuple[list[str], list[str]]:
    """Collect reported file paths and error lines from executor output."""

    files: list[str] = []
    errors: list[str] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        file_match = _FILE_EVENT.search(line)
        if file_match:
            path = file_match.group("path")
            if path not in files:
                files.append(path)
            continue
        if _ERROR_EVENT.search(line):
            errors.append(line[:500])
    return files, errors


def _build_run_args(  # noqa: PLR0913
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    workspace: Path,
    agent: str,
    cycle: int,
) -> tuple[list[str], str]:
    stripped = command_template.strip()
    if not stripped:
        raise ExecutorRunError("Executor command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise ExecutorRunError(
            "Executor command template must include {prompt} or {prompt_file}.",
            transient=False,
        )

    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            workspace=shlex.quote(str(workspace)),
            agent=shlex.quote(agent),
            cycle=cycle,
        )
    except (KeyError, IndexError) as error:
        raise ExecutorRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ExecutorRunError(
            "Executor command template rendered empty command.",
            transient=False,
        )
    return argv, argv[0]


def terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
