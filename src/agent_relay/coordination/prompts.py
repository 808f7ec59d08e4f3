"""Prompt assembly for one agent improvement cycle."""

from __future__ import annotations

from dataclasses import dataclass

from agent_relay.coordination.models import TestMeasurement

_TAIL_LINES = 100
_DEBUG_TAIL_LINES = 50

CYCLE_PROMPT = """\
You are working on {agent} for {project_description}.
This is self-improvement cycle {cycle} of {max_cycles}.

Current test results:
- Tests passing: {tests_pass}
- Tests failing: {tests_fail}
- Pass rate: {pass_rate}%
- Target: {target_pass_rate}%

Test output from last run:
{test_tail}

Your task: analyze the failures and implement the required functionality to make tests pass.
Report every file you touch as "File modified: <path>" or "File created: <path>".
"""

DEBUG_PROMPT = """\
# DEBUG MODE - Safe Analysis Only

You are running in DEBUG mode for {agent} in {project_description}.
This is test cycle {cycle} of {max_cycles}.

## Your DEBUG tasks:
1. Analyze the current test state
   - Tests passing: {tests_pass}
   - Tests failing: {tests_fail}
   - Pass rate: {pass_rate}%
   - Target: {target_pass_rate}%

2. Report findings without modifying code
   - Analyze test failures
   - Identify what needs to be implemented

3. DO NOT modify any source code

4. Test output from last run:
{test_tail}

Remember: this is DEBUG mode. Do NOT modify any source code.
"""


@dataclass(slots=True)
class CyclePromptContext:
    """Values substituted into the cycle prompt."""

    agent: str
    project_description: str
    cycle: int
    max_cycles: int
    target_pass_rate: float
    baseline: TestMeasurement
    feedback: str | None = None
    agent_instructions: str = ""
    debug: bool = False


def build_cycle_prompt(context: CyclePromptContext) -> str:
    """Feedback first, then the cycle header, test state and agent instructions."""

    template = DEBUG_PROMPT if context.debug else CYCLE_PROMPT
    tail_lines = _DEBUG_TAIL_LINES if context.debug else _TAIL_LINES
    body = template.format(
        agent=context.agent,
        project_description=context.project_description or "this project",
        cycle=context.cycle,
        max_cycles=context.max_cycles,
        tests_pass=context.baseline.tests_pass,
        tests_fail=context.baseline.tests_fail,
        pass_rate=context.baseline.pass_rate,
        target_pass_rate=context.target_pass_rate,
        test_tail=_tail(context.baseline.output, tail_lines) or "No test output yet",
    )

    sections: list[str] = []
    if context.feedback and context.feedback.strip():
        sections.append(f"## Operator feedback (read first)\n\n{context.feedback.strip()}\n")
    sections.append(body)
    if not context.debug and context.agent_instructions.strip():
        sections.append(context.agent_instructions.strip() + "\n")
    return "\n".join(sections)


def _tail(text: str, lines: int) -> str:
    return "\n".join(text.rstrip().splitlines()[-lines:])
