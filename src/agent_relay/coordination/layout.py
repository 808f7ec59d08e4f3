"""Deterministic key layout inside the shared coordination store."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from agent_relay.coordination.models import Severity

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

STATUS_PREFIX = "status/"
HANDOFFS_PREFIX = "handoffs/"
BLOCKERS_PREFIX = "blockers/"
SYNC_LOG_KEY = "sync-log.md"


class InvalidNameError(ValueError):
    """Agent, project or resource name cannot be used as a path segment."""


def validate_name(value: str, *, kind: str) -> str:
    """Return ``value`` if it is a safe single path segment."""

    if not isinstance(value, str) or not _NAME_PATTERN.match(value) or ".." in value:
        raise InvalidNameError(
            f"Invalid {kind} name: {value!r}. "
            "Use letters, digits, '.', '_' or '-' and start with a letter or digit.",
        )
    return value


@dataclass(frozen=True, slots=True)
class CoordinationLayout:
    """Computes store keys so every party can find a record without discovery."""

    project: str

    def __post_init__(self) -> None:
        validate_name(self.project, kind="project")

    def status_key(self, agent: str) -> str:
        return f"{STATUS_PREFIX}{validate_name(agent, kind='agent')}.json"

    def restart_counter_key(self, agent: str) -> str:
        return f"restart_counters/{validate_name(agent, kind='agent')}_count"

    def handoff_key(self, agent: str, resource: str) -> str:
        return (
            f"{HANDOFFS_PREFIX}{self.project}/"
            f"{validate_name(agent, kind='agent')}-{validate_name(resource, kind='resource')}.md"
        )

    def handoffs_prefix(self) -> str:
        return f"{HANDOFFS_PREFIX}{self.project}/"

    def blocker_key(
        self,
        *,
        severity: Severity,
        agent: str,
        created_at: datetime,
        attempt: int = 0,
    ) -> str:
        stamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
        suffix = f"-{attempt}" if attempt else ""
        return (
            f"{BLOCKERS_PREFIX}{severity.value}-{validate_name(agent, kind='agent')}-"
            f"{stamp}{suffix}.md"
        )

    def feedback_key(self, agent: str) -> str:
        return f"feedback/{self.project}/{validate_name(agent, kind='agent')}.md"

    def feedback_seen_key(self, agent: str) -> str:
        return f"feedback/{self.project}/.seen/{validate_name(agent, kind='agent')}"

    def progress_key(self, agent: str) -> str:
        return f"progress/{validate_name(agent, kind='agent')}.md"

    def test_results_key(self, agent: str) -> str:
        return f"test-results/{validate_name(agent, kind='agent')}-latest.txt"

    @staticmethod
    def agent_from_status_key(key: str) -> str | None:
        if not key.startswith(STATUS_PREFIX) or not key.endswith(".json"):
            return None
        name = key[len(STATUS_PREFIX) : -len(".json")]
        if "/" in name or not _NAME_PATTERN.match(name):
            return None
        return name
