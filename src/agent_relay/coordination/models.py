"""Domain models for agent coordination records."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from agent_relay.coordination.common import from_iso, to_iso

STATUS_SCHEMA_VERSION = 1


class AgentKind(str, Enum):
    """Coarse role of an agent inside the project."""

    FOUNDATION = "foundation"
    SERVICE = "service"
    HOOK = "hook"
    SCREEN = "screen"
    INTEGRATION = "integration"
    OTHER = "other"


class AgentStatus(str, Enum):
    """Lifecycle states published in the status record."""

    INITIALIZING = "initializing"
    WAITING = "waiting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    MAINTENANCE = "maintenance"


class TerminalReason(str, Enum):
    """Why an agent stopped cycling."""

    TARGET_REACHED = "target_reached"
    MAX_RESTARTS_REACHED = "max_restarts_reached"
    BLOCKED = "blocked"


class Severity(str, Enum):
    """Blocker severity; CRITICAL is mirrored into the shared sync log."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    """Static agent definition loaded once from the project descriptor."""

    name: str
    kind: AgentKind = AgentKind.OTHER
    dependencies: frozenset[str] = frozenset()
    cycle_command: str = ""
    test_command: str = ""
    max_cycles: int = 5
    target_pass_rate: float = 85.0
    deliverable: str = "complete"
    prompt_file: str | None = None
    description: str = ""


@dataclass(slots=True)
class StatusMutation:
    """Partial status update.

    Scalar fields left as ``None`` are not touched.  ``files_modified`` and
    ``errors`` are appended to the stored arrays, never replacing them.
    """

    status: AgentStatus | None = None
    cycle: int | None = None
    tests_pass: int | None = None
    tests_fail: int | None = None
    pass_rate: float | None = None
    reason: TerminalReason | None = None
    work_summary: str | None = None
    files_modified: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()


@dataclass(slots=True)
class StatusRecord:
    """One agent's published state, owned by that agent's process."""

    agent: str
    status: AgentStatus
    cycle: int
    max_cycles: int
    start_time: datetime
    heartbeat: datetime
    last_update: datetime
    project: str = ""
    tests_pass: int = 0
    tests_fail: int = 0
    pass_rate: float = 0.0
    files_modified: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    reason: TerminalReason | None = None
    work_summary: str | None = None

    def apply(self, mutation: StatusMutation, *, now: datetime) -> StatusRecord:
        """Return a copy with ``mutation`` applied and ``last_update`` refreshed."""

        updated = replace(
            self,
            files_modified=[*self.files_modified, *mutation.files_modified],
            errors=[*self.errors, *mutation.errors],
            last_update=max(now, self.last_update),
        )
        if mutation.status is not None:
            updated.status = mutation.status
        if mutation.cycle is not None:
            updated.cycle = mutation.cycle
        if mutation.tests_pass is not None:
            updated.tests_pass = mutation.tests_pass
        if mutation.tests_fail is not None:
            updated.tests_fail = mutation.tests_fail
        if mutation.pass_rate is not None:
            updated.pass_rate = mutation.pass_rate
        if mutation.reason is not None:
            updated.reason = mutation.reason
        if mutation.work_summary is not None:
            updated.work_summary = mutation.work_summary
        return updated

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the fixed on-disk field names."""

        return {
            "schemaVersion": STATUS_SCHEMA_VERSION,
            "agent": self.agent,
            "project": self.project,
            "status": self.status.value,
            "cycle": self.cycle,
            "maxCycles": self.max_cycles,
            "startTime": to_iso(self.start_time),
            "heartbeat": to_iso(self.heartbeat),
            "lastUpdate": to_iso(self.last_update),
            "testsPass": self.tests_pass,
            "testsFail": self.tests_fail,
            "passRate": self.pass_rate,
            "filesModified": list(self.files_modified),
            "errors": list(self.errors),
            "reason": self.reason.value if self.reason is not None else None,
            "workSummary": self.work_summary,
        }

    @classmethod
    def from_payload(cls, payload: object) -> StatusRecord:
        """Deserialize and validate a status document.

        Raises ``ValueError`` for anything that does not match the schema so
        callers can treat the record as corrupted.
        """

        if not isinstance(payload, dict):
            raise ValueError("Status record must be a JSON object.")
        version = payload.get("schemaVersion", STATUS_SCHEMA_VERSION)
        if version != STATUS_SCHEMA_VERSION:
            raise ValueError(f"Unsupported status schemaVersion: {version!r}")
        try:
            reason_raw = payload.get("reason")
            return cls(
                agent=_require_str(payload, "agent"),
                project=str(payload.get("project") or ""),
                status=AgentStatus(_require_str(payload, "status")),
                cycle=_require_int(payload, "cycle"),
                max_cycles=_require_int(payload, "maxCycles"),
                start_time=from_iso(_require_str(payload, "startTime")),
                heartbeat=from_iso(_require_str(payload, "heartbeat")),
                last_update=from_iso(_require_str(payload, "lastUpdate")),
                tests_pass=_require_int(payload, "testsPass"),
                tests_fail=_require_int(payload, "testsFail"),
                pass_rate=_require_number(payload, "passRate"),
                files_modified=_require_str_list(payload, "filesModified"),
                errors=_require_str_list(payload, "errors"),
                reason=TerminalReason(reason_raw) if reason_raw is not None else None,
                work_summary=_optional_str(payload, "workSummary"),
            )
        except (KeyError, TypeError) as error:
            raise ValueError(f"Invalid status record: {error}") from error


@dataclass(frozen=True, slots=True)
class HandoffMarker:
    """Write-once signal that an agent's deliverable is ready."""

    project: str
    agent: str
    resource: str
    created_at: datetime
    payload: str = ""


@dataclass(frozen=True, slots=True)
class BlockerRecord:
    """Escalation record; never edited after creation."""

    severity: Severity
    agent: str
    issue: str
    impact: str
    needs_from: str
    created_at: datetime
    key: str | None = None


@dataclass(frozen=True, slots=True)
class FeedbackRecord:
    """Operator guidance addressed to one agent."""

    agent: str
    content: str
    modified_at: datetime


@dataclass(frozen=True, slots=True)
class TestMeasurement:
    """Pass/fail summary of one test command invocation."""

    __test__ = False

    tests_pass: int = 0
    tests_fail: int = 0
    ok: bool = True
    error: str | None = None
    output: str = ""
    transient: bool = False

    @property
    def total(self) -> int:
        return self.tests_pass + self.tests_fail

    @property
    def pass_rate(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.tests_pass * 100.0 / self.total, 2)


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str) or not value:
        raise TypeError(f"{key} must be a non-empty string")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string or null")
    return value


def _require_int(payload: dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TypeError(f"{key} must be a non-negative integer")
    return value


def _require_number(payload: dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise TypeError(f"{key} must be a number")
    return float(value)


def _require_str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise TypeError(f"{key} must be an array of strings")
    return list(value)
