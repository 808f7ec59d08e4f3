"""Blocker escalation and feedback delivery between agents and operators."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime

from agent_relay.coordination.common import from_iso, to_iso, utc_now
from agent_relay.coordination.layout import (
    BLOCKERS_PREFIX,
    SYNC_LOG_KEY,
    CoordinationLayout,
    validate_name,
)
from agent_relay.coordination.models import BlockerRecord, FeedbackRecord, Severity
from agent_relay.coordination.store import RecordStore

logger = logging.getLogger(__name__)

_MAX_KEY_ATTEMPTS = 100
_HEADER_PATTERN = re.compile(r"^- \*\*(?P<name>[A-Za-z ]+)\*\*: (?P<value>.*)$")
_SECTIONS = {"Issue": "issue", "Impact": "impact", "Needs From": "needs_from"}


class CoordinationChannel:
    """Writes blockers, reads feedback; consulted at cycle boundaries."""

    def __init__(
        self,
        *,
        store: RecordStore,
        layout: CoordinationLayout,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.layout = layout
        self._clock = clock

    def report_blocker(
        self,
        severity: Severity,
        agent: str,
        issue: str,
        impact: str = "",
        needs_from: str = "",
    ) -> BlockerRecord:
        """File a new blocker; CRITICAL ones are also appended to the sync log."""

        validate_name(agent, kind="agent")
        created_at = self._clock()
        record = BlockerRecord(
            severity=severity,
            agent=agent,
            issue=issue,
            impact=impact,
            needs_from=needs_from,
            created_at=created_at,
        )
        text = _render_blocker(record)
        for attempt in range(_MAX_KEY_ATTEMPTS):
            key = self.layout.blocker_key(
                severity=severity,
                agent=agent,
                created_at=created_at,
                attempt=attempt,
            )
            if self.store.create_exclusive(key, text):
                break
        else:
            raise RuntimeError(f"Could not allocate a blocker record key for agent {agent!r}.")

        if severity == Severity.CRITICAL:
            self.store.append_line(SYNC_LOG_KEY, _sync_log_line(record))
        log_level = logging.WARNING if severity != Severity.INFO else logging.INFO
        logger.log(log_level, "Blocker filed by %s [%s]: %s", agent, severity.value, issue)
        return BlockerRecord(
            severity=record.severity,
            agent=record.agent,
            issue=record.issue,
            impact=record.impact,
            needs_from=record.needs_from,
            created_at=record.created_at,
            key=key,
        )

    def list_blockers(self) -> list[BlockerRecord]:
        """Parse every blocker file; unreadable ones are skipped."""

        records: list[BlockerRecord] = []
        for key in self.store.list_keys(BLOCKERS_PREFIX):
            try:
                text = self.store.read_text(key)
                if text is None:
                    continue
                records.append(_parse_blocker(text, key=key))
            except ValueError as error:
                logger.debug("Skipping unreadable blocker %s: %s", key, error)
        records.sort(key=lambda record: record.created_at)
        return records

    def post_feedback(self, agent: str, content: str) -> None:
        """Publish guidance for ``agent``; replaces any previous feedback."""

        self.store.write_atomic(self.layout.feedback_key(agent), content)
        logger.info("Feedback posted for %s (%d chars)", agent, len(content))

    def check_feedback(self, agent: str) -> FeedbackRecord | None:
        """Return feedback newer than the last consumption, marking it consumed."""

        feedback_key = self.layout.feedback_key(agent)
        modified_ns = self.store.mtime_ns(feedback_key)
        if modified_ns is None:
            return None
        seen_key = self.layout.feedback_seen_key(agent)
        last_seen_ns = _parse_seen(self.store.read_text(seen_key, errors="replace"))
        if last_seen_ns is not None and modified_ns <= last_seen_ns:
            return None

        content = self.store.read_text(feedback_key, errors="replace")
        if content is None:
            return None
        self.store.write_atomic(seen_key, str(modified_ns))
        if not content.strip():
            return None
        return FeedbackRecord(
            agent=agent,
            content=content,
            modified_at=datetime.fromtimestamp(modified_ns / 1_000_000_000, tz=UTC),
        )


def _parse_seen(text: str | None) -> int | None:
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        logger.warning("Ignoring unreadable feedback consumption marker: %r", text[:40])
        return None


def _render_blocker(record: BlockerRecord) -> str:
    return (
        f"# {record.severity.value} blocker from {record.agent}\n"
        "\n"
        f"- **Severity**: {record.severity.value}\n"
        f"- **Agent**: {record.agent}\n"
        f"- **Reported**: {to_iso(record.created_at)}\n"
        "\n"
        f"## Issue\n{record.issue.strip()}\n"
        "\n"
        f"## Impact\n{record.impact.strip()}\n"
        "\n"
        f"## Needs From\n{record.needs_from.strip()}\n"
    )


def _parse_blocker(text: str, *, key: str) -> BlockerRecord:
    headers: dict[str, str] = {}
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in text.splitlines():
        if line.startswith("## "):
            current = _SECTIONS.get(line[3:].strip())
            if current is not None:
                sections[current] = []
            continue
        if current is not None:
            sections[current].append(line)
            continue
        match = _HEADER_PATTERN.match(line)
        if match:
            headers[match.group("name").strip()] = match.group("value").strip()

    try:
        severity = Severity(headers["Severity"])
        agent = headers["Agent"]
        created_at = from_iso(headers["Reported"])
    except KeyError as error:
        raise ValueError(f"missing header {error}") from error
    return BlockerRecord(
        severity=severity,
        agent=agent,
        issue="\n".join(sections.get("issue", [])).strip(),
        impact="\n".join(sections.get("impact", [])).strip(),
        needs_from="\n".join(sections.get("needs_from", [])).strip(),
        created_at=created_at,
        key=key,
    )


def _sync_log_line(record: BlockerRecord) -> str:
    issue = " ".join(record.issue.split())
    needs = " ".join(record.needs_from.split())
    line = f"- {to_iso(record.created_at)} CRITICAL [{record.agent}] {issue}"
    if needs:
        line += f" (needs: {needs})"
    return line
