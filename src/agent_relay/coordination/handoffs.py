"""Write-once handoff markers announcing completed deliverables."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime

from agent_relay.coordination.common import from_iso, to_iso, utc_now
from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.models import HandoffMarker
from agent_relay.coordination.store import RecordStore

logger = logging.getLogger(__name__)

_FIELD_PATTERN = re.compile(r"^- \*\*(?P<name>[A-Za-z]+)\*\*: (?P<value>.*)$")


class HandoffBoard:
    """Publishes and looks up handoff markers for one project.

    Only the existence of a marker is load-bearing; its text is advisory.
    """

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

    def publish(self, agent: str, resource: str, payload: str = "") -> HandoffMarker:
        """Create the marker once; a repeated publish returns the existing one."""

        marker = HandoffMarker(
            project=self.layout.project,
            agent=agent,
            resource=resource,
            created_at=self._clock(),
            payload=payload,
        )
        key = self.layout.handoff_key(agent, resource)
        created = self.store.create_exclusive(key, _render_marker(marker))
        if created:
            logger.info("Handoff published: %s/%s-%s", marker.project, agent, resource)
            return marker
        logger.info("Handoff already present, leaving it untouched: %s", key)
        existing = self.read(agent, resource)
        return existing if existing is not None else marker

    def is_published(self, agent: str, resource: str) -> bool:
        return self.store.exists(self.layout.handoff_key(agent, resource))

    def read(self, agent: str, resource: str) -> HandoffMarker | None:
        text = self.store.read_text(self.layout.handoff_key(agent, resource), errors="replace")
        if text is None:
            return None
        return _parse_marker(text, project=self.layout.project, agent=agent, resource=resource)

    def list_markers(self) -> list[HandoffMarker]:
        markers: list[HandoffMarker] = []
        prefix = self.layout.handoffs_prefix()
        for key in self.store.list_keys(prefix):
            name = key[len(prefix) :]
            text = self.store.read_text(key, errors="replace")
            if text is None or not name.endswith(".md"):
                continue
            fields = _parse_fields(text)
            agent = fields.get("Producer")
            resource = fields.get("Resource")
            if not agent or not resource:
                agent, _, resource = name[: -len(".md")].rpartition("-")
            markers.append(
                _parse_marker(text, project=self.layout.project, agent=agent, resource=resource),
            )
        return markers


def _render_marker(marker: HandoffMarker) -> str:
    lines = [
        f"# Handoff: {marker.agent} -> {marker.resource}",
        "",
        f"- **Project**: {marker.project}",
        f"- **Producer**: {marker.agent}",
        f"- **Resource**: {marker.resource}",
        f"- **Created**: {to_iso(marker.created_at)}",
        "",
    ]
    if marker.payload.strip():
        lines.extend([marker.payload.strip(), ""])
    return "\n".join(lines)


def _parse_fields(text: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in text.splitlines():
        match = _FIELD_PATTERN.match(line)
        if match:
            fields[match.group("name")] = match.group("value").strip()
    return fields


def _parse_marker(text: str, *, project: str, agent: str, resource: str) -> HandoffMarker:
    fields = _parse_fields(text)
    created_at: datetime | None = None
    created_raw = fields.get("Created")
    if created_raw:
        try:
            created_at = from_iso(created_raw)
        except ValueError:
            created_at = None
    body_lines = [
        line
        for line in text.splitlines()
        if not line.startswith("# ") and not _FIELD_PATTERN.match(line)
    ]
    return HandoffMarker(
        project=project,
        agent=agent,
        resource=resource,
        created_at=created_at or utc_now(),
        payload="\n".join(body_lines).strip(),
    )
