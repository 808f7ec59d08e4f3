"""Restart counter persisted independently of the status record."""

from __future__ import annotations

import logging

from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.store import RecordStore

logger = logging.getLogger(__name__)


class RestartCounter:
    """Durable count of completed, non-terminal cycles for one agent.

    The counter is the continuation state that survives ``exit(0)``: a new
    process resumes at ``cycle = load() + 1``.
    """

    def __init__(self, *, store: RecordStore, layout: CoordinationLayout, agent: str) -> None:
        self.store = store
        self.agent = agent
        self.key = layout.restart_counter_key(agent)

    def load(self, *, fresh_start: bool) -> int:
        if fresh_start:
            self.persist(0)
            logger.info("Fresh start requested for %s; restart counter reset to 0", self.agent)
            return 0

        raw = self.store.read_text(self.key, errors="replace")
        if raw is None:
            return 0
        try:
            value = int(raw.strip())
        except ValueError:
            logger.warning(
                "Restart counter for %s is unreadable (%r); starting from 0",
                self.agent,
                raw[:40],
            )
            return 0
        if value < 0:
            logger.warning("Restart counter for %s is negative (%d); using 0", self.agent, value)
            return 0
        return value

    def persist(self, count: int) -> None:
        if count < 0:
            raise ValueError(f"Restart counter must be >= 0, got {count}")
        self.store.write_atomic(self.key, f"{count}\n")
