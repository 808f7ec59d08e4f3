"""Human-readable per-agent progress log and latest test output."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from agent_relay.coordination.common import utc_now
from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.store import RecordStore

logger = logging.getLogger(__name__)


class ProgressLog:
    """Append-only narrative of an agent's cycles, for operators tailing files.

    Write failures never interrupt a cycle. They are logged and kept until
    ``drain_failures`` hands them to the status record.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        layout: CoordinationLayout,
        agent: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.agent = agent
        self.key = layout.progress_key(agent)
        self.test_results_key = layout.test_results_key(agent)
        self._clock = clock
        self._failures: list[str] = []

    def log(self, message: str) -> None:
        stamp = self._clock().strftime("%Y-%m-%d %H:%M:%S")
        try:
            for line in message.splitlines() or [""]:
                self.store.append_line(self.key, f"{stamp} {line}")
        except OSError as error:
            self._record_failure("Progress log write failed", error)

    def save_test_output(self, output: str) -> None:
        try:
            self.store.write_atomic(self.test_results_key, output)
        except OSError as error:
            self._record_failure("Test output not saved", error)

    def drain_failures(self) -> list[str]:
        failures, self._failures = self._failures, []
        return failures

    def read(self) -> str:
        return self.store.read_text(self.key, errors="replace") or ""

    def _record_failure(self, what: str, error: OSError) -> None:
        logger.warning("%s for %s: %s", what, self.agent, error)
        self._failures.append(f"{what}: {error}")
