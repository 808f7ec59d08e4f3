"""Status record ownership: init, defensive updates and the heartbeat thread."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.common import utc_now
from agent_relay.coordination.layout import CoordinationLayout
from agent_relay.coordination.models import (
    AgentStatus,
    Severity,
    StatusMutation,
    StatusRecord,
)
from agent_relay.coordination.store import RecordStore

logger = logging.getLogger(__name__)


class StatusInitError(RuntimeError):
    """The initial status record could not be written; startup must abort."""


class HeartbeatOrderError(RuntimeError):
    """Heartbeat was requested without a successfully initialized record."""


@dataclass(frozen=True, slots=True)
class StatusHandle:
    """Proof that ``init_status`` durably wrote the record for this process."""

    agent: str
    cycle: int
    initialized_at: datetime


class StatusRecordManager:
    """Sole writer of one agent's status record.

    The foreground cycle loop and the background heartbeat share this
    manager; an in-process lock serializes their read-modify-write updates.
    Readers in other processes rely on atomic replace only.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: RecordStore,
        layout: CoordinationLayout,
        agent: str,
        max_cycles: int,
        channel: CoordinationChannel | None = None,
        clock: Callable[[], datetime] = utc_now,
        write_retries: int = 3,
        write_backoff_seconds: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.layout = layout
        self.agent = agent
        self.max_cycles = max_cycles
        self.channel = channel
        self.key = layout.status_key(agent)
        self.write_retries = max(0, write_retries)
        self.write_backoff_seconds = max(0.0, write_backoff_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._handle: StatusHandle | None = None
        self._last_written: StatusRecord | None = None

    def init_status(self, cycle: int) -> StatusHandle:
        """Write the ``initializing`` record; raise ``StatusInitError`` on failure."""

        now = self._clock()
        record = StatusRecord(
            agent=self.agent,
            project=self.layout.project,
            status=AgentStatus.INITIALIZING,
            cycle=cycle,
            max_cycles=self.max_cycles,
            start_time=now,
            heartbeat=now,
            last_update=now,
        )
        with self._lock:
            error = self._write_with_retry(record)
            if error is not None:
                raise StatusInitError(
                    f"Cannot write initial status record for {self.agent}: {error}",
                )
            handle = StatusHandle(agent=self.agent, cycle=cycle, initialized_at=now)
            self._handle = handle
            self._last_written = record
        logger.info("Status initialized for %s (cycle %d/%d)", self.agent, cycle, self.max_cycles)
        return handle

    def is_initialized(self, handle: object) -> bool:
        return handle is not None and handle is self._handle

    def read(self) -> StatusRecord | None:
        record, _ = self._load()
        return record

    def update(self, mutation: StatusMutation) -> StatusRecord:
        """Apply ``mutation``; recreates a missing/corrupted record instead of raising."""

        return self._read_modify_write(lambda record, now: record.apply(mutation, now=now))

    def touch_heartbeat(self, handle: StatusHandle) -> StatusRecord:
        """Refresh only the heartbeat timestamp, never moving it backwards."""

        if not self.is_initialized(handle):
            raise HeartbeatOrderError(
                f"Heartbeat for {self.agent} requires a handle from a successful init_status().",
            )
        return self._read_modify_write(
            lambda record, now: replace(record, heartbeat=max(now, record.heartbeat)),
        )

    def _read_modify_write(
        self,
        change: Callable[[StatusRecord, datetime], StatusRecord],
    ) -> StatusRecord:
        recovery_problem: str | None = None
        with self._lock:
            now = self._clock()
            current, problem = self._load()
            if current is None:
                recovery_problem = problem or "status record missing"
                logger.warning(
                    "Recreating status record for %s: %s",
                    self.agent,
                    recovery_problem,
                )
                base = self._default_record(now)
                current = replace(
                    base,
                    errors=[*base.errors, f"status record recovered: {recovery_problem}"],
                )
            updated = change(current, now)
            write_error = self._write_with_retry(updated)
            if write_error is None:
                self._last_written = updated

        if recovery_problem is not None:
            self._escalate(
                issue=f"Status record for {self.agent} was unreadable and has been recreated.",
                impact=recovery_problem,
            )
        if write_error is not None:
            self._escalate(
                issue=f"Status record for {self.agent} could not be written.",
                impact=write_error,
            )
        return updated

    def _default_record(self, now: datetime) -> StatusRecord:
        """Rebuild from the last record this manager wrote, else from the handle."""

        if self._last_written is not None:
            return replace(
                self._last_written,
                heartbeat=max(now, self._last_written.heartbeat),
                last_update=now,
            )
        handle = self._handle
        return StatusRecord(
            agent=self.agent,
            project=self.layout.project,
            status=AgentStatus.RUNNING if handle is not None else AgentStatus.INITIALIZING,
            cycle=handle.cycle if handle is not None else 0,
            max_cycles=self.max_cycles,
            start_time=handle.initialized_at if handle is not None else now,
            heartbeat=now,
            last_update=now,
        )

    def _load(self) -> tuple[StatusRecord | None, str | None]:
        try:
            text = self.store.read_text(self.key)
        except (OSError, UnicodeDecodeError) as error:
            return None, f"read failed: {error}"
        if text is None:
            return None, "status record missing"
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as error:
            return None, f"json parse error: {error}"
        try:
            record = StatusRecord.from_payload(payload)
        except ValueError as error:
            return None, str(error)
        if record.agent != self.agent:
            return None, f"record belongs to {record.agent!r}"
        return record, None

    def _write_with_retry(self, record: StatusRecord) -> str | None:
        text = json.dumps(record.to_payload(), ensure_ascii=False, indent=2, sort_keys=True)
        delay = self.write_backoff_seconds
        last_error = "unknown error"
        for attempt in range(self.write_retries + 1):
            try:
                self.store.write_atomic(self.key, text)
            except OSError as error:
                last_error = str(error)
                logger.warning(
                    "Status write for %s failed (attempt %d/%d): %s",
                    self.agent,
                    attempt + 1,
                    self.write_retries + 1,
                    error,
                )
                if attempt < self.write_retries:
                    self._sleep(delay)
                    delay *= 2
                continue
            return None
        return last_error

    def _escalate(self, *, issue: str, impact: str) -> None:
        if self.channel is None:
            return
        try:
            self.channel.report_blocker(
                Severity.WARNING,
                self.agent,
                issue,
                impact=impact,
                needs_from="operator: check the shared coordination directory",
            )
        except OSError as error:
            logger.error("Could not file status blocker for %s: %s", self.agent, error)


class Heartbeat:
    """Background thread that periodically refreshes the heartbeat timestamp.

    Constructing one requires the handle returned by ``init_status``, so the
    heartbeat can never run ahead of record initialization.
    """

    def __init__(
        self,
        manager: StatusRecordManager,
        handle: StatusHandle,
        *,
        interval_seconds: float = 60.0,
    ) -> None:
        if not manager.is_initialized(handle):
            raise HeartbeatOrderError(
                "Heartbeat requires the handle returned by a successful init_status().",
            )
        self.manager = manager
        self.handle = handle
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name=f"heartbeat-{self.manager.agent}",
        )
        self._thread.start()
        logger.debug("Heartbeat started for %s every %ss", self.manager.agent, self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug("Heartbeat stopped for %s", self.manager.agent)

    def beat(self) -> None:
        self.manager.touch_heartbeat(self.handle)

    def _loop(self) -> None:
        while not self._stop.wait(timeout=self.interval_seconds):
            try:
                self.beat()
            except Exception:
                logger.exception("Heartbeat update failed for %s", self.manager.agent)
