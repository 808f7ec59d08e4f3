"""Read-only monitoring over all agents' status records."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from agent_relay.coordination.common import to_iso, utc_now
from agent_relay.coordination.layout import STATUS_PREFIX, CoordinationLayout
from agent_relay.coordination.models import AgentStatus, StatusRecord
from agent_relay.coordination.store import RecordReader

logger = logging.getLogger(__name__)

NOT_STARTED = "not-started"


@dataclass(frozen=True, slots=True)
class AgentView:
    """One row of the monitoring table."""

    agent: str
    status: str
    cycle: int
    max_cycles: int
    heartbeat_age_seconds: float | None
    alive: bool
    tests_pass: int
    tests_fail: int
    pass_rate: float
    error_count: int
    reason: str | None = None
    work_summary: str | None = None
    last_update: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class MonitorAlert:
    level: str
    agent: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class MonitoringAggregator:
    """Builds liveness and progress views; has no write authority."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: RecordReader,
        layout: CoordinationLayout,
        expected_agents: Iterable[str] = (),
        target_pass_rates: Mapping[str, float] | None = None,
        liveness_threshold_seconds: float = 180.0,
        error_alert_threshold: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.layout = layout
        self.expected_agents = tuple(expected_agents)
        self.target_pass_rates = dict(target_pass_rates or {})
        self.liveness_threshold_seconds = liveness_threshold_seconds
        self.error_alert_threshold = error_alert_threshold
        self._clock = clock

    def snapshot(self) -> dict[str, StatusRecord]:
        """Read every parseable status record; bad or missing ones are skipped."""

        records: dict[str, StatusRecord] = {}
        for key in self.store.list_keys(STATUS_PREFIX):
            agent = CoordinationLayout.agent_from_status_key(key)
            if agent is None:
                continue
            record = self._read_record(key)
            if record is not None:
                records[agent] = record
        return records

    def is_alive(self, record: StatusRecord, *, now: datetime | None = None) -> bool:
        current = now or self._clock()
        return (current - record.heartbeat).total_seconds() < self.liveness_threshold_seconds

    def agent_views(self) -> list[AgentView]:
        now = self._clock()
        records = self.snapshot()
        views = [self._view(record, now=now) for record in records.values()]
        for agent in self.expected_agents:
            if agent not in records:
                views.append(
                    AgentView(
                        agent=agent,
                        status=NOT_STARTED,
                        cycle=0,
                        max_cycles=0,
                        heartbeat_age_seconds=None,
                        alive=False,
                        tests_pass=0,
                        tests_fail=0,
                        pass_rate=0.0,
                        error_count=0,
                    ),
                )
        views.sort(key=lambda view: view.agent)
        return views

    def agent_view(self, agent: str) -> AgentView | None:
        for view in self.agent_views():
            if view.agent == agent:
                return view
        return None

    def alerts(self, views: list[AgentView] | None = None) -> list[MonitorAlert]:
        alerts: list[MonitorAlert] = []
        for view in views if views is not None else self.agent_views():
            if view.status == NOT_STARTED:
                continue
            if not view.alive:
                alerts.append(
                    MonitorAlert("warning", view.agent, "Agent appears stale (no recent heartbeat)"),
                )
            if view.status == AgentStatus.FAILED.value:
                alerts.append(MonitorAlert("critical", view.agent, "Agent has failed"))
            if view.error_count > self.error_alert_threshold:
                alerts.append(
                    MonitorAlert("warning", view.agent, f"High error count: {view.error_count}"),
                )
            target = self.target_pass_rates.get(view.agent)
            if target is not None and 0 < view.pass_rate < target:
                alerts.append(
                    MonitorAlert(
                        "warning",
                        view.agent,
                        f"Test pass rate below target: {view.pass_rate}% < {target}%",
                    ),
                )
        return alerts

    def summary(self) -> dict[str, Any]:
        views = self.agent_views()
        by_status: dict[str, int] = {}
        for view in views:
            by_status[view.status] = by_status.get(view.status, 0) + 1
        measured = [view.pass_rate for view in views if view.tests_pass + view.tests_fail > 0]
        alerts = self.alerts(views)
        stale = [view.agent for view in views if view.status != NOT_STARTED and not view.alive]
        recommendations: list[str] = []
        if stale:
            recommendations.append(f"Restart stale agents: {', '.join(stale)}")
        low = sorted({alert.agent for alert in alerts if alert.message.startswith("Test pass rate")})
        if low:
            recommendations.append(f"Improve test pass rates for: {', '.join(low)}")
        return {
            "generatedAt": to_iso(self._clock()),
            "total": len(views),
            "byStatus": by_status,
            "alive": sum(1 for view in views if view.alive),
            "stale": len(stale),
            "totalErrors": sum(view.error_count for view in views),
            "averagePassRate": round(sum(measured) / len(measured), 2) if measured else 0.0,
            "alerts": [alert.to_dict() for alert in alerts],
            "recommendations": recommendations,
        }

    def render_lines(self) -> list[str]:
        views = self.agent_views()
        if not views:
            return ["No agent status records found."]
        lines = [
            f"{'agent':<24} {'status':<13} {'cycle':>7} {'pass':>6} {'fail':>6} "
            f"{'rate':>7} {'errors':>6} {'heartbeat':>10}",
        ]
        for view in views:
            cycle = f"{view.cycle}/{view.max_cycles}"
            if view.heartbeat_age_seconds is None:
                heartbeat = "-"
            else:
                heartbeat = f"{int(view.heartbeat_age_seconds)}s"
                if not view.alive:
                    heartbeat += "!"
            status = view.status if view.reason is None else f"{view.status}*"
            lines.append(
                f"{view.agent:<24} {status:<13} {cycle:>7} {view.tests_pass:>6} "
                f"{view.tests_fail:>6} {view.pass_rate:>6.1f}% {view.error_count:>6} "
                f"{heartbeat:>10}",
            )
        for alert in self.alerts(views):
            lines.append(f"[{alert.level}] {alert.agent}: {alert.message}")
        return lines

    def _view(self, record: StatusRecord, *, now: datetime) -> AgentView:
        return AgentView(
            agent=record.agent,
            status=record.status.value,
            cycle=record.cycle,
            max_cycles=record.max_cycles,
            heartbeat_age_seconds=round(max(0.0, (now - record.heartbeat).total_seconds()), 1),
            alive=self.is_alive(record, now=now),
            tests_pass=record.tests_pass,
            tests_fail=record.tests_fail,
            pass_rate=record.pass_rate,
            error_count=len(record.errors),
            reason=record.reason.value if record.reason is not None else None,
            work_summary=record.work_summary,
            last_update=to_iso(record.last_update),
        )

    def _read_record(self, key: str) -> StatusRecord | None:
        try:
            text = self.store.read_text(key)
        except (OSError, UnicodeDecodeError) as error:
            logger.debug("Skipping unreadable status record %s: %s", key, error)
            return None
        if text is None:
            return None
        try:
            return StatusRecord.from_payload(json.loads(text))
        except (json.JSONDecodeError, ValueError) as error:
            logger.debug("Skipping invalid status record %s: %s", key, error)
            return None
