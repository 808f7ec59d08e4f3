from __future__ import annotations

import inspect
import json

import allure
import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from agent_relay.coordination.api import create_monitor_app
from agent_relay.coordination.models import (
    AgentStatus,
    Severity,
    StatusMutation,
    TerminalReason,
)
from agent_relay.coordination.monitor import NOT_STARTED, MonitoringAggregator
from agent_relay.coordination.status import StatusRecordManager

pytestmark = [
    allure.epic("Monitoring"),
    allure.feature("Aggregator & HTTP API"),
]


def _publish_status(store, layout, clock, agent: str, mutation: StatusMutation) -> None:
    manager = StatusRecordManager(
        store=store,
        layout=layout,
        agent=agent,
        max_cycles=5,
        clock=clock,
        sleep=lambda _: None,
    )
    manager.init_status(1)
    manager.update(mutation)


@pytest.fixture()
def aggregator(store, layout, clock) -> MonitoringAggregator:
    _publish_status(
        store,
        layout,
        clock,
        "role-services",
        StatusMutation(
            status=AgentStatus.COMPLETED,
            tests_pass=9,
            tests_fail=1,
            pass_rate=90.0,
            reason=TerminalReason.TARGET_REACHED,
        ),
    )
    clock.advance(-600)
    _publish_status(
        store,
        layout,
        clock,
        "role-hooks",
        StatusMutation(
            status=AgentStatus.RUNNING,
            tests_pass=4,
            tests_fail=6,
            pass_rate=40.0,
            errors=tuple(f"Error: {index}" for index in range(11)),
        ),
    )
    clock.advance(600)
    store.write_atomic("status/role-broken.json", "{oops")
    return MonitoringAggregator(
        store=store,
        layout=layout,
        expected_agents=["role-hooks", "role-screens", "role-services"],
        target_pass_rates={"role-hooks": 85.0, "role-services": 85.0},
        liveness_threshold_seconds=180,
        clock=clock,
    )


def test_views_cover_records_and_expected_agents(aggregator) -> None:
    views = {view.agent: view for view in aggregator.agent_views()}

    assert list(views) == ["role-hooks", "role-screens", "role-services"]
    assert views["role-services"].alive
    assert views["role-services"].reason == "target_reached"
    assert not views["role-hooks"].alive
    assert views["role-hooks"].heartbeat_age_seconds == 600.0
    assert views["role-hooks"].error_count == 11
    assert views["role-screens"].status == NOT_STARTED


def test_alerts_flag_stale_noisy_and_lagging_agents(aggregator) -> None:
    alerts = [(alert.level, alert.agent, alert.message) for alert in aggregator.alerts()]

    assert alerts == [
        ("warning", "role-hooks", "Agent appears stale (no recent heartbeat)"),
        ("warning", "role-hooks", "High error count: 11"),
        ("warning", "role-hooks", "Test pass rate below target: 40.0% < 85.0%"),
    ]


def test_summary_aggregates_counts_and_recommendations(aggregator) -> None:
    summary = aggregator.summary()

    assert summary["total"] == 3
    assert summary["byStatus"] == {"running": 1, NOT_STARTED: 1, "completed": 1}
    assert summary["alive"] == 1
    assert summary["stale"] == 1
    assert summary["totalErrors"] == 11
    assert summary["averagePassRate"] == 65.0
    assert summary["recommendations"] == [
        "Restart stale agents: role-hooks",
        "Improve test pass rates for: role-hooks",
    ]
    json.dumps(summary)


def test_render_lines_marks_stale_heartbeats(aggregator) -> None:
    lines = aggregator.render_lines()

    assert lines[0].startswith("agent")
    hooks_line = next(line for line in lines if line.startswith("role-hooks"))
    assert "600s!" in hooks_line
    assert "[warning] role-hooks: High error count: 11" in lines


def test_empty_store_renders_placeholder(store, layout, clock) -> None:
    aggregator = MonitoringAggregator(store=store, layout=layout, clock=clock)

    assert aggregator.render_lines() == ["No agent status records found."]
    assert aggregator.summary()["averagePassRate"] == 0.0


def test_http_api_serves_read_only_views(aggregator, channel) -> None:
    channel.report_blocker(Severity.CRITICAL, "role-hooks", "API contract missing")
    client = TestClient(create_monitor_app(aggregator, channel))

    assert client.get("/health").json() == {"status": "ok"}

    status = client.get("/api/status").json()
    assert sorted(status["agents"]) == ["role-hooks", "role-screens", "role-services"]
    assert status["agents"]["role-services"]["pass_rate"] == 90.0

    hooks = client.get("/api/status/role-hooks")
    assert hooks.status_code == 200
    assert hooks.json()["tests_fail"] == 6

    missing = client.get("/api/status/role-ghost")
    assert missing.status_code == 404

    assert client.get("/api/summary").json()["stale"] == 1

    blockers = client.get("/api/blockers").json()["blockers"]
    assert [(b["severity"], b["agent"], b["issue"]) for b in blockers] == [
        ("CRITICAL", "role-hooks", "API contract missing"),
    ]


def test_http_api_without_channel_has_no_blockers(aggregator) -> None:
    client = TestClient(create_monitor_app(aggregator))

    assert client.get("/api/blockers").json() == {"blockers": []}


def test_undecodable_record_is_skipped_not_fatal(aggregator, store) -> None:
    store.path_for("status/role-garbled.json").write_bytes(b'{"agent": "\xff"}')

    views = {view.agent: view for view in aggregator.agent_views()}

    assert "role-garbled" not in views
    assert views["role-services"].pass_rate == 90.0
    assert aggregator.summary()["total"] == 3


def test_http_routes_run_in_threadpool(aggregator) -> None:
    app = create_monitor_app(aggregator)
    endpoints = {route.path: route.endpoint for route in app.routes if isinstance(route, APIRoute)}

    assert {"/health", "/api/status", "/api/summary", "/api/blockers"} <= set(endpoints)
    assert not any(inspect.iscoroutinefunction(endpoint) for endpoint in endpoints.values())
