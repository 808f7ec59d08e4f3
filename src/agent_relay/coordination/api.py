"""Read-only HTTP surface over the monitoring aggregator."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException

from agent_relay import __version__
from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.common import to_iso
from agent_relay.coordination.monitor import MonitoringAggregator


def create_monitor_app(
    aggregator: MonitoringAggregator,
    channel: CoordinationChannel | None = None,
) -> FastAPI:
    """Build the dashboard API; every route only reads the shared store."""

    app = FastAPI(title="agent-relay monitor", version=__version__)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/status")
    def status() -> dict[str, Any]:
        views = aggregator.agent_views()
        return {"agents": {view.agent: view.to_dict() for view in views}}

    @app.get("/api/status/{agent}")
    def agent_status(agent: str) -> dict[str, Any]:
        view = aggregator.agent_view(agent)
        if view is None:
            raise HTTPException(status_code=404, detail=f"Unknown agent: {agent}")
        return view.to_dict()

    @app.get("/api/summary")
    def summary() -> dict[str, Any]:
        return aggregator.summary()

    @app.get("/api/blockers")
    def blockers() -> dict[str, Any]:
        if channel is None:
            return {"blockers": []}
        return {
            "blockers": [
                {
                    "severity": record.severity.value,
                    "agent": record.agent,
                    "issue": record.issue,
                    "impact": record.impact,
                    "needsFrom": record.needs_from,
                    "createdAt": to_iso(record.created_at),
                    "key": record.key,
                }
                for record in channel.list_blockers()
            ],
        }

    return app
