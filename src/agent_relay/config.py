"""Runtime configuration for agent processes and the monitor."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class TimingSettings:
    """Intervals and timeouts shared by every agent process."""

    heartbeat_interval_seconds: float = 60.0
    dependency_poll_seconds: float = 30.0
    dependency_warn_after_seconds: float = 3_600.0
    liveness_threshold_seconds: float = 180.0
    test_timeout_seconds: float = 900.0
    executor_timeout_seconds: float = 3_600.0


@dataclass(slots=True)
class RetrySettings:
    """Bounded retries for transient failures."""

    transient_retry_limit: int = 2
    status_write_retries: int = 3
    status_write_backoff_seconds: float = 0.2


@dataclass(slots=True)
class MonitorSettings:
    """Read-only HTTP monitor settings."""

    host: str = "127.0.0.1"
    port: int = 3001


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    shared_dir: Path = Path(".agent_relay")
    project_config: Path = Path("agent_relay.yml")
    workspace: Path = Path()
    fresh_start: bool = False
    debug: bool = False
    timing: TimingSettings = field(default_factory=TimingSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``AGENT_RELAY_*`` variables with local-development defaults."""

        return cls(
            shared_dir=Path(os.getenv("AGENT_RELAY_SHARED_DIR", ".agent_relay")),
            project_config=Path(os.getenv("AGENT_RELAY_PROJECT_CONFIG", "agent_relay.yml")),
            workspace=Path(os.getenv("AGENT_RELAY_WORKSPACE", ".")),
            fresh_start=_env_bool("AGENT_RELAY_FRESH_START", default=False),
            debug=_env_bool("AGENT_RELAY_DEBUG", default=False),
            timing=TimingSettings(
                heartbeat_interval_seconds=float(
                    os.getenv("AGENT_RELAY_HEARTBEAT_INTERVAL_SECONDS", "60"),
                ),
                dependency_poll_seconds=float(
                    os.getenv("AGENT_RELAY_DEPENDENCY_POLL_SECONDS", "30"),
                ),
                dependency_warn_after_seconds=float(
                    os.getenv("AGENT_RELAY_DEPENDENCY_WARN_AFTER_SECONDS", "3600"),
                ),
                liveness_threshold_seconds=float(
                    os.getenv("AGENT_RELAY_LIVENESS_THRESHOLD_SECONDS", "180"),
                ),
                test_timeout_seconds=float(os.getenv("AGENT_RELAY_TEST_TIMEOUT_SECONDS", "900")),
                executor_timeout_seconds=float(
                    os.getenv("AGENT_RELAY_EXECUTOR_TIMEOUT_SECONDS", "3600"),
                ),
            ),
            retry=RetrySettings(
                transient_retry_limit=int(os.getenv("AGENT_RELAY_TRANSIENT_RETRY_LIMIT", "2")),
                status_write_retries=int(os.getenv("AGENT_RELAY_STATUS_WRITE_RETRIES", "3")),
                status_write_backoff_seconds=float(
                    os.getenv("AGENT_RELAY_STATUS_WRITE_BACKOFF_SECONDS", "0.2"),
                ),
            ),
            monitor=MonitorSettings(
                host=os.getenv("AGENT_RELAY_MONITOR_HOST", "127.0.0.1"),
                port=int(os.getenv("AGENT_RELAY_MONITOR_PORT", "3001")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values no agent could run with."""

        timing = self.timing
        if timing.heartbeat_interval_seconds <= 0:
            raise ValueError("AGENT_RELAY_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if timing.liveness_threshold_seconds <= timing.heartbeat_interval_seconds:
            raise ValueError(
                "AGENT_RELAY_LIVENESS_THRESHOLD_SECONDS must exceed the heartbeat interval.",
            )
        if timing.dependency_poll_seconds <= 0:
            raise ValueError("AGENT_RELAY_DEPENDENCY_POLL_SECONDS must be > 0.")
        if timing.dependency_warn_after_seconds < 0:
            raise ValueError("AGENT_RELAY_DEPENDENCY_WARN_AFTER_SECONDS must be >= 0.")
        if timing.test_timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_TEST_TIMEOUT_SECONDS must be > 0.")
        if timing.executor_timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_EXECUTOR_TIMEOUT_SECONDS must be > 0.")
        if self.retry.transient_retry_limit < 0:
            raise ValueError("AGENT_RELAY_TRANSIENT_RETRY_LIMIT must be >= 0.")
        if self.retry.status_write_retries < 0:
            raise ValueError("AGENT_RELAY_STATUS_WRITE_RETRIES must be >= 0.")
        if self.retry.status_write_backoff_seconds < 0:
            raise ValueError("AGENT_RELAY_STATUS_WRITE_BACKOFF_SECONDS must be >= 0.")
        if not 0 < self.monitor.port < 65_536:
            raise ValueError("AGENT_RELAY_MONITOR_PORT must be within 1..65535.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
