from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_relay.config import MonitorSettings, RetrySettings, Settings, TimingSettings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_uses_local_defaults(monkeypatch) -> None:
    for name in (
        "AGENT_RELAY_SHARED_DIR",
        "AGENT_RELAY_PROJECT_CONFIG",
        "AGENT_RELAY_FRESH_START",
        "AGENT_RELAY_MONITOR_PORT",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.shared_dir == Path(".agent_relay")
    assert settings.project_config == Path("agent_relay.yml")
    assert settings.fresh_start is False
    assert settings.monitor.port == 3001
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_RELAY_SHARED_DIR", str(tmp_path / "shared"))
    monkeypatch.setenv("AGENT_RELAY_FRESH_START", "yes")
    monkeypatch.setenv("AGENT_RELAY_HEARTBEAT_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("AGENT_RELAY_LIVENESS_THRESHOLD_SECONDS", "20")
    monkeypatch.setenv("AGENT_RELAY_TRANSIENT_RETRY_LIMIT", "0")
    monkeypatch.setenv("AGENT_RELAY_MONITOR_PORT", "8080")

    settings = Settings.from_env()

    assert settings.shared_dir == tmp_path / "shared"
    assert settings.fresh_start is True
    assert settings.timing.heartbeat_interval_seconds == 5.0
    assert settings.timing.liveness_threshold_seconds == 20.0
    assert settings.retry.transient_retry_limit == 0
    assert settings.monitor.port == 8080
    settings.validate()


def test_invalid_boolean_env_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_RELAY_DEBUG", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for AGENT_RELAY_DEBUG"):
        Settings.from_env()


def test_liveness_threshold_must_exceed_heartbeat_interval() -> None:
    settings = Settings(
        timing=TimingSettings(heartbeat_interval_seconds=60, liveness_threshold_seconds=60),
    )

    with pytest.raises(ValueError, match="must exceed the heartbeat interval"):
        settings.validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(timing=TimingSettings(heartbeat_interval_seconds=0)), "HEARTBEAT"),
        (Settings(timing=TimingSettings(dependency_poll_seconds=0)), "DEPENDENCY_POLL"),
        (Settings(timing=TimingSettings(test_timeout_seconds=-1)), "TEST_TIMEOUT"),
        (Settings(retry=RetrySettings(transient_retry_limit=-1)), "TRANSIENT_RETRY_LIMIT"),
        (Settings(retry=RetrySettings(status_write_retries=-1)), "STATUS_WRITE_RETRIES"),
        (Settings(monitor=MonitorSettings(port=70_000)), "MONITOR_PORT"),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
