from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from agent_relay.coordination.layout import CoordinationLayout, InvalidNameError
from agent_relay.coordination.models import Severity
from agent_relay.coordination.store import FileRecordStore

pytestmark = [
    allure.epic("Coordination Store"),
    allure.feature("Atomic Records & Key Layout"),
]


def test_write_atomic_replaces_content_without_leaving_temp_files(tmp_path: Path) -> None:
    store = FileRecordStore(tmp_path)

    store.write_atomic("status/a.json", "first")
    store.write_atomic("status/a.json", "second")

    assert store.read_text("status/a.json") == "second"
    assert sorted(path.name for path in (tmp_path / "status").iterdir()) == ["a.json"]


def test_create_exclusive_is_write_once(tmp_path: Path) -> None:
    store = FileRecordStore(tmp_path)

    assert store.create_exclusive("handoffs/demo/a-complete.md", "one") is True
    assert store.create_exclusive("handoffs/demo/a-complete.md", "two") is False

    assert store.read_text("handoffs/demo/a-complete.md") == "one"
    assert store.list_keys("handoffs/demo/") == ["handoffs/demo/a-complete.md"]


def test_append_line_adds_exactly_one_line_per_call(tmp_path: Path) -> None:
    store = FileRecordStore(tmp_path)

    store.append_line("sync-log.md", "- first")
    store.append_line("sync-log.md", "- second\n")

    assert store.read_text("sync-log.md") == "- first\n- second\n"


def test_missing_records_read_as_none(tmp_path: Path) -> None:
    store = FileRecordStore(tmp_path)

    assert store.read_text("status/ghost.json") is None
    assert store.mtime_ns("status/ghost.json") is None
    assert store.exists("status/ghost.json") is False
    assert store.list_keys("status/") == []


def test_list_keys_skips_hidden_files_and_directories(tmp_path: Path) -> None:
    store = FileRecordStore(tmp_path)
    store.write_atomic("feedback/demo/b.md", "b")
    store.write_atomic("feedback/demo/a.md", "a")
    store.write_atomic("feedback/demo/.seen/a", "1")

    assert store.list_keys("feedback/demo/") == ["feedback/demo/a.md", "feedback/demo/b.md"]


def test_keys_cannot_escape_the_store_root(tmp_path: Path) -> None:
    store = FileRecordStore(tmp_path / "shared")

    with pytest.raises(ValueError, match="escapes store root"):
        store.write_atomic("../outside.txt", "nope")


def test_layout_builds_deterministic_keys() -> None:
    layout = CoordinationLayout("shop")
    created = datetime(2026, 3, 1, 12, 30, 15, 123456, tzinfo=UTC)

    assert layout.status_key("role-services") == "status/role-services.json"
    assert layout.restart_counter_key("role-services") == "restart_counters/role-services_count"
    assert layout.handoff_key("role-services", "complete") == (
        "handoffs/shop/role-services-complete.md"
    )
    assert layout.feedback_key("hooks") == "feedback/shop/hooks.md"
    assert layout.blocker_key(severity=Severity.CRITICAL, agent="hooks", created_at=created) == (
        "blockers/CRITICAL-hooks-20260301T123015123456Z.md"
    )
    assert layout.blocker_key(
        severity=Severity.INFO,
        agent="hooks",
        created_at=created,
        attempt=2,
    ).endswith("-2.md")
    assert CoordinationLayout.agent_from_status_key("status/hooks.json") == "hooks"
    assert CoordinationLayout.agent_from_status_key("status/nested/x.json") is None


@pytest.mark.parametrize("name", ["", "../etc", "a/b", "-leading-dash", "sp ace"])
def test_layout_rejects_unsafe_names(name: str) -> None:
    with pytest.raises(InvalidNameError):
        CoordinationLayout("shop").status_key(name)
