from __future__ import annotations

import os

import allure

from agent_relay.coordination.channel import CoordinationChannel
from agent_relay.coordination.models import Severity
from agent_relay.coordination.store import FileRecordStore

pytestmark = [
    allure.epic("Coordination Store"),
    allure.feature("Blockers & Feedback"),
]


def test_critical_blocker_is_mirrored_to_sync_log_once(channel, store) -> None:
    record = channel.report_blocker(
        Severity.CRITICAL,
        "role-hooks",
        "Auth service contract\nchanged",
        impact="Hooks cannot compile",
        needs_from="role-services",
    )

    assert record.key is not None
    assert record.key.startswith("blockers/CRITICAL-role-hooks-")
    assert store.read_text("sync-log.md").splitlines() == [
        "- 2026-03-01T12:00:00+00:00 CRITICAL [role-hooks] Auth service contract changed "
        "(needs: role-services)",
    ]


def test_non_critical_blockers_do_not_touch_sync_log(channel, store) -> None:
    channel.report_blocker(Severity.WARNING, "role-hooks", "Slow tests")
    channel.report_blocker(Severity.INFO, "role-hooks", "FYI")

    assert store.read_text("sync-log.md") is None
    assert len(store.list_keys("blockers/")) == 2


def test_blockers_with_same_timestamp_get_distinct_keys(channel) -> None:
    first = channel.report_blocker(Severity.INFO, "role-hooks", "one")
    second = channel.report_blocker(Severity.INFO, "role-hooks", "two")

    assert first.key != second.key
    assert second.key.endswith("-1.md")


def test_list_blockers_parses_records_oldest_first(channel, store, clock) -> None:
    channel.report_blocker(Severity.WARNING, "role-hooks", "first issue", impact="x")
    clock.advance(60)
    channel.report_blocker(
        Severity.CRITICAL,
        "role-screens",
        "second issue",
        needs_from="operator",
    )
    store.write_atomic("blockers/garbage.md", "not a blocker")

    blockers = channel.list_blockers()

    assert [(b.severity, b.agent, b.issue) for b in blockers] == [
        (Severity.WARNING, "role-hooks", "first issue"),
        (Severity.CRITICAL, "role-screens", "second issue"),
    ]
    assert blockers[0].impact == "x"
    assert blockers[1].needs_from == "operator"


def test_feedback_is_consumed_once(channel) -> None:
    assert channel.check_feedback("role-hooks") is None

    channel.post_feedback("role-hooks", "Focus on the login hook first.")
    feedback = channel.check_feedback("role-hooks")

    assert feedback is not None
    assert feedback.content == "Focus on the login hook first."
    assert channel.check_feedback("role-hooks") is None


def test_newer_feedback_is_delivered_again(channel, store) -> None:
    channel.post_feedback("role-hooks", "first")
    assert channel.check_feedback("role-hooks") is not None

    channel.post_feedback("role-hooks", "second")
    path = store.path_for("feedback/demo/role-hooks.md")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
    feedback = channel.check_feedback("role-hooks")

    assert feedback is not None
    assert feedback.content == "second"


def test_blank_feedback_is_ignored(tmp_path, layout, clock) -> None:
    channel = CoordinationChannel(store=FileRecordStore(tmp_path), layout=layout, clock=clock)
    channel.post_feedback("role-hooks", "   \n")

    assert channel.check_feedback("role-hooks") is None


def test_feedback_with_undecodable_bytes_is_still_delivered(channel, store) -> None:
    path = store.path_for("feedback/demo/role-hooks.md")
    path.parent.mkdir(parents=True)
    path.write_bytes(b"Use the caf\xe9 endpoint.")

    feedback = channel.check_feedback("role-hooks")

    assert feedback is not None
    assert feedback.content == "Use the caf\ufffd endpoint."
    assert channel.check_feedback("role-hooks") is None


def test_undecodable_blocker_file_is_skipped(channel, store) -> None:
    channel.report_blocker(Severity.INFO, "role-hooks", "Readable one")
    store.path_for("blockers/INFO-role-ghost-garbled.md").write_bytes(b"# \xff\xfe")

    assert [blocker.issue for blocker in channel.list_blockers()] == ["Readable one"]
