import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from conductor.state import ConductorStateError, Timeline, Workspace
from conductor.state.timeline import format_duration


def _timeline(tmp_path: Path, branch: str = "feature/login") -> Timeline:
    return Timeline(Workspace(tmp_path), lambda: branch)


def test_initialize_writes_session_start_once(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)

    assert timeline.initialize() is True
    assert timeline.initialize() is False

    events = timeline.load()
    assert [event.type for event in events] == ["session_start"]
    assert "feature/login" in events[0].message
    expected = tmp_path.resolve() / ".workflow" / "sessions" / "feature-login" / "timeline.json"
    assert timeline.path() == expected


def test_append_and_recent_keep_chronological_order(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    for index in range(5):
        timeline.append("git", f"commit {index}")

    recent = timeline.recent(3)

    assert [event.message for event in recent] == ["commit 2", "commit 3", "commit 4"]
    assert timeline.recent(0) == []


def test_unknown_event_type_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConductorStateError):
        _timeline(tmp_path).append("deploy", "nope")  # type: ignore[arg-type]


def test_logs_are_per_branch(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    timeline.append("review", "on default branch")
    timeline.append("review", "elsewhere", branch="main")

    assert [event.message for event in timeline.load()] == ["on default branch"]
    assert [event.message for event in timeline.load("main")] == ["elsewhere"]


def test_convenience_loggers(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    timeline.log_phase_change("refining", 2)
    timeline.log_worker_dispatch("backend", refine=True)
    timeline.log_worker_complete("backend-refine")
    timeline.log_review("FAIL")
    timeline.log_git("commit", "feat: login")
    timeline.log_error("dispatch failed", "no tmux")

    events = timeline.load()
    assert [event.type for event in events] == [
        "phase_change",
        "worker_dispatch",
        "worker_complete",
        "review",
        "git",
        "error",
    ]
    assert events[0].data == {"phase": "refining", "iteration": 2}
    assert events[1].data["mode"] == "refine"


def test_corrupt_log_reads_empty_and_skips_bad_entries(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    path = timeline.path()
    path.parent.mkdir(parents=True)
    path.write_text("{broken", encoding="utf-8")
    assert timeline.load() == []

    path.write_text(
        json.dumps(
            [
                {"timestamp": "t", "type": "git", "message": "ok", "data": {}},
                {"timestamp": "t", "type": "bogus", "message": "skip"},
                "junk",
            ]
        ),
        encoding="utf-8",
    )
    assert [event.message for event in timeline.load()] == ["ok"]


def test_append_after_torn_write_keeps_damaged_history(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    for message in ("one", "two", "three"):
        timeline.log_git("commit", message)
    path = timeline.path()
    original = path.read_bytes()
    path.write_bytes(original[: len(original) // 2])

    timeline.log_git("commit", "four")

    assert [event.message for event in timeline.load()] == ["Git commit: four"]
    set_aside = list(path.parent.glob("timeline.json.corrupt-*"))
    assert len(set_aside) == 1
    assert set_aside[0].read_bytes() == original[: len(original) // 2]
    assert list(path.parent.glob("*.tmp")) == []


def test_undecodable_log_reads_empty(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    path = timeline.path()
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\xff\xfe[]")

    assert timeline.load() == []
    assert timeline.recent() == []


def test_summarize(tmp_path: Path) -> None:
    timeline = _timeline(tmp_path)
    timeline.initialize()
    timeline.log_git("commit", "docs(plan): x")
    timeline.log_git("commit", "feat: x")
    started = datetime.fromisoformat(timeline.load()[0].timestamp)

    summary = timeline.summarize(now=started + timedelta(minutes=95))

    assert summary.branch == "feature/login"
    assert summary.total_events == 3
    assert summary.counts == {"session_start": 1, "git": 2}
    assert summary.duration_minutes == 95


def test_summarize_empty(tmp_path: Path) -> None:
    summary = _timeline(tmp_path).summarize(now=datetime.now(UTC))

    assert summary.started_at is None
    assert summary.duration_minutes == 0
    assert summary.total_events == 0


def test_format_duration() -> None:
    assert format_duration(0) == "0m"
    assert format_duration(59) == "59m"
    assert format_duration(95) == "1h 35m"
