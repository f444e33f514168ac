import subprocess
from pathlib import Path

import pytest

from conductor.dispatch import NullDispatcher, TmuxDispatcher, TmuxSession
from conductor.dispatch import tmux as tmux_module
from conductor.dispatch.tmux import shell_quote


class _FakeTmux:
    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[list[str]] = []
        self.fail_on = fail_on

    def __call__(self, command, **kwargs):
        self.calls.append(list(command))
        if self.fail_on is not None and self.fail_on in command:
            return subprocess.CompletedProcess(command, 1, "", "can't find window")
        return subprocess.CompletedProcess(command, 0, "", "")


def test_shell_quote_escapes_single_quotes() -> None:
    assert shell_quote("it's") == "'it'\"'\"'s'"


def test_dispatch_sends_command_then_enter(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeTmux()
    monkeypatch.setattr(tmux_module.subprocess, "run", fake)
    events: list[dict] = []
    dispatcher = TmuxDispatcher("conductor", "opencode", event_hook=events.append)

    assert dispatcher.dispatch("backend", "build it")

    assert fake.calls == [
        ["tmux", "send-keys", "-t", "conductor:Backend", "opencode --prompt 'build it'"],
        ["tmux", "send-keys", "-t", "conductor:Backend", "Enter"],
    ]
    assert events == [{"type": "dispatched", "role": "backend"}]


def test_dispatch_failure_reports_event(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tmux_module.subprocess, "run", _FakeTmux(fail_on="send-keys"))
    events: list[dict] = []
    dispatcher = TmuxDispatcher("conductor", "opencode", event_hook=events.append)

    assert dispatcher.dispatch("reviewer", "review it") is False
    assert events == [
        {"type": "dispatch_failed", "role": "reviewer", "error": "can't find window"}
    ]


def test_dispatch_without_tmux_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    def missing(command, **kwargs):
        raise FileNotFoundError("tmux")

    monkeypatch.setattr(tmux_module.subprocess, "run", missing)
    events: list[dict] = []
    dispatcher = TmuxDispatcher("conductor", "opencode", event_hook=events.append)

    assert dispatcher.dispatch("planner", "plan") is False
    assert events[0]["type"] == "dispatch_failed"


def test_dispatch_many_collects_delivered_roles(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tmux_module.subprocess, "run", _FakeTmux(fail_on="conductor:Frontend"))
    dispatcher = TmuxDispatcher("conductor", "opencode")

    delivered = dispatcher.dispatch_many(
        [("backend", "a"), ("frontend", "b"), ("tests", "c")], stagger_seconds=0
    )

    assert delivered == ["backend", "tests"]


def test_clear_interrupts_then_clears_window(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeTmux()
    monkeypatch.setattr(tmux_module.subprocess, "run", fake)

    TmuxDispatcher("conductor", "opencode").clear("tests")

    assert fake.calls == [
        ["tmux", "send-keys", "-t", "conductor:Tests", "C-c"],
        ["tmux", "send-keys", "-t", "conductor:Tests", "clear", "Enter"],
    ]


def test_null_dispatcher_records_prompts() -> None:
    dispatcher = NullDispatcher()

    assert dispatcher.dispatch_many([("backend", "a"), ("tests", "b")]) == ["backend", "tests"]
    assert dispatcher.sent == [("backend", "a"), ("tests", "b")]


def test_session_start_creates_windows(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    fake = _FakeTmux()
    monkeypatch.setattr(tmux_module.subprocess, "run", fake)

    TmuxSession("demo").start(tmp_path)

    windows = [call[call.index("-n") + 1] for call in fake.calls if "-n" in call]
    assert windows == ["Orch", "PM", "Backend", "Frontend", "Tests", "Review", "Dashboard"]
    assert ["tmux", "send-keys", "-t", "demo:Dashboard", "conductor watch", "Enter"] in fake.calls
    assert not any("demo:PM" in call for call in fake.calls)
    assert fake.calls[-1] == ["tmux", "select-window", "-t", "demo:Orch"]


def test_session_start_raises_on_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(tmux_module.subprocess, "run", _FakeTmux(fail_on="new-session"))

    with pytest.raises(RuntimeError, match="new-session"):
        TmuxSession("demo").start(tmp_path)


def test_session_stop(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tmux_module.subprocess, "run", _FakeTmux(fail_on="kill-session"))

    assert TmuxSession("demo").stop() is False
