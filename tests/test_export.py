import json
from datetime import UTC, datetime
from pathlib import Path

from conductor.export import SessionExporter
from conductor.git import GitRepository
from conductor.state.signals import FileSignalStore
from conductor.state.timeline import Timeline
from conductor.state.workflow import WorkflowStateStore
from conductor.state.workspace import Workspace

NOW = datetime(2026, 3, 1, 12, 30, 0, tzinfo=UTC)


class FakeGitRepository(GitRepository):
    def current_branch(self) -> str:
        return "feature/login"

    def recent_commits(self, limit: int = 10) -> list[str]:
        return ["abc1234 feat: login", "def5678 docs(plan): login"][:limit]


def _exporter(tmp_path: Path) -> SessionExporter:
    workspace = Workspace(tmp_path)
    workspace.ensure()
    git = FakeGitRepository(tmp_path)
    store = WorkflowStateStore(workspace, FileSignalStore.for_workspace(workspace))
    state = store.load()
    state.feature_name = "Login"
    state.iteration = 2
    store.save(state)
    timeline = Timeline(workspace, git.current_branch)
    timeline.initialize()
    timeline.log_git("commit", "feat | login")
    return SessionExporter(workspace, store, timeline, git)


def test_filename_is_sanitized() -> None:
    name = SessionExporter.filename("feature/login", "markdown", NOW)

    assert name == "session-feature-login-2026-03-01T12-30-00.md"


def test_build_report(tmp_path: Path) -> None:
    report = _exporter(tmp_path).build_report(now=NOW)

    assert report.branch == "feature/login"
    assert report.feature_name == "Login"
    assert report.exported_at == "2026-03-01T12:30:00+00:00"
    assert len(report.timeline) == 2
    assert report.commits[0] == "abc1234 feat: login"


def test_export_json(tmp_path: Path) -> None:
    path = _exporter(tmp_path).export("json", now=NOW)

    exports = tmp_path.resolve() / ".workflow" / "sessions" / "feature-login" / "exports"
    assert path.parent == exports
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["session"]["iterations"] == 2
    assert payload["session"]["final_phase"] == "init"
    assert payload["timeline"][0]["type"] == "session_start"
    assert payload["final_state"]["feature_name"] == "Login"
    assert payload["exports"] == {"json": path.name}


def test_export_markdown(tmp_path: Path) -> None:
    path = _exporter(tmp_path).export("markdown", now=NOW)

    content = path.read_text(encoding="utf-8")
    assert content.startswith("# Conductor Session Report\n")
    assert "**Feature:** Login" in content
    assert "**Iterations:** 2/3" in content
    assert "feat \\| login" in content
    assert "- `abc1234 feat: login`" in content


def test_history_lists_exports(tmp_path: Path) -> None:
    exporter = _exporter(tmp_path)
    assert exporter.history() == []

    exporter.export("json", now=NOW)
    exporter.export("markdown", now=NOW)

    assert [path.suffix for path in exporter.history()] == [".json", ".md"]
