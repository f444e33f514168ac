from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from conductor.controller import MAX_ITERATIONS
from conductor.git import GitRepository
from conductor.state.timeline import Timeline, TimelineEvent, format_duration
from conductor.state.workflow import WorkflowState, WorkflowStateStore
from conductor.state.workspace import Workspace, sanitize_branch

ExportFormat = Literal["json", "markdown"]
EXPORT_EXTENSIONS: dict[str, str] = {"json": "json", "markdown": "md"}
RECENT_COMMITS = 10


@dataclass(slots=True)
class SessionReport:
    branch: str
    feature_name: str | None
    started_at: str
    exported_at: str
    duration_minutes: int
    state: WorkflowState
    timeline: list[TimelineEvent] = field(default_factory=list)
    commits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": {
                "session_id": f"{self.branch}-{self.exported_at}",
                "branch": self.branch,
                "feature_name": self.feature_name,
                "started_at": self.started_at,
                "exported_at": self.exported_at,
                "duration_minutes": self.duration_minutes,
                "iterations": self.state.iteration,
                "final_phase": str(self.state.phase),
            },
            "timeline": [event.to_dict() for event in self.timeline],
            "commits": list(self.commits),
            "final_state": self.state.to_dict(),
        }

    def to_markdown(self) -> str:
        lines = [
            "# Conductor Session Report",
            "",
            f"**Branch:** {self.branch}  ",
        ]
        if self.feature_name:
            lines.append(f"**Feature:** {self.feature_name}  ")
        lines.extend(
            [
                f"**Duration:** {format_duration(self.duration_minutes)}  ",
                f"**Status:** {self.state.phase}  ",
                f"**Iterations:** {self.state.iteration}/{MAX_ITERATIONS}",
                "",
                "## Timeline",
                "",
                "| Time | Type | Event |",
                "|------|------|-------|",
            ]
        )
        for event in self.timeline:
            message = event.message.replace("|", "\\|")
            lines.append(f"| {event.timestamp} | {event.type} | {message} |")
        lines.append("")
        if self.commits:
            lines.extend(["## Commits", ""])
            lines.extend(f"- `{commit}`" for commit in self.commits)
            lines.append("")
        lines.extend(
            [
                "## Stats",
                "",
                f"- **Phase:** {self.state.phase}",
                f"- **Iteration:** {self.state.iteration}/{MAX_ITERATIONS}",
                f"- **Commits:** {self.state.commit_count}",
                f"- **Events:** {len(self.timeline)}",
            ]
        )
        return "\n".join(lines) + "\n"


class SessionExporter:
    """Writes session reports under ``sessions/<branch>/exports``."""

    def __init__(
        self,
        workspace: Workspace,
        store: WorkflowStateStore,
        timeline: Timeline,
        git: GitRepository,
    ) -> None:
        self.workspace = workspace
        self.store = store
        self.timeline = timeline
        self.git = git

    def build_report(
        self, branch: str | None = None, *, now: datetime | None = None
    ) -> SessionReport:
        target = branch or self.git.current_branch()
        reference = now or datetime.now(UTC)
        summary = self.timeline.summarize(target, now=reference)
        state = self.store.load()
        exported_at = reference.replace(microsecond=0).isoformat()
        return SessionReport(
            branch=target,
            feature_name=state.feature_name,
            started_at=summary.started_at or exported_at,
            exported_at=exported_at,
            duration_minutes=summary.duration_minutes,
            state=state,
            timeline=self.timeline.load(target),
            commits=self.git.recent_commits(RECENT_COMMITS),
        )

    @staticmethod
    def filename(branch: str, export_format: ExportFormat, now: datetime) -> str:
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
        return f"session-{sanitize_branch(branch)}-{stamp}.{EXPORT_EXTENSIONS[export_format]}"

    def export(
        self,
        export_format: ExportFormat,
        branch: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Path:
        reference = now or datetime.now(UTC)
        report = self.build_report(branch, now=reference)
        directory = self.workspace.exports_dir(report.branch)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.filename(report.branch, export_format, reference)
        if export_format == "json":
            payload = report.to_dict()
            payload["exports"] = {"json": path.name}
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
            path.write_text(serialized + "\n", encoding="utf-8")
        else:
            path.write_text(report.to_markdown(), encoding="utf-8")
        return path

    def history(self, branch: str | None = None) -> list[Path]:
        directory = self.workspace.exports_dir(branch or self.git.current_branch())
        try:
            return sorted(path for path in directory.iterdir() if path.name.startswith("session-"))
        except OSError:
            return []
