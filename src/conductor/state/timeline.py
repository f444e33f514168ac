from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, get_args

from conductor.state.workspace import (
    TIMELINE_FILE,
    ConductorStateError,
    Workspace,
    utcnow_iso,
    write_atomic,
)

logger = logging.getLogger(__name__)

EventType = Literal[
    "session_start",
    "session_resume",
    "phase_change",
    "worker_dispatch",
    "worker_complete",
    "review",
    "git",
    "error",
]
EVENT_TYPES: frozenset[str] = frozenset(get_args(EventType))


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    timestamp: str
    type: EventType
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "type": self.type,
            "message": self.message,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TimelineEvent | None:
        event_type = payload.get("type")
        if event_type not in EVENT_TYPES:
            return None
        data = payload.get("data")
        return cls(
            timestamp=str(payload.get("timestamp", "")),
            type=event_type,
            message=str(payload.get("message", "")),
            data=data if isinstance(data, dict) else {},
        )


@dataclass(slots=True)
class TimelineSummary:
    branch: str
    started_at: str | None
    last_event_at: str | None
    duration_minutes: int
    total_events: int
    counts: dict[str, int]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_duration(minutes: int) -> str:
    hours, remainder = divmod(max(0, minutes), 60)
    if hours:
        return f"{hours}h {remainder}m"
    return f"{remainder}m"


class Timeline:
    """Append-only event log, one ``timeline.json`` per branch session."""

    def __init__(self, workspace: Workspace, branch_resolver: Callable[[], str]) -> None:
        self.workspace = workspace
        self.branch_resolver = branch_resolver

    def _branch(self, branch: str | None) -> str:
        return branch or self.branch_resolver()

    def path(self, branch: str | None = None) -> Path:
        return self.workspace.branch_dir(self._branch(branch)) / TIMELINE_FILE

    def _read(self, path: Path) -> list[TimelineEvent] | None:
        """Events in ``path``; ``None`` when the file exists but cannot be parsed."""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Timeline %s unreadable: %s", path, exc)
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.debug("Timeline %s is not valid JSON: %s", path, exc)
            return None
        if not isinstance(payload, list):
            return None
        events: list[TimelineEvent] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            event = TimelineEvent.from_dict(item)
            if event is not None:
                events.append(event)
        return events

    def load(self, branch: str | None = None) -> list[TimelineEvent]:
        return self._read(self.path(branch)) or []

    def _write(self, events: list[TimelineEvent], branch: str) -> None:
        serialized = json.dumps([event.to_dict() for event in events], ensure_ascii=False, indent=2)
        write_atomic(self.path(branch), serialized + "\n")

    def _set_aside(self, path: Path) -> Path:
        stamp = utcnow_iso().replace(":", "-").replace("+", "-")
        corrupt = path.with_name(f"{path.name}.corrupt-{stamp}")
        suffix = 1
        while corrupt.exists():
            corrupt = path.with_name(f"{path.name}.corrupt-{stamp}-{suffix}")
            suffix += 1
        path.replace(corrupt)
        logger.warning("Timeline %s was unreadable; moved it to %s", path, corrupt.name)
        return corrupt

    def initialize(self, branch: str | None = None) -> bool:
        target = self._branch(branch)
        if self.path(target).exists():
            return False
        event = TimelineEvent(
            timestamp=utcnow_iso(),
            type="session_start",
            message=f"Session started on branch: {target}",
            data={"branch": target},
        )
        self._write([event], target)
        return True

    def append(
        self,
        event_type: EventType,
        message: str,
        data: dict[str, Any] | None = None,
        *,
        branch: str | None = None,
    ) -> TimelineEvent:
        if event_type not in EVENT_TYPES:
            raise ConductorStateError(f"Unknown timeline event type: {event_type}")
        target = self._branch(branch)
        event = TimelineEvent(
            timestamp=utcnow_iso(),
            type=event_type,
            message=message,
            data=dict(data or {}),
        )
        path = self.path(target)
        try:
            events = self._read(path)
            if events is None:
                self._set_aside(path)
                events = []
            events.append(event)
            self._write(events, target)
        except OSError as exc:
            logger.warning("Could not write timeline for %s: %s", target, exc)
        return event

    def recent(self, limit: int = 10, branch: str | None = None) -> list[TimelineEvent]:
        if limit <= 0:
            return []
        return self.load(branch)[-limit:]

    def summarize(
        self, branch: str | None = None, *, now: datetime | None = None
    ) -> TimelineSummary:
        target = self._branch(branch)
        events = self.load(target)
        started = _parse_timestamp(events[0].timestamp) if events else None
        reference = now or datetime.now(UTC)
        duration = int((reference - started).total_seconds() // 60) if started else 0
        return TimelineSummary(
            branch=target,
            started_at=events[0].timestamp if events else None,
            last_event_at=events[-1].timestamp if events else None,
            duration_minutes=max(0, duration),
            total_events=len(events),
            counts=dict(Counter(event.type for event in events)),
        )

    def log_phase_change(self, phase: str, iteration: int | None = None) -> TimelineEvent:
        return self.append(
            "phase_change",
            f"Phase changed to: {phase}",
            {"phase": phase, "iteration": iteration},
        )

    def log_worker_dispatch(self, worker: str, *, refine: bool = False) -> TimelineEvent:
        mode = "refine" if refine else "implementation"
        return self.append(
            "worker_dispatch",
            f"{worker} worker dispatched",
            {"worker": worker, "mode": mode},
        )

    def log_worker_complete(self, worker: str) -> TimelineEvent:
        return self.append("worker_complete", f"{worker} worker completed", {"worker": worker})

    def log_review(self, status: str) -> TimelineEvent:
        return self.append("review", f"Review completed: {status}", {"status": status})

    def log_git(self, operation: str, details: str) -> TimelineEvent:
        return self.append(
            "git",
            f"Git {operation}: {details}",
            {"operation": operation, "details": details},
        )

    def log_error(self, message: str, error: str | None = None) -> TimelineEvent:
        return self.append("error", f"Error: {message}", {"message": message, "error": error})
