from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from conductor.state.signals import FileSignalStore, SignalStore
from conductor.state.workspace import (
    SIGNALS_DIR,
    STATE_FILE,
    Workspace,
    utcnow_iso,
    write_atomic,
)

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    INIT = "init"
    PLANNING = "planning"
    IMPLEMENTING = "implementing"
    REVIEWING = "reviewing"
    REFINING = "refining"
    COMPOUNDING = "compounding"
    COMPLETE = "complete"


@dataclass(slots=True)
class WorkflowState:
    phase: Phase = Phase.INIT
    iteration: int = 1
    feature_name: str | None = None
    branch_name: str | None = None
    commit_count: int = 0
    signals: dict[str, bool] = field(default_factory=dict)
    last_updated: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": str(self.phase),
            "iteration": self.iteration,
            "feature_name": self.feature_name,
            "branch_name": self.branch_name,
            "commit_count": self.commit_count,
            "signals": dict(self.signals),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkflowState:
        signals = payload.get("signals", {})
        if not isinstance(signals, dict):
            raise ValueError("signals must be an object")
        iteration = int(payload.get("iteration", 1))
        if iteration < 1:
            raise ValueError("iteration must be >= 1")
        return cls(
            phase=Phase(payload.get("phase", Phase.INIT)),
            iteration=iteration,
            feature_name=payload.get("feature_name"),
            branch_name=payload.get("branch_name"),
            commit_count=int(payload.get("commit_count", 0)),
            signals={str(key): bool(value) for key, value in signals.items()},
            last_updated=str(payload.get("last_updated") or utcnow_iso()),
        )


def _read_state_file(path: Path) -> WorkflowState | None:
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("state must be an object")
        return WorkflowState.from_dict(payload)
    except (json.JSONDecodeError, TypeError, ValueError) as exc:
        logger.debug("Ignoring unreadable state file %s: %s", path, exc)
        return None


class WorkflowStateStore:
    """Single-record state file plus per-branch snapshots of state and signals."""

    def __init__(self, workspace: Workspace, signals: SignalStore | None = None) -> None:
        self.workspace = workspace
        self.signals = signals or FileSignalStore.for_workspace(workspace)

    @staticmethod
    def initial() -> WorkflowState:
        return WorkflowState()

    def load(self) -> WorkflowState:
        state = _read_state_file(self.workspace.state_file)
        return state if state is not None else self.initial()

    def save(self, state: WorkflowState) -> WorkflowState:
        state.last_updated = utcnow_iso()
        serialized = json.dumps(state.to_dict(), ensure_ascii=False, indent=2)
        write_atomic(self.workspace.state_file, serialized + "\n")
        return state

    def reset(self) -> WorkflowState:
        self.signals.clear_all()
        return self.save(self.initial())

    def save_to_branch(self, branch: str) -> WorkflowState:
        branch_dir = self.workspace.branch_dir(branch)
        snapshot = self.load()
        snapshot.branch_name = branch
        snapshot.signals = self.signals.as_dict()
        snapshot.last_updated = utcnow_iso()
        write_atomic(
            branch_dir / STATE_FILE,
            json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2) + "\n",
        )
        snapshot_signals = FileSignalStore(branch_dir / SIGNALS_DIR)
        snapshot_signals.replace(self.signals.read_all())
        return snapshot

    def load_from_branch(self, branch: str) -> WorkflowState | None:
        branch_dir = self.workspace.branch_dir(branch)
        snapshot = _read_state_file(branch_dir / STATE_FILE)
        if snapshot is None:
            return None
        snapshot_signals = FileSignalStore(branch_dir / SIGNALS_DIR).read_all()
        self.signals.replace(snapshot_signals)
        snapshot.signals = {name: True for name in sorted(snapshot_signals)}
        return self.save(snapshot)

    def list_branches(self) -> list[str]:
        try:
            return sorted(
                entry.name
                for entry in self.workspace.sessions_dir.iterdir()
                if (entry / STATE_FILE).is_file()
            )
        except OSError:
            return []

    def clear_branch(self, branch: str) -> bool:
        branch_dir = self.workspace.branch_dir(branch)
        if not branch_dir.is_dir():
            return False
        try:
            shutil.rmtree(branch_dir)
        except OSError as exc:
            logger.warning("Could not remove branch session %s: %s", branch_dir, exc)
            return False
        return True
