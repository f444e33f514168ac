from __future__ import annotations

import logging
import os
import re
import tempfile
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

WORKFLOW_DIR = ".workflow"
SIGNALS_DIR = "signals"
SESSIONS_DIR = "sessions"
EXPORTS_DIR = "exports"
ERRORS_DIR = "errors"
STATE_FILE = "state.json"
TIMELINE_FILE = "timeline.json"
PLAN_FILE = "PLAN.md"
REVIEW_FILE = "REVIEW.md"
CONFIG_FILE = "conductor.toml"

DEFAULT_FEATURE_NAME = "Conductor workflow feature"
PLAN_TITLE_PATTERN = re.compile(r"^#\s+(.+)$", re.MULTILINE)


class ConductorStateError(RuntimeError):
    """Raised when a workflow store is used incorrectly."""


def utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def sanitize_branch(branch: str) -> str:
    return re.sub(r"[/\\]", "-", branch)


def write_atomic(path: Path, serialized: str) -> None:
    """Replace ``path`` through a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(serialized)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise


class Workspace:
    """Session context rooted at one project directory.

    Every store receives a workspace instead of reading the process cwd, so
    several workspaces can coexist in one process (tests, branch snapshots).
    """

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()
        self.workflow_dir = self.root / WORKFLOW_DIR
        self.signals_dir = self.workflow_dir / SIGNALS_DIR
        self.sessions_dir = self.workflow_dir / SESSIONS_DIR
        self.errors_dir = self.workflow_dir / ERRORS_DIR
        self.state_file = self.workflow_dir / STATE_FILE
        self.plan_path = self.workflow_dir / PLAN_FILE
        self.review_path = self.workflow_dir / REVIEW_FILE
        self.config_path = self.workflow_dir / CONFIG_FILE

    def is_initialized(self) -> bool:
        return self.workflow_dir.is_dir()

    def ensure(self) -> None:
        self.signals_dir.mkdir(parents=True, exist_ok=True)

    def branch_dir(self, branch: str) -> Path:
        return self.sessions_dir / sanitize_branch(branch)

    def exports_dir(self, branch: str) -> Path:
        return self.branch_dir(branch) / EXPORTS_DIR

    @staticmethod
    def read_artifact(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            if path.exists():
                logger.debug("Artifact %s unreadable: %s", path, exc)
            return None

    def read_review(self) -> str | None:
        return self.read_artifact(self.review_path)

    def plan_exists(self) -> bool:
        return self.plan_path.is_file()

    def feature_name_from_plan(self) -> str:
        content = self.read_artifact(self.plan_path)
        if not content:
            return DEFAULT_FEATURE_NAME
        match = PLAN_TITLE_PATTERN.search(content)
        if match:
            return match.group(1).strip()
        return DEFAULT_FEATURE_NAME
