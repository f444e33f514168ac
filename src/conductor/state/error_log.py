from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from conductor.state.workspace import Workspace, utcnow_iso

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTED_ACTION = "Check the worker window for details"


@dataclass(slots=True)
class WorkerError:
    worker: str
    timestamp: str
    phase: str
    error: str
    last_output: str | None = None
    suggested_action: str = DEFAULT_SUGGESTED_ACTION

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkerError:
        return cls(
            worker=str(payload["worker"]),
            timestamp=str(payload["timestamp"]),
            phase=str(payload.get("phase", "")),
            error=str(payload.get("error", "")),
            last_output=payload.get("last_output"),
            suggested_action=str(payload.get("suggested_action") or DEFAULT_SUGGESTED_ACTION),
        )


class WorkerErrorLog:
    """One JSON file per worker failure under ``.workflow/errors``."""

    def __init__(self, workspace: Workspace) -> None:
        self.directory = workspace.errors_dir

    def record(
        self,
        worker: str,
        phase: str,
        error: str,
        *,
        last_output: str | None = None,
        suggested_action: str | None = None,
    ) -> WorkerError:
        entry = WorkerError(
            worker=worker,
            timestamp=utcnow_iso(),
            phase=phase,
            error=error,
            last_output=last_output,
            suggested_action=suggested_action or DEFAULT_SUGGESTED_ACTION,
        )
        stamp = entry.timestamp.replace(":", "-").replace("+", "-")
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{worker}-{stamp}.json"
        suffix = 1
        while path.exists():
            path = self.directory / f"{worker}-{stamp}-{suffix}.json"
            suffix += 1
        path.write_text(json.dumps(asdict(entry), ensure_ascii=False, indent=2), encoding="utf-8")
        return entry

    def recent(self, limit: int = 5) -> list[WorkerError]:
        stamped: list[tuple[int, str, Path]] = []
        try:
            for path in self.directory.glob("*.json"):
                stamped.append((path.stat().st_mtime_ns, path.name, path))
        except OSError:
            return []
        stamped.sort(reverse=True)
        entries: list[WorkerError] = []
        for _, _, path in stamped[: max(0, limit)]:
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                entries.append(WorkerError.from_dict(payload))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as exc:
                logger.debug("Skipping unreadable error log %s: %s", path, exc)
        return entries

    def has_errors(self) -> bool:
        try:
            return any(self.directory.glob("*.json"))
        except OSError:
            return False

    def clear(self) -> None:
        try:
            files = list(self.directory.glob("*.json"))
        except OSError:
            return
        for path in files:
            path.unlink(missing_ok=True)
