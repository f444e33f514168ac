from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from conductor.state.workspace import ConductorStateError, Workspace, utcnow_iso

logger = logging.getLogger(__name__)

SIGNAL_SUFFIX = ".done"

PLAN = "plan"
REVIEW = "review"
COMPOUND = "compound"
PR = "pr"
IMPLEMENTATION_SIGNALS = ("backend", "frontend", "tests")


def signal_name(role: str, *, refine: bool = False) -> str:
    return f"{role}-refine" if refine else role


REFINE_SIGNALS = tuple(signal_name(role, refine=True) for role in IMPLEMENTATION_SIGNALS)


def _validate_name(name: str) -> str:
    cleaned = name.strip()
    if cleaned.endswith(SIGNAL_SUFFIX):
        cleaned = cleaned[: -len(SIGNAL_SUFFIX)]
    if not cleaned or "/" in cleaned or "\\" in cleaned or cleaned.startswith("."):
        raise ConductorStateError(f"Invalid signal name: {name!r}")
    return cleaned


class SignalStore(ABC):
    """Set of named completion markers shared with the agent processes."""

    @abstractmethod
    def set(self, name: str) -> None:
        """Create the marker for ``name``; repeated calls are no-ops."""

    @abstractmethod
    def clear(self, name: str) -> None:
        """Remove the marker for ``name`` if present."""

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every marker."""

    @abstractmethod
    def read_all(self) -> frozenset[str]:
        """Return the names of all markers currently observed."""

    def is_set(self, name: str) -> bool:
        return name in self.read_all()

    def replace(self, names: set[str] | frozenset[str]) -> None:
        self.clear_all()
        for name in sorted(names):
            self.set(name)

    def as_dict(self) -> dict[str, bool]:
        return {name: True for name in sorted(self.read_all())}


class FileSignalStore(SignalStore):
    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @classmethod
    def for_workspace(cls, workspace: Workspace) -> FileSignalStore:
        return cls(workspace.signals_dir)

    def _path(self, name: str) -> Path:
        return self.directory / f"{_validate_name(name)}{SIGNAL_SUFFIX}"

    def set(self, name: str) -> None:
        path = self._path(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(utcnow_iso(), encoding="utf-8")

    def clear(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def clear_all(self) -> None:
        try:
            markers = list(self.directory.glob(f"*{SIGNAL_SUFFIX}"))
        except OSError as exc:
            logger.debug("Cannot list signals in %s: %s", self.directory, exc)
            return
        for marker in markers:
            try:
                marker.unlink(missing_ok=True)
            except OSError as exc:
                logger.debug("Cannot remove signal %s: %s", marker, exc)

    def read_all(self) -> frozenset[str]:
        try:
            entries = [entry.name for entry in self.directory.iterdir()]
        except OSError:
            return frozenset()
        return frozenset(
            name[: -len(SIGNAL_SUFFIX)]
            for name in entries
            if name.endswith(SIGNAL_SUFFIX) and len(name) > len(SIGNAL_SUFFIX)
        )


class MemorySignalStore(SignalStore):
    def __init__(self, names: set[str] | None = None) -> None:
        self._names: set[str] = {_validate_name(name) for name in names or set()}

    def set(self, name: str) -> None:
        self._names.add(_validate_name(name))

    def clear(self, name: str) -> None:
        self._names.discard(_validate_name(name))

    def clear_all(self) -> None:
        self._names.clear()

    def read_all(self) -> frozenset[str]:
        return frozenset(self._names)
