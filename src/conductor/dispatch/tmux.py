from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from conductor.dispatch.base import DispatchEventHook, Dispatcher

logger = logging.getLogger(__name__)

ORCHESTRATOR_WINDOW = "Orch"
DASHBOARD_WINDOW = "Dashboard"
ROLE_WINDOWS: dict[str, str] = {
    "planner": "PM",
    "backend": "Backend",
    "frontend": "Frontend",
    "tests": "Tests",
    "reviewer": "Review",
}
SESSION_WINDOWS = (ORCHESTRATOR_WINDOW, *ROLE_WINDOWS.values(), DASHBOARD_WINDOW)


def shell_quote(text: str) -> str:
    return "'" + text.replace("'", "'\"'\"'") + "'"


def _run_tmux(args: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(["tmux", *args], text=True, capture_output=True)
    except FileNotFoundError as exc:
        return subprocess.CompletedProcess(["tmux", *args], 127, "", str(exc))


def _error(proc: subprocess.CompletedProcess[str]) -> str:
    return proc.stderr.strip() or proc.stdout.strip() or f"exit code {proc.returncode}"


class TmuxDispatcher(Dispatcher):
    def __init__(
        self,
        session_name: str,
        agent_command: str,
        event_hook: DispatchEventHook | None = None,
    ) -> None:
        super().__init__(event_hook)
        self.session_name = session_name
        self.agent_command = agent_command

    def target(self, role: str) -> str:
        return f"{self.session_name}:{ROLE_WINDOWS.get(role, role)}"

    def command_for(self, prompt: str) -> str:
        return f"{self.agent_command} --prompt {shell_quote(prompt)}"

    def _send(self, role: str, *keys: str) -> subprocess.CompletedProcess[str]:
        return _run_tmux(["send-keys", "-t", self.target(role), *keys])

    def dispatch(self, role: str, prompt: str) -> bool:
        for keys in ((self.command_for(prompt),), ("Enter",)):
            proc = self._send(role, *keys)
            if proc.returncode != 0:
                error = _error(proc)
                logger.warning("Failed to dispatch %s to %s: %s", role, self.target(role), error)
                self._emit({"type": "dispatch_failed", "role": role, "error": error})
                return False
        logger.debug("Dispatched %s to %s", role, self.target(role))
        self._emit({"type": "dispatched", "role": role})
        return True

    def clear(self, role: str) -> None:
        for keys in (("C-c",), ("clear", "Enter")):
            proc = self._send(role, *keys)
            if proc.returncode != 0:
                logger.debug("Could not clear %s: %s", self.target(role), _error(proc))
                return


class TmuxSession:
    """One tmux session with a window per worker role."""

    def __init__(self, session_name: str) -> None:
        self.session_name = session_name

    @staticmethod
    def available() -> bool:
        return shutil.which("tmux") is not None

    def exists(self) -> bool:
        return _run_tmux(["has-session", "-t", self.session_name]).returncode == 0

    def start(self, project_dir: Path, conductor_command: str = "conductor") -> None:
        """Create the session; raises ``RuntimeError`` when tmux refuses.

        Worker windows start at a shell. The planner prompt is dispatched separately.
        """
        root = str(project_dir.resolve())
        steps: list[list[str]] = [
            ["new-session", "-d", "-s", self.session_name, "-n", ORCHESTRATOR_WINDOW, "-c", root]
        ]
        for window in SESSION_WINDOWS[1:]:
            steps.append(["new-window", "-t", self.session_name, "-n", window, "-c", root])
        steps.append(
            [
                "send-keys",
                "-t",
                f"{self.session_name}:{DASHBOARD_WINDOW}",
                f"{conductor_command} watch",
                "Enter",
            ]
        )
        steps.append(["select-window", "-t", f"{self.session_name}:{ORCHESTRATOR_WINDOW}"])
        for args in steps:
            proc = _run_tmux(args)
            if proc.returncode != 0:
                raise RuntimeError(f"tmux {args[0]} failed: {_error(proc)}")

    def attach(self) -> int:
        try:
            return subprocess.run(["tmux", "attach-session", "-t", self.session_name]).returncode
        except FileNotFoundError:
            return 127

    def stop(self) -> bool:
        proc = _run_tmux(["kill-session", "-t", self.session_name])
        if proc.returncode != 0:
            logger.debug("Could not stop session %s: %s", self.session_name, _error(proc))
            return False
        return True
