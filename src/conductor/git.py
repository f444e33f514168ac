from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from conductor.config import BranchTemplate
from conductor.state.workspace import WORKFLOW_DIR

logger = logging.getLogger(__name__)

MAIN_BRANCHES = ("main", "master")
UNKNOWN_BRANCH = "unknown"
PR_URL_PATTERN = re.compile(r"https://github\.com/\S+")


@dataclass(slots=True)
class GitResult:
    success: bool
    error: str | None = None
    branch: str | None = None
    url: str | None = None
    output: str = ""


@dataclass(slots=True)
class GitSetupReport:
    valid: bool
    errors: list[str] = field(default_factory=list)


def generate_slug(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:40]


def render_branch_name(template: BranchTemplate, slug: str, date: str | None = None) -> str:
    stamp = date or datetime.now(UTC).strftime("%Y%m%d")
    return template.format.format(prefix=template.prefix, date=stamp, slug=slug)


class GitRepository:
    """Version control collaborator; fallible operations return ``GitResult``."""

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root.resolve()

    def _run_git(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return self._run(["git", "--no-pager", *args])

    def _run(
        self, command: list[str], input_text: str | None = None
    ) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                command,
                cwd=self.repo_root,
                text=True,
                capture_output=True,
                input=input_text,
            )
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(command, 127, "", str(exc))

    @staticmethod
    def _error(proc: subprocess.CompletedProcess[str]) -> str:
        return proc.stderr.strip() or proc.stdout.strip() or f"exit code {proc.returncode}"

    def _result(self, proc: subprocess.CompletedProcess[str], **extra: str | None) -> GitResult:
        if proc.returncode != 0:
            error = self._error(proc)
            logger.warning("git command failed: %s: %s", " ".join(proc.args), error)
            return GitResult(success=False, error=error, **extra)
        return GitResult(success=True, output=proc.stdout.strip(), **extra)

    def is_repo(self) -> bool:
        proc = self._run_git(["rev-parse", "--is-inside-work-tree"])
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def current_branch(self) -> str:
        proc = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"])
        if proc.returncode != 0:
            return UNKNOWN_BRANCH
        return proc.stdout.strip() or UNKNOWN_BRANCH

    def is_main_branch(self) -> bool:
        return self.current_branch() in MAIN_BRANCHES

    def base_branch(self) -> str | None:
        for candidate in MAIN_BRANCHES:
            proc = self._run_git(["rev-parse", "--verify", "--quiet", candidate])
            if proc.returncode == 0:
                return candidate
        return None

    def commit_count(self) -> int:
        base = self.base_branch()
        if base is None:
            return 0
        proc = self._run_git(["rev-list", "--count", f"{base}..HEAD"])
        if proc.returncode != 0:
            return 0
        try:
            return int(proc.stdout.strip() or 0)
        except ValueError:
            return 0

    def has_uncommitted_changes(self) -> bool:
        proc = self._run_git(["status", "--porcelain"])
        return proc.returncode == 0 and bool(proc.stdout.strip())

    def create_branch(self, branch_name: str) -> GitResult:
        proc = self._run_git(["checkout", "-b", branch_name])
        return self._result(proc, branch=branch_name)

    def create_feature_branch(self, feature_name: str, template: BranchTemplate) -> GitResult:
        """Branch off main for a new feature; stay put when already on a feature branch."""
        if not self.is_main_branch():
            return GitResult(success=True, branch=self.current_branch())
        return self.create_branch_from_template(template, feature_name)

    def create_branch_from_template(
        self,
        template: BranchTemplate,
        name: str,
        date: str | None = None,
    ) -> GitResult:
        try:
            branch_name = render_branch_name(template, generate_slug(name), date)
        except (KeyError, IndexError, ValueError) as exc:
            error = f"Invalid branch format {template.format!r}: {exc}"
            return GitResult(success=False, error=error)
        return self.create_branch(branch_name)

    def switch_branch(self, branch: str) -> GitResult:
        return self._result(self._run_git(["checkout", branch]), branch=branch)

    def delete_branch(self, branch: str) -> GitResult:
        return self._result(self._run_git(["branch", "-D", branch]), branch=branch)

    def rename_branch(self, old_name: str, new_name: str) -> GitResult:
        return self._result(self._run_git(["branch", "-m", old_name, new_name]), branch=new_name)

    def ahead_behind(self, base: str | None = None) -> tuple[int, int]:
        """Commits on HEAD not on ``base`` and the reverse, ``(0, 0)`` when unknown."""
        base = base or self.base_branch()
        if base is None:
            return 0, 0
        proc = self._run_git(["rev-list", "--left-right", "--count", f"{base}...HEAD"])
        if proc.returncode != 0:
            return 0, 0
        parts = proc.stdout.split()
        try:
            behind, ahead = int(parts[0]), int(parts[1])
        except (IndexError, ValueError):
            return 0, 0
        return ahead, behind

    def _stage_changes(self) -> GitResult | None:
        add = self._run_git(["add", "-A", "--", ".", f":(exclude){WORKFLOW_DIR}"])
        if add.returncode != 0:
            return self._result(add)
        return None

    def _commit_staged(self, message: str) -> GitResult:
        staged = self._run_git(["diff", "--cached", "--name-only"])
        if staged.returncode != 0:
            return self._result(staged)
        if not staged.stdout.strip():
            return GitResult(success=True, output="nothing to commit")
        proc = self._run(["git", "--no-pager", "commit", "-q", "-F", "-"], input_text=message)
        return self._result(proc)

    def commit(self, commit_type: str, message: str, scope: str | None = None) -> GitResult:
        failed = self._stage_changes()
        if failed is not None:
            return failed
        scope_part = f"({scope})" if scope else ""
        return self._commit_staged(f"{commit_type}{scope_part}: {message}\n")

    def checkpoint_commit(self) -> GitResult:
        if not self.has_uncommitted_changes():
            return GitResult(success=True, output="nothing to commit")
        failed = self._stage_changes()
        if failed is not None:
            return failed
        stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        return self._commit_staged(f"CHECKPOINT: Before conductor session {stamp}\n")

    def push(self, branch: str) -> GitResult:
        return self._result(self._run_git(["push", "-u", "origin", branch]), branch=branch)

    @staticmethod
    def pull_request_body(feature_name: str, commit_count: int) -> str:
        return (
            "## Summary\n"
            f"Implemented **{feature_name}** with the conductor workflow.\n\n"
            "## Commits\n"
            f"This PR contains {commit_count} commit(s): planning, parallel "
            "implementation (backend, frontend, tests) and review fixes.\n"
        )

    def create_pull_request(self, feature_name: str, commit_count: int) -> GitResult:
        branch = self.current_branch()
        pushed = self.push(branch)
        if not pushed.success:
            return pushed
        if shutil.which("gh") is None:
            return GitResult(success=False, error="GitHub CLI (gh) not installed", branch=branch)
        proc = self._run(
            [
                "gh",
                "pr",
                "create",
                "--title",
                f"feat: {feature_name}",
                "--body",
                self.pull_request_body(feature_name, commit_count),
            ]
        )
        result = self._result(proc, branch=branch)
        if result.success:
            match = PR_URL_PATTERN.search(result.output)
            result.url = match.group(0) if match else result.output
        return result

    def recent_commits(self, limit: int = 10) -> list[str]:
        proc = self._run_git(["log", "--oneline", f"-{limit}"])
        if proc.returncode != 0:
            return []
        return [line for line in proc.stdout.splitlines() if line.strip()]

    def recent_branches(self, limit: int = 5) -> list[str]:
        proc = self._run_git(["branch", "--sort=-committerdate", "--format=%(refname:short)"])
        if proc.returncode != 0:
            return []
        return [line.strip() for line in proc.stdout.splitlines() if line.strip()][:limit]

    def validate_setup(self) -> GitSetupReport:
        if not self.is_repo():
            return GitSetupReport(valid=False, errors=["Not in a git repository"])
        errors: list[str] = []
        remotes = self._run_git(["remote"])
        if remotes.returncode != 0:
            errors.append("Could not check git remotes")
        elif not remotes.stdout.strip():
            errors.append("No git remote configured")
        if shutil.which("gh") is None:
            errors.append("GitHub CLI (gh) not installed - PR creation will not work")
        return GitSetupReport(valid=not errors, errors=errors)
