from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from conductor.config import DEFAULT_STAGGER_SECONDS, DOMAIN_ROLES, ConductorConfig, number_or
from conductor.dispatch.base import Dispatcher
from conductor.dispatch.tmux import TmuxDispatcher
from conductor.git import GitRepository, generate_slug
from conductor.phases import Phase, PhaseEngine
from conductor.review import ReviewOutcome
from conductor.state.error_log import WorkerError, WorkerErrorLog
from conductor.state.signals import (
    COMPOUND,
    IMPLEMENTATION_SIGNALS,
    PLAN,
    PR,
    REFINE_SIGNALS,
    REVIEW,
    FileSignalStore,
    SignalStore,
)
from conductor.state.timeline import Timeline, TimelineEvent
from conductor.state.workflow import WorkflowState, WorkflowStateStore
from conductor.state.workspace import DEFAULT_FEATURE_NAME, Workspace
from conductor.workers import Worker, build_workers

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 3
CHECKPOINT_FEATURE_NAME = "Conductor workflow checkpoint"
COMMIT_TYPES: dict[Phase, str] = {
    Phase.PLANNING: "docs",
    Phase.IMPLEMENTING: "feat",
    Phase.REFINING: "fix",
}
COMPLETION_SIGNALS = (*IMPLEMENTATION_SIGNALS, *REFINE_SIGNALS, REVIEW)
DISPATCH_FAILURE_ACTION = "Check that the session is running (conductor start) and retry"


@dataclass(slots=True)
class TransitionResult:
    advance: bool
    reason: str
    phase: Phase | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WorkflowSnapshot:
    state: WorkflowState
    phase: Phase
    signals: frozenset[str]
    review: ReviewOutcome
    branch: str
    recent_events: list[TimelineEvent]
    errors: list[WorkerError]
    ahead: int = 0
    behind: int = 0


@dataclass(slots=True)
class BranchStatus:
    current: str
    on_main: bool
    ahead: int
    behind: int
    recent: list[str]


class WorkflowController:
    """Applies user-triggered transitions on top of the derived phase.

    Policy refusals come back as ``TransitionResult(advance=False)`` and leave
    the persisted state untouched.
    """

    def __init__(
        self,
        workspace: Workspace,
        config: ConductorConfig,
        *,
        signals: SignalStore | None = None,
        git: GitRepository | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self.workspace = workspace
        self.config = config
        self.signals = signals or FileSignalStore.for_workspace(workspace)
        self.store = WorkflowStateStore(workspace, self.signals)
        self.engine = PhaseEngine(workspace, self.signals)
        self.git = git or GitRepository(workspace.root)
        self.timeline = Timeline(workspace, self.git.current_branch)
        self.errors = WorkerErrorLog(workspace)
        self.workers: dict[str, Worker] = build_workers(config)
        self.dispatcher = dispatcher or TmuxDispatcher(
            config.dispatch.session_name,
            config.dispatch.agent_command,
        )
        if self.dispatcher.event_hook is None:
            self.dispatcher.event_hook = self._on_dispatch_event

    def _on_dispatch_event(self, event: dict[str, Any]) -> None:
        if event.get("type") != "dispatch_failed":
            return
        role = str(event.get("role", "unknown"))
        error = str(event.get("error", "dispatch failed"))
        self.errors.record(
            role,
            str(self.store.load().phase),
            error,
            suggested_action=DISPATCH_FAILURE_ACTION,
        )
        self.timeline.log_error(f"Failed to dispatch {role} worker", error)

    def _log_completions(self, state: WorkflowState, observed: frozenset[str]) -> None:
        known = {name for name, present in state.signals.items() if present}
        for name in sorted(observed - known):
            if name in COMPLETION_SIGNALS:
                self.timeline.log_worker_complete(name)

    def _persist(self, state: WorkflowState, *, announce: bool = True) -> Phase:
        observed = self.signals.read_all()
        phase = self.engine.determine(observed)
        self._log_completions(state, observed)
        if announce and phase != state.phase:
            self.timeline.log_phase_change(str(phase), state.iteration)
        state.phase = phase
        state.signals = {name: True for name in sorted(observed)}
        self.store.save(state)
        return phase

    def _refuse(self, reason: str, phase: Phase | None = None, **data: Any) -> TransitionResult:
        logger.debug("Transition refused: %s", reason)
        return TransitionResult(advance=False, reason=reason, phase=phase, data=data)

    def _dispatch(self, role: str, *, refine: bool = False) -> bool:
        prompt = self.workers[role].build_prompt(refine=refine)
        self.timeline.log_worker_dispatch(role, refine=refine)
        return self.dispatcher.dispatch(role, prompt)

    def _dispatch_domain_workers(self, *, refine: bool) -> list[str]:
        prompts = [(role, self.workers[role].build_prompt(refine=refine)) for role in DOMAIN_ROLES]
        for role, _ in prompts:
            self.timeline.log_worker_dispatch(role, refine=refine)
        stagger = number_or(self.config.dispatch.stagger_seconds, DEFAULT_STAGGER_SECONDS)
        return self.dispatcher.dispatch_many(prompts, stagger)

    def _auto_commit(
        self, state: WorkflowState, commit_type: str, scope: str | None = None
    ) -> bool:
        if not self.config.git.auto_commit:
            return False
        feature = state.feature_name or DEFAULT_FEATURE_NAME
        result = self.git.commit(commit_type, feature, scope)
        if not result.success:
            self.timeline.log_error(f"Auto-commit {commit_type} failed", result.error)
            return False
        if result.output == "nothing to commit":
            return False
        state.commit_count = self.git.commit_count()
        scope_part = f"({scope})" if scope else ""
        self.timeline.log_git("commit", f"{commit_type}{scope_part}: {feature}")
        return True

    def initialize(self) -> WorkflowState:
        self.workspace.ensure()
        state = self.store.load()
        if not self.workspace.state_file.exists():
            state = self.store.save(state)
        self.timeline.initialize()
        return state

    def current_phase(self) -> Phase:
        return self.engine.determine()

    def refresh(self) -> TransitionResult:
        state = self.store.load()
        previous = state.phase
        state.commit_count = self.git.commit_count()
        phase = self._persist(state)
        if previous is Phase.REVIEWING and phase in (Phase.REFINING, Phase.COMPOUNDING):
            self.timeline.log_review(str(self.engine.review_outcome()))
        return TransitionResult(
            advance=True,
            reason=f"Phase: {phase}",
            phase=phase,
            data={"previous": str(previous), "iteration": state.iteration},
        )

    def snapshot(self, events: int = 8) -> WorkflowSnapshot:
        observed = self.signals.read_all()
        ahead, behind = self.git.ahead_behind()
        return WorkflowSnapshot(
            state=self.store.load(),
            phase=self.engine.determine(observed),
            signals=observed,
            review=self.engine.review_outcome(observed),
            branch=self.git.current_branch(),
            recent_events=self.timeline.recent(events),
            errors=self.errors.recent(),
            ahead=ahead,
            behind=behind,
        )

    def approve_plan(self) -> TransitionResult:
        if not self.workspace.plan_exists():
            return self._refuse("No PLAN.md found - create a plan first", Phase.INIT)
        if self.signals.is_set(PLAN):
            return self._refuse("Plan already approved", self.current_phase())
        template = self.config.branch_template()
        if template is None:
            return self._refuse("No branch template configured", self.current_phase())
        state = self.store.load()
        feature = self.workspace.feature_name_from_plan()
        branch = self.git.create_feature_branch(feature, template)
        if not branch.success:
            self.timeline.log_error("Failed to create feature branch", branch.error)
            return self._refuse(
                f"Failed to create branch: {branch.error}", state.phase, error=branch.error
            )
        state.feature_name = feature
        state.branch_name = branch.branch
        self._auto_commit(state, "docs", "plan")
        self.signals.set(PLAN)
        self.timeline.append(
            "session_start",
            f"Session started: {feature}",
            {"feature": feature, "branch": branch.branch},
        )
        dispatched = self._dispatch_domain_workers(refine=False)
        phase = self._persist(state)
        return TransitionResult(
            advance=True,
            reason=f"Plan approved: {feature}",
            phase=phase,
            data={"branch": branch.branch, "dispatched": dispatched},
        )

    def request_review(self) -> TransitionResult:
        observed = self.signals.read_all()
        phase = self.engine.determine(observed)
        if phase is not Phase.REVIEWING:
            return self._refuse(
                f"Cannot review while {phase} - implementation or refine work is not complete",
                phase,
            )
        state = self.store.load()
        rereview = REVIEW in observed
        if rereview:
            self._auto_commit(state, "fix", "review")
        else:
            self._auto_commit(state, "feat")
        dispatched = self._dispatch("reviewer")
        self.timeline.log_phase_change(str(Phase.REVIEWING), state.iteration)
        phase = self._persist(state, announce=False)
        return TransitionResult(
            advance=True,
            reason="Re-review dispatched" if rereview else "Review dispatched",
            phase=phase,
            data={"dispatched": ["reviewer"] if dispatched else [], "iteration": state.iteration},
        )

    def request_refine(self) -> TransitionResult:
        outcome = self.engine.review_outcome()
        if outcome is not ReviewOutcome.FAIL:
            return self._refuse(
                "Review hasn't failed - no need to refine",
                self.current_phase(),
                review=str(outcome),
            )
        state = self.store.load()
        if state.iteration >= MAX_ITERATIONS:
            self.timeline.log_error("Max iterations reached", f"iteration {state.iteration}")
            return self._refuse(
                "Max iterations reached, escalate to human",
                self.current_phase(),
                iteration=state.iteration,
            )
        state.iteration += 1
        dispatched = self._dispatch_domain_workers(refine=True)
        self.timeline.log_phase_change(str(Phase.REFINING), state.iteration)
        phase = self._persist(state, announce=False)
        return TransitionResult(
            advance=True,
            reason=f"Refine iteration {state.iteration}/{MAX_ITERATIONS} dispatched",
            phase=phase,
            data={"dispatched": dispatched, "iteration": state.iteration},
        )

    def request_compound(self) -> TransitionResult:
        outcome = self.engine.review_outcome()
        if not outcome.passed:
            return self._refuse(
                "Review hasn't passed - cannot compound",
                self.current_phase(),
                review=str(outcome),
            )
        state = self.store.load()
        self.signals.set(COMPOUND)
        self.timeline.log_phase_change(str(Phase.COMPOUNDING), state.iteration)
        phase = self._persist(state, announce=False)
        return TransitionResult(
            advance=True, reason="Compound recorded", phase=phase, data={"review": str(outcome)}
        )

    def create_pr(self) -> TransitionResult:
        observed = self.signals.read_all()
        if PR in observed:
            return self._refuse("Pull request already created", Phase.COMPLETE)
        if COMPOUND not in observed:
            return self._refuse(
                "Compound not complete - cannot create PR", self.engine.determine(observed)
            )
        state = self.store.load()
        feature = state.feature_name or DEFAULT_FEATURE_NAME
        result = self.git.create_pull_request(feature, state.commit_count)
        if not result.success:
            self.timeline.log_error("Pull request creation failed", result.error)
            return self._refuse(
                f"Failed to create PR: {result.error}", state.phase, error=result.error
            )
        self.signals.set(PR)
        self.timeline.log_git("pr", result.url or result.output)
        phase = self._persist(state)
        return TransitionResult(
            advance=True,
            reason=f"PR created: {result.url}",
            phase=phase,
            data={"url": result.url, "branch": result.branch},
        )

    def commit_checkpoint(self) -> TransitionResult:
        phase = self.current_phase()
        if phase is Phase.INIT:
            return self._refuse("Nothing to commit yet - start planning first", phase)
        state = self.store.load()
        commit_type = COMMIT_TYPES.get(phase, "chore")
        feature = state.feature_name or CHECKPOINT_FEATURE_NAME
        result = self.git.commit(commit_type, feature)
        if not result.success:
            self.timeline.log_error("Checkpoint commit failed", result.error)
            return self._refuse(f"Commit failed: {result.error}", phase, error=result.error)
        if result.output == "nothing to commit":
            return self._refuse("Nothing to commit (no changes)", phase)
        state.commit_count = self.git.commit_count()
        self.timeline.log_git("commit", f"{commit_type}: {feature}")
        phase = self._persist(state)
        return TransitionResult(
            advance=True,
            reason=f"Committed: {commit_type}: {feature}",
            phase=phase,
            data={"commit_type": commit_type, "commit_count": state.commit_count},
        )

    def start_planner(self) -> TransitionResult:
        if self.signals.is_set(PLAN):
            return self._refuse("Plan already approved", self.current_phase())
        if not self._dispatch("planner"):
            return self._refuse("Failed to dispatch planner", self.current_phase())
        return TransitionResult(
            advance=True,
            reason="Planner dispatched",
            phase=self.current_phase(),
            data={"dispatched": ["planner"]},
        )

    def checkpoint_before_session(self) -> TransitionResult:
        result = self.git.checkpoint_commit()
        if not result.success:
            self.timeline.log_error("Checkpoint before session failed", result.error)
            return self._refuse(f"Checkpoint failed: {result.error}", error=result.error)
        if result.output == "nothing to commit":
            return self._refuse("Working tree clean, no checkpoint needed")
        self.timeline.log_git("checkpoint", "Before conductor session")
        return TransitionResult(advance=True, reason="Checkpoint committed")

    def reset(self, *, clear_workers: bool = False) -> TransitionResult:
        state = self.store.reset()
        self.errors.clear()
        if clear_workers:
            for role in self.workers:
                self.dispatcher.clear(role)
        return TransitionResult(advance=True, reason="Workflow reset", phase=state.phase)

    def save_session(self, branch: str | None = None) -> TransitionResult:
        target = branch or self.git.current_branch()
        snapshot = self.store.save_to_branch(target)
        return TransitionResult(
            advance=True,
            reason=f"Session saved for {target}",
            phase=snapshot.phase,
            data={"branch": target, "signals": sorted(snapshot.signals)},
        )

    def load_session(self, branch: str, *, checkout: bool = False) -> TransitionResult:
        if self.workspace.branch_dir(branch).name not in self.list_sessions():
            return self._refuse(f"No saved session for {branch}")
        if checkout:
            self.save_session()
            switched = self.git.switch_branch(branch)
            if not switched.success:
                return self._refuse(
                    f"Failed to switch to {branch}: {switched.error}", error=switched.error
                )
        snapshot = self.store.load_from_branch(branch)
        if snapshot is None:
            return self._refuse(f"Saved session for {branch} is unreadable")
        phase = self._persist(snapshot, announce=False)
        self.timeline.append(
            "session_resume",
            f"Session resumed on branch: {branch}",
            {"branch": branch, "phase": str(phase), "iteration": snapshot.iteration},
            branch=branch,
        )
        return TransitionResult(
            advance=True,
            reason=f"Session restored from {branch}",
            phase=phase,
            data={"branch": branch, "iteration": snapshot.iteration},
        )

    def list_sessions(self) -> list[str]:
        return self.store.list_branches()

    def clear_session(self, branch: str) -> TransitionResult:
        if not self.store.clear_branch(branch):
            return self._refuse(f"No saved session for {branch}")
        return TransitionResult(advance=True, reason=f"Session cleared for {branch}")

    def branch_status(self, limit: int = 10) -> BranchStatus:
        ahead, behind = self.git.ahead_behind()
        return BranchStatus(
            current=self.git.current_branch(),
            on_main=self.git.is_main_branch(),
            ahead=ahead,
            behind=behind,
            recent=self.git.recent_branches(limit),
        )

    def new_branch(self, name: str, template_name: str | None = None) -> TransitionResult:
        template = self.config.branch_template(template_name)
        if template is None:
            return self._refuse(f"Unknown branch template: {template_name}")
        if not generate_slug(name):
            return self._refuse("Branch name required")
        result = self.git.create_branch_from_template(template, name)
        if not result.success:
            self.timeline.log_error("Failed to create branch", result.error)
            return self._refuse(f"Failed to create branch: {result.error}", error=result.error)
        self.timeline.log_git("branch", f"created {result.branch}")
        return TransitionResult(
            advance=True,
            reason=f"Created and switched to: {result.branch}",
            data={"branch": result.branch, "template": template.name},
        )

    def switch_to_branch(self, branch: str) -> TransitionResult:
        current = self.git.current_branch()
        if branch == current:
            return self._refuse(f"Already on {branch}")
        self.save_session(current)
        self.timeline.append(
            "session_resume", f"Saved session for {current}", {"branch": current}, branch=current
        )
        switched = self.git.switch_branch(branch)
        if not switched.success:
            return self._refuse(
                f"Failed to switch to {branch}: {switched.error}", error=switched.error
            )
        if self.workspace.branch_dir(branch).name in self.list_sessions():
            restored = self.load_session(branch)
            restored.data["restored"] = restored.advance
            return restored
        return TransitionResult(
            advance=True,
            reason=f"Switched to {branch}, starting fresh session",
            phase=self.current_phase(),
            data={"branch": branch, "restored": False},
        )

    def rename_branch(self, new_name: str) -> TransitionResult:
        state = self.store.load()
        current = self.git.current_branch()
        if not new_name.strip():
            return self._refuse("New branch name required")
        result = self.git.rename_branch(current, new_name)
        if not result.success:
            return self._refuse(f"Failed to rename {current}: {result.error}", error=result.error)
        old_dir = self.workspace.branch_dir(current)
        new_dir = self.workspace.branch_dir(new_name)
        if old_dir.is_dir() and not new_dir.exists():
            old_dir.rename(new_dir)
        if state.branch_name in (None, current):
            state.branch_name = new_name
            self.store.save(state)
        self.timeline.log_git("branch", f"renamed {current} to {new_name}")
        return TransitionResult(
            advance=True,
            reason=f"Renamed to: {new_name}",
            data={"branch": new_name, "previous": current},
        )

    def delete_branch(self, branch: str) -> TransitionResult:
        if branch == self.git.current_branch():
            return self._refuse("Cannot delete current branch")
        result = self.git.delete_branch(branch)
        if not result.success:
            return self._refuse(f"Failed to delete {branch}: {result.error}", error=result.error)
        self.timeline.log_git("branch", f"deleted {branch}")
        return TransitionResult(advance=True, reason=f"Deleted: {branch}", data={"branch": branch})
