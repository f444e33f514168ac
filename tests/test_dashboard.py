from pathlib import Path

import pytest
from rich.console import Console

from conductor.config import ConductorConfig, KeybindingsConfig
from conductor.controller import WorkflowSnapshot
from conductor.dashboard import next_action, render_status
from conductor.phases import Phase
from conductor.review import ReviewOutcome
from conductor.state.error_log import WorkerError
from conductor.state.timeline import TimelineEvent
from conductor.state.workflow import WorkflowState

KEYS = KeybindingsConfig()


@pytest.mark.parametrize(
    ("phase", "signals", "review", "iteration", "expected"),
    [
        (Phase.INIT, set(), ReviewOutcome.PENDING, 1, "Describe your feature"),
        (Phase.PLANNING, set(), ReviewOutcome.PENDING, 1, "press [P] to approve"),
        (Phase.IMPLEMENTING, {"plan"}, ReviewOutcome.PENDING, 1, "Workers implementing"),
        (
            Phase.IMPLEMENTING,
            {"plan", "backend", "frontend", "tests"},
            ReviewOutcome.PENDING,
            1,
            "Press [R] to review",
        ),
        (Phase.REFINING, {"review"}, ReviewOutcome.FAIL, 1, "(iteration 1/3)"),
        (Phase.REVIEWING, {"review"}, ReviewOutcome.FAIL, 3, "escalate to human"),
        (Phase.COMPOUNDING, {"review"}, ReviewOutcome.PASS, 1, "Press [C] to compound"),
        (Phase.COMPOUNDING, {"compound"}, ReviewOutcome.PASS, 1, "Press [G] to create PR"),
        (Phase.COMPLETE, {"pr"}, ReviewOutcome.PASS, 1, "Workflow complete"),
    ],
)
def test_next_action(
    phase: Phase, signals: set[str], review: ReviewOutcome, iteration: int, expected: str
) -> None:
    assert expected in next_action(phase, frozenset(signals), review, KEYS, iteration)


def test_next_action_uses_configured_keys() -> None:
    keys = KeybindingsConfig(dispatch_plan="a")

    assert "[A]" in next_action(Phase.PLANNING, frozenset(), ReviewOutcome.PENDING, keys)


def _render(snapshot: WorkflowSnapshot) -> str:
    console = Console(record=True, width=120)
    console.print(render_status(snapshot, ConductorConfig.default()))
    return console.export_text()


def test_render_status(tmp_path: Path) -> None:
    snapshot = WorkflowSnapshot(
        state=WorkflowState(phase=Phase.REFINING, iteration=2, feature_name="Login"),
        phase=Phase.REFINING,
        signals=frozenset({"plan", "backend", "frontend", "tests", "review"}),
        review=ReviewOutcome.FAIL,
        branch="compound/login",
        ahead=3,
        behind=1,
        recent_events=[
            TimelineEvent("2026-03-01T12:00:00+00:00", "review", "Review completed: [FAIL]")
        ],
        errors=[
            WorkerError(
                worker="frontend",
                timestamp="2026-03-01T12:01:00+00:00",
                phase="refining",
                error="window missing",
            )
        ],
    )

    text = _render(snapshot)

    assert "Login" in text
    assert "compound/login" in text
    assert "+3 / -1 vs main" in text
    assert "2/3" in text
    assert "Review completed: [FAIL]" in text
    assert "window missing" in text
    assert "Press [F] to refine" in text


def test_render_status_without_events() -> None:
    snapshot = WorkflowSnapshot(
        state=WorkflowState(),
        phase=Phase.INIT,
        signals=frozenset(),
        review=ReviewOutcome.PENDING,
        branch="main",
        recent_events=[],
        errors=[],
    )

    text = _render(snapshot)

    assert "Recent activity" not in text
    assert "Worker errors" not in text
    assert "vs main" not in text
    assert "Describe your feature" in text
