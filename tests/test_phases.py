from pathlib import Path

import pytest

from conductor.phases import Phase, PhaseEngine, determine_phase
from conductor.review import ReviewOutcome
from conductor.state import MemorySignalStore, Workspace

IMPLEMENTED = {"plan", "backend", "frontend", "tests"}
REFINED = {"backend-refine", "frontend-refine", "tests-refine"}


@pytest.mark.parametrize(
    ("signals", "review", "plan_exists", "expected"),
    [
        (set(), ReviewOutcome.PENDING, False, Phase.INIT),
        (set(), ReviewOutcome.PENDING, True, Phase.PLANNING),
        ({"plan"}, ReviewOutcome.PENDING, True, Phase.IMPLEMENTING),
        ({"plan", "backend", "frontend"}, ReviewOutcome.PENDING, True, Phase.IMPLEMENTING),
        (IMPLEMENTED, ReviewOutcome.PENDING, True, Phase.REVIEWING),
        (IMPLEMENTED | {"review"}, ReviewOutcome.PENDING, True, Phase.REVIEWING),
        (IMPLEMENTED | {"review"}, ReviewOutcome.FAIL, True, Phase.REFINING),
        (IMPLEMENTED | {"review", "backend-refine"}, ReviewOutcome.FAIL, True, Phase.REFINING),
        (IMPLEMENTED | {"review"} | REFINED, ReviewOutcome.FAIL, True, Phase.REVIEWING),
        (IMPLEMENTED | {"review"}, ReviewOutcome.PASS, True, Phase.COMPOUNDING),
        (IMPLEMENTED | {"review"}, ReviewOutcome.PASS_WITH_WARNINGS, True, Phase.COMPOUNDING),
        (IMPLEMENTED | {"review", "compound"}, ReviewOutcome.PASS, True, Phase.COMPOUNDING),
        (IMPLEMENTED | {"review", "compound", "pr"}, ReviewOutcome.PASS, True, Phase.COMPLETE),
    ],
)
def test_determine_phase_rules(
    signals: set[str], review: ReviewOutcome, plan_exists: bool, expected: Phase
) -> None:
    assert determine_phase(signals, review, plan_exists=plan_exists) is expected


def test_pr_wins_over_everything_else() -> None:
    assert determine_phase({"pr"}, ReviewOutcome.PENDING, plan_exists=False) is Phase.COMPLETE
    phase = determine_phase({"pr", "compound"}, ReviewOutcome.FAIL, plan_exists=True)
    assert phase is Phase.COMPLETE


def test_compound_without_pr_is_compounding_even_if_review_failed() -> None:
    phase = determine_phase(
        IMPLEMENTED | {"review", "compound"}, ReviewOutcome.FAIL, plan_exists=True
    )

    assert phase is Phase.COMPOUNDING


def test_inconsistent_signals_pick_highest_rule() -> None:
    # Implementation markers without a plan marker still count as implemented.
    phase = determine_phase(
        {"backend", "frontend", "tests"}, ReviewOutcome.PENDING, plan_exists=False
    )

    assert phase is Phase.REVIEWING


def test_review_outcome_ignored_without_review_signal() -> None:
    phase = determine_phase(IMPLEMENTED, ReviewOutcome.FAIL, plan_exists=True)

    assert phase is Phase.REVIEWING


def test_determine_phase_is_deterministic() -> None:
    signals = frozenset(IMPLEMENTED | {"review", "backend-refine"})
    results = {determine_phase(signals, ReviewOutcome.FAIL, plan_exists=True) for _ in range(10)}

    assert results == {Phase.REFINING}


def test_engine_reads_artifacts_fresh(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path)
    workspace.ensure()
    signals = MemorySignalStore()
    engine = PhaseEngine(workspace, signals)

    assert engine.determine() is Phase.INIT

    workspace.plan_path.write_text("# Feature\n", encoding="utf-8")
    assert engine.determine() is Phase.PLANNING

    for name in IMPLEMENTED | {"review"}:
        signals.set(name)
    assert engine.determine() is Phase.REVIEWING

    workspace.review_path.write_text("## Status\nSTATUS: FAIL\n", encoding="utf-8")
    assert engine.determine() is Phase.REFINING

    workspace.review_path.write_text("## Status\nSTATUS: PASS\n", encoding="utf-8")
    assert engine.review_outcome() is ReviewOutcome.PASS
    assert engine.determine() is Phase.COMPOUNDING


def test_engine_happy_path(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path)
    workspace.ensure()
    signals = MemorySignalStore()
    engine = PhaseEngine(workspace, signals)
    workspace.plan_path.write_text("# Feature\n", encoding="utf-8")
    workspace.review_path.write_text("STATUS: PASS\n", encoding="utf-8")

    observed = [engine.determine()]
    for name in ("plan", "backend", "frontend", "tests", "review", "compound", "pr"):
        signals.set(name)
        observed.append(engine.determine())

    assert observed == [
        Phase.PLANNING,
        Phase.IMPLEMENTING,
        Phase.IMPLEMENTING,
        Phase.IMPLEMENTING,
        Phase.REVIEWING,
        Phase.COMPOUNDING,
        Phase.COMPOUNDING,
        Phase.COMPLETE,
    ]


def test_undecodable_review_counts_as_pending(tmp_path: Path) -> None:
    workspace = Workspace(tmp_path)
    workspace.ensure()
    signals = MemorySignalStore()
    engine = PhaseEngine(workspace, signals)
    for name in IMPLEMENTED | {"review"}:
        signals.set(name)
    workspace.review_path.write_bytes(b"STATUS: \xff\xfe FAIL")

    assert engine.review_outcome() is ReviewOutcome.PENDING
    assert engine.determine() is Phase.REVIEWING
