from __future__ import annotations

from collections.abc import Iterable

from conductor.review import ReviewOutcome, classify_review
from conductor.state.signals import (
    COMPOUND,
    IMPLEMENTATION_SIGNALS,
    PLAN,
    PR,
    REFINE_SIGNALS,
    REVIEW,
    SignalStore,
)
from conductor.state.workflow import Phase
from conductor.state.workspace import Workspace

__all__ = ["Phase", "PhaseEngine", "determine_phase"]


def _all_present(signals: frozenset[str], names: Iterable[str]) -> bool:
    return all(name in signals for name in names)


def determine_phase(
    signals: Iterable[str],
    review: ReviewOutcome,
    *,
    plan_exists: bool,
) -> Phase:
    """Derive the workflow phase from the observed signal set.

    Rules are checked from the most advanced phase down, so the furthest
    forward evidence wins when agents race or state was edited by hand.
    """
    observed = frozenset(signals)
    review_present = REVIEW in observed

    if PR in observed:
        return Phase.COMPLETE
    if COMPOUND in observed:
        return Phase.COMPOUNDING
    if review_present and review.passed:
        return Phase.COMPOUNDING
    if review_present and review is ReviewOutcome.FAIL:
        if _all_present(observed, REFINE_SIGNALS):
            return Phase.REVIEWING
        return Phase.REFINING
    if _all_present(observed, IMPLEMENTATION_SIGNALS):
        return Phase.REVIEWING
    if PLAN in observed:
        return Phase.IMPLEMENTING
    if plan_exists:
        return Phase.PLANNING
    return Phase.INIT


class PhaseEngine:
    """Reads artifacts fresh on every call and applies ``determine_phase``."""

    def __init__(self, workspace: Workspace, signals: SignalStore) -> None:
        self.workspace = workspace
        self.signals = signals

    def review_outcome(self, signals: frozenset[str] | None = None) -> ReviewOutcome:
        observed = self.signals.read_all() if signals is None else signals
        return classify_review(self.workspace.read_review(), REVIEW in observed)

    def determine(self, signals: frozenset[str] | None = None) -> Phase:
        observed = self.signals.read_all() if signals is None else signals
        return determine_phase(
            observed,
            self.review_outcome(observed),
            plan_exists=self.workspace.plan_exists(),
        )
