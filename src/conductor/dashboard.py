from __future__ import annotations

from collections.abc import Iterable

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from conductor.config import ConductorConfig, KeybindingsConfig
from conductor.controller import MAX_ITERATIONS, WorkflowSnapshot
from conductor.phases import Phase
from conductor.review import ReviewOutcome
from conductor.state.signals import (
    COMPOUND,
    IMPLEMENTATION_SIGNALS,
    PLAN,
    PR,
    REFINE_SIGNALS,
    REVIEW,
)

PHASE_STYLES: dict[Phase, str] = {
    Phase.INIT: "dim",
    Phase.PLANNING: "cyan",
    Phase.IMPLEMENTING: "blue",
    Phase.REVIEWING: "magenta",
    Phase.REFINING: "yellow",
    Phase.COMPOUNDING: "green",
    Phase.COMPLETE: "bold green",
}
REVIEW_STYLES: dict[ReviewOutcome, str] = {
    ReviewOutcome.PASS: "green",
    ReviewOutcome.PASS_WITH_WARNINGS: "yellow",
    ReviewOutcome.FAIL: "red",
    ReviewOutcome.PENDING: "dim",
}
SIGNAL_ROWS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Plan", (PLAN,)),
    ("Implementation", IMPLEMENTATION_SIGNALS),
    ("Review", (REVIEW,)),
    ("Refine", REFINE_SIGNALS),
    ("Ship", (COMPOUND, PR)),
)


def _key(binding: str) -> str:
    return f"[{binding.upper()}]"


def _all(signals: frozenset[str], names: Iterable[str]) -> bool:
    return all(name in signals for name in names)


def next_action(
    phase: Phase,
    signals: frozenset[str],
    review: ReviewOutcome,
    keys: KeybindingsConfig,
    iteration: int = 1,
) -> str:
    if phase is Phase.INIT:
        return "Describe your feature to the planner (PM window)"
    if phase is Phase.PLANNING:
        return f"Review PLAN.md, then press {_key(keys.dispatch_plan)} to approve it"
    if phase is Phase.IMPLEMENTING:
        if _all(signals, IMPLEMENTATION_SIGNALS):
            return f"All workers done. Press {_key(keys.dispatch_review)} to review"
        return "Workers implementing..."
    if phase is Phase.REVIEWING:
        if review is ReviewOutcome.FAIL and iteration >= MAX_ITERATIONS:
            return "Max iterations reached, escalate to human"
        if review is ReviewOutcome.FAIL:
            return f"Refine complete. Press {_key(keys.dispatch_review)} to re-review"
        return f"Review in progress (or press {_key(keys.dispatch_review)} to dispatch it)"
    if phase is Phase.REFINING:
        if iteration >= MAX_ITERATIONS:
            return "Last refine iteration running; escalate to human if the next review fails"
        return (
            f"Review failed. Press {_key(keys.dispatch_refine)} to refine "
            f"(iteration {iteration}/{MAX_ITERATIONS})"
        )
    if phase is Phase.COMPOUNDING:
        if COMPOUND in signals:
            return f"Compound complete. Press {_key(keys.create_pr)} to create PR"
        return f"Review passed. Press {_key(keys.dispatch_compound)} to compound"
    return "Workflow complete"


def _signal_table(signals: frozenset[str]) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Group", style="bold")
    table.add_column("Signals")
    for label, names in SIGNAL_ROWS:
        cells = Text()
        for index, name in enumerate(names):
            if index:
                cells.append("  ")
            present = name in signals
            cells.append(f"{'x' if present else ' '} {name}", style="green" if present else "dim")
        table.add_row(label, cells)
    return table


def _branch_cell(snapshot: WorkflowSnapshot) -> Text:
    cell = Text(snapshot.branch)
    if snapshot.ahead or snapshot.behind:
        cell.append(f"  +{snapshot.ahead}", style="green")
        cell.append(f" / -{snapshot.behind}", style="red")
        cell.append(" vs main", style="dim")
    return cell


def render_status(snapshot: WorkflowSnapshot, config: ConductorConfig) -> RenderableType:
    state = snapshot.state
    summary = Table(show_header=False, box=None, padding=(0, 1))
    summary.add_column("Key", style="bold")
    summary.add_column("Value")
    summary.add_row("Feature", state.feature_name or "-")
    summary.add_row("Branch", _branch_cell(snapshot))
    summary.add_row("Phase", Text(str(snapshot.phase), style=PHASE_STYLES[snapshot.phase]))
    summary.add_row("Iteration", f"{state.iteration}/{MAX_ITERATIONS}")
    summary.add_row("Commits", str(state.commit_count))
    summary.add_row(
        "Review", Text(str(snapshot.review), style=REVIEW_STYLES[snapshot.review])
    )

    action = next_action(
        snapshot.phase,
        snapshot.signals,
        snapshot.review,
        config.keybindings,
        state.iteration,
    )
    parts: list[RenderableType] = [
        summary,
        Text(""),
        _signal_table(snapshot.signals),
        Text(""),
        Text.assemble(("Next: ", "bold yellow"), action),
    ]

    if snapshot.recent_events:
        events = Table(title="Recent activity", title_justify="left", box=None, padding=(0, 1))
        events.add_column("Time", style="dim")
        events.add_column("Type", style="cyan")
        events.add_column("Message")
        for event in snapshot.recent_events:
            events.add_row(event.timestamp, event.type, Text(event.message))
        parts.extend([Text(""), events])

    if snapshot.errors:
        errors = Table(title="Worker errors", title_justify="left", box=None, padding=(0, 1))
        errors.add_column("Worker", style="red")
        errors.add_column("Error")
        errors.add_column("Action", style="dim")
        for entry in snapshot.errors:
            errors.add_row(entry.worker, Text(entry.error), Text(entry.suggested_action))
        parts.extend([Text(""), errors])

    return Panel(Group(*parts), title="conductor", border_style=PHASE_STYLES[snapshot.phase])
