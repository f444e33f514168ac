from __future__ import annotations

import json
import logging
import time
import tomllib
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from conductor import __version__
from conductor.config import (
    DEFAULT_POLL_INTERVAL_MS,
    ConductorConfig,
    dumps_toml,
    global_config_path,
    load_config,
    number_or,
    save_config,
    update_config_file,
    validate_config,
)
from conductor.controller import TransitionResult, WorkflowController
from conductor.dashboard import render_status
from conductor.detect import analyze_project
from conductor.dispatch import TmuxSession
from conductor.export import SessionExporter
from conductor.phases import Phase
from conductor.state import ConductorStateError, Workspace
from conductor.state.timeline import format_duration

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
NOT_INITIALIZED = "No .workflow/ directory found. Run 'conductor init' first."


@dataclass(slots=True)
class Runtime:
    workspace: Workspace
    config: ConductorConfig
    controller: WorkflowController


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    logging.getLogger("conductor").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_runtime(repo_root: Path, *, require_init: bool = True) -> Runtime:
    workspace = Workspace(repo_root)
    if require_init and not workspace.is_initialized():
        raise click.ClickException(NOT_INITIALIZED)
    config = load_config(workspace.config_path, global_config_path())
    for problem in validate_config(config):
        logger.warning("Config: %s", problem)
    return Runtime(
        workspace=workspace,
        config=config,
        controller=WorkflowController(workspace, config),
    )


def _console() -> Console:
    return Console(highlight=False)


def _report(result: TransitionResult) -> None:
    if not result.advance:
        raise click.ClickException(result.reason)
    click.echo(result.reason)
    if result.phase is not None:
        click.echo(f"Phase: {result.phase}")


def _parse_value(raw: str) -> Any:
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except tomllib.TOMLDecodeError:
        return raw


def _dotted(key: str, value: Any) -> dict[str, Any]:
    payload: Any = value
    for part in reversed(key.split(".")):
        if not part:
            raise click.ClickException(f"Invalid config key: {key}")
        payload = {part: payload}
    return payload


@click.group()
@click.version_option(__version__, prog_name="conductor")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Conductor: phase-driven orchestration of parallel coding agents."""
    _configure_logging(verbose)


@cli.command("init")
@click.option("--detect/--no-detect", default=True, show_default=True)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config.")
def init_command(detect: bool, force: bool) -> None:
    repo_root = Path.cwd().resolve()
    runtime = _load_runtime(repo_root, require_init=False)
    workspace = runtime.workspace

    report = runtime.controller.git.validate_setup()
    if not report.valid:
        click.echo("Git warnings:")
        for error in report.errors:
            click.echo(f"  - {error}")

    existed = workspace.is_initialized()
    runtime.controller.initialize()
    click.echo(
        ".workflow/ already exists" if existed else f"Created {workspace.workflow_dir}"
    )

    if workspace.config_path.exists() and not force:
        click.echo(f"Keeping existing config: {workspace.config_path}")
    else:
        overrides: dict[str, Any] = {}
        if detect:
            analysis = analyze_project(repo_root)
            click.echo(f"Detected framework: {analysis.framework}")
            payload = analysis.to_dict()
            overrides = {"scopes": payload["scopes"], "commands": payload["commands"]}
        save_config(workspace.config_path, overrides)
        click.echo(f"Config: {workspace.config_path}")

    click.echo("Next: run 'conductor start' and describe your feature in the PM window.")


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, default=False)
def status_command(as_json: bool) -> None:
    runtime = _load_runtime(Path.cwd().resolve())
    runtime.controller.refresh()
    snapshot = runtime.controller.snapshot()
    if as_json:
        payload = {
            "phase": str(snapshot.phase),
            "review": str(snapshot.review),
            "branch": snapshot.branch,
            "signals": sorted(snapshot.signals),
            "state": snapshot.state.to_dict(),
        }
        click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return
    _console().print(render_status(snapshot, runtime.config))


@cli.command("watch")
@click.option("--interval", type=float, default=None, help="Seconds between refreshes.")
def watch_command(interval: float | None) -> None:
    runtime = _load_runtime(Path.cwd().resolve())
    controller = runtime.controller
    poll_ms = number_or(runtime.config.dashboard.poll_interval_ms, DEFAULT_POLL_INTERVAL_MS)
    delay = interval if interval is not None else poll_ms / 1000

    def _frame() -> Any:
        controller.refresh()
        return render_status(controller.snapshot(), runtime.config)

    try:
        with Live(_frame(), console=_console(), auto_refresh=False) as live:
            while True:
                time.sleep(max(0.1, delay))
                live.update(_frame(), refresh=True)
    except KeyboardInterrupt:
        click.echo("Stopped watching.")


@cli.command("signal")
@click.argument("name")
@click.option("--clear", "clear_signal", is_flag=True, default=False)
def signal_command(name: str, clear_signal: bool) -> None:
    runtime = _load_runtime(Path.cwd().resolve())
    signals = runtime.controller.signals
    try:
        if clear_signal:
            signals.clear(name)
        else:
            signals.set(name)
    except ConductorStateError as exc:
        raise click.ClickException(str(exc)) from exc
    result = runtime.controller.refresh()
    verb = "Cleared" if clear_signal else "Created"
    click.echo(f"{verb} signal: {name.removesuffix('.done')}.done")
    click.echo(f"Phase: {result.phase}")


@cli.command("reset")
@click.option("--yes", is_flag=True, default=False, help="Skip confirmation.")
@click.option(
    "--clear-workers", is_flag=True, default=False, help="Also interrupt the worker windows."
)
def reset_command(yes: bool, clear_workers: bool) -> None:
    runtime = _load_runtime(Path.cwd().resolve())
    if not yes:
        click.confirm("Clear all signals and reset the workflow state?", abort=True)
    _report(runtime.controller.reset(clear_workers=clear_workers))


@cli.group("config")
def config_group() -> None:
    """Show and edit configuration."""


@config_group.command("show")
@click.option("--json", "as_json", is_flag=True, default=False)
def config_show_command(as_json: bool) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), require_init=False)
    if as_json:
        click.echo(json.dumps(runtime.config.to_dict(), ensure_ascii=False, indent=2))
    else:
        click.echo(dumps_toml(runtime.config), nl=False)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--global", "global_scope", is_flag=True, default=False)
def config_set_command(key: str, value: str, global_scope: bool) -> None:
    workspace = Workspace(Path.cwd().resolve())
    if not global_scope and not workspace.is_initialized():
        raise click.ClickException(NOT_INITIALIZED)
    path = global_config_path() if global_scope else workspace.config_path
    update_config_file(path, _dotted(key, _parse_value(value)))
    problems = validate_config(load_config(workspace.config_path, global_config_path()))
    click.echo(f"Set {key} in {path}")
    for problem in problems:
        click.echo(f"Warning: {problem}")


@config_group.command("validate")
def config_validate_command() -> None:
    runtime = _load_runtime(Path.cwd().resolve(), require_init=False)
    problems = validate_config(runtime.config)
    if problems:
        raise click.ClickException("; ".join(problems))
    click.echo("Configuration is valid.")


@cli.command("approve")
def approve_command() -> None:
    """Approve PLAN.md and dispatch the implementation workers."""
    _report(_load_runtime(Path.cwd().resolve()).controller.approve_plan())


@cli.command("review")
def review_command() -> None:
    """Dispatch the reviewer (initial review or re-review)."""
    _report(_load_runtime(Path.cwd().resolve()).controller.request_review())


@cli.command("refine")
def refine_command() -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.request_refine())


@cli.command("compound")
def compound_command() -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.request_compound())


@cli.command("pr")
def pr_command() -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.create_pr())


@cli.command("commit")
def commit_command() -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.commit_checkpoint())


@cli.command("timeline")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--branch", default=None)
@click.option("--summary", "show_summary", is_flag=True, default=False)
def timeline_command(limit: int, branch: str | None, show_summary: bool) -> None:
    runtime = _load_runtime(Path.cwd().resolve())
    timeline = runtime.controller.timeline
    if show_summary:
        summary = timeline.summarize(branch)
        click.echo(f"Branch: {summary.branch}")
        click.echo(f"Started: {summary.started_at or '-'}")
        click.echo(f"Duration: {format_duration(summary.duration_minutes)}")
        click.echo(f"Events: {summary.total_events}")
        for event_type, count in sorted(summary.counts.items()):
            click.echo(f"  {event_type}: {count}")
        return
    events = timeline.recent(limit, branch)
    if not events:
        click.echo("No timeline events.")
        return
    table = Table(box=None, padding=(0, 1))
    table.add_column("Time", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Message")
    for event in events:
        table.add_row(event.timestamp, event.type, Text(event.message))
    _console().print(table)


@cli.command("export")
@click.option(
    "--format",
    "export_format",
    type=click.Choice(["json", "markdown", "both"]),
    default="markdown",
    show_default=True,
)
@click.option("--branch", default=None)
def export_command(export_format: str, branch: str | None) -> None:
    runtime = _load_runtime(Path.cwd().resolve())
    controller = runtime.controller
    exporter = SessionExporter(
        runtime.workspace, controller.store, controller.timeline, controller.git
    )
    formats = ["json", "markdown"] if export_format == "both" else [export_format]
    for name in formats:
        path = exporter.export(name, branch)  # type: ignore[arg-type]
        click.echo(f"Exported: {path}")


@cli.group("session")
def session_group() -> None:
    """Save and restore per-branch workflow sessions."""


@session_group.command("save")
@click.argument("branch", required=False)
def session_save_command(branch: str | None) -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.save_session(branch))


@session_group.command("load")
@click.argument("branch")
@click.option("--checkout", is_flag=True, default=False, help="Also switch the git branch.")
def session_load_command(branch: str, checkout: bool) -> None:
    controller = _load_runtime(Path.cwd().resolve()).controller
    _report(controller.load_session(branch, checkout=checkout))


@session_group.command("list")
def session_list_command() -> None:
    sessions = _load_runtime(Path.cwd().resolve()).controller.list_sessions()
    if not sessions:
        click.echo("No saved sessions.")
        return
    for name in sessions:
        click.echo(name)


@session_group.command("clear")
@click.argument("branch")
def session_clear_command(branch: str) -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.clear_session(branch))


@cli.group("branch")
def branch_group() -> None:
    """Create, switch, rename and delete workflow branches."""


@branch_group.command("list")
def branch_list_command() -> None:
    status = _load_runtime(Path.cwd().resolve()).controller.branch_status()
    for name in status.recent:
        marker = "*" if name == status.current else " "
        click.echo(f"{marker} {name}")
    if status.on_main:
        click.echo(
            f"Working on {status.current}; create a feature branch with 'conductor branch new'."
        )
    elif status.ahead or status.behind:
        click.echo(f"{status.current}: +{status.ahead} / -{status.behind} commits vs main")


@branch_group.command("new")
@click.argument("name")
@click.option("--template", "template_name", default=None, help="Branch template key.")
def branch_new_command(name: str, template_name: str | None) -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.new_branch(name, template_name))


@branch_group.command("switch")
@click.argument("branch")
def branch_switch_command(branch: str) -> None:
    result = _load_runtime(Path.cwd().resolve()).controller.switch_to_branch(branch)
    _report(result)
    if result.phase in (Phase.IMPLEMENTING, Phase.REFINING):
        click.echo("Workers were active in this session; re-dispatch them if needed.")


@branch_group.command("rename")
@click.argument("new_name")
def branch_rename_command(new_name: str) -> None:
    _report(_load_runtime(Path.cwd().resolve()).controller.rename_branch(new_name))


@branch_group.command("delete")
@click.argument("branch")
@click.option("--yes", is_flag=True, default=False, help="Skip confirmation.")
def branch_delete_command(branch: str, yes: bool) -> None:
    controller = _load_runtime(Path.cwd().resolve()).controller
    if not yes:
        click.confirm(f"Delete branch {branch}?", abort=True)
    _report(controller.delete_branch(branch))


@cli.command("start")
def start_command() -> None:
    """Create the tmux session with one window per worker."""
    runtime = _load_runtime(Path.cwd().resolve())
    session = TmuxSession(runtime.config.dispatch.session_name)
    if not session.available():
        raise click.ClickException("tmux is not installed.")
    if session.exists():
        click.echo(f"Session '{session.session_name}' already exists. Attaching...")
    else:
        checkpoint = runtime.controller.checkpoint_before_session()
        if checkpoint.advance:
            click.echo(checkpoint.reason)
        elif checkpoint.data.get("error"):
            click.echo(f"Warning: {checkpoint.reason}")
        try:
            session.start(runtime.workspace.root)
        except RuntimeError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Started session '{session.session_name}'.")
        planner = runtime.controller.start_planner()
        click.echo(planner.reason)
    session.attach()


@cli.command("attach")
def attach_command() -> None:
    runtime = _load_runtime(Path.cwd().resolve(), require_init=False)
    session = TmuxSession(runtime.config.dispatch.session_name)
    if not session.exists():
        raise click.ClickException(f"No active session '{session.session_name}' found.")
    session.attach()


@cli.command("stop")
def stop_command() -> None:
    runtime = _load_runtime(Path.cwd().resolve(), require_init=False)
    session = TmuxSession(runtime.config.dispatch.session_name)
    if not session.stop():
        raise click.ClickException(f"No active session '{session.session_name}' found.")
    click.echo(f"Stopped session '{session.session_name}'.")


def _menu(runtime: Runtime) -> Table:
    keys = runtime.config.keybindings
    table = Table(show_header=False, box=None, padding=(0, 2))
    rows = [
        (keys.dispatch_plan, "Approve plan", keys.dispatch_review, "Review"),
        (keys.dispatch_refine, "Refine", keys.dispatch_compound, "Compound"),
        (keys.create_pr, "Push & PR", keys.commit_checkpoint, "Commit"),
        (keys.refresh_status, "Refresh", keys.new_feature, "New feature"),
        (keys.quit, "Quit", "", ""),
    ]
    for left_key, left, right_key, right in rows:
        table.add_row(
            Text(f"[{left_key.upper()}]", style="bold cyan"),
            left,
            Text(f"[{right_key.upper()}]", style="bold cyan") if right_key else "",
            right,
        )
    return table


@cli.command("orchestrate")
def orchestrate_command() -> None:
    """Interactive key-driven loop for the orchestrator window."""
    runtime = _load_runtime(Path.cwd().resolve())
    controller = runtime.controller
    keys = runtime.config.keybindings
    console = _console()

    def _new_feature() -> TransitionResult:
        if not click.confirm("Clear workflow and start a new feature?", default=False):
            return TransitionResult(advance=False, reason="Cancelled")
        return controller.reset(clear_workers=True)

    actions: dict[str, Callable[[], TransitionResult]] = {
        keys.dispatch_plan: controller.approve_plan,
        keys.dispatch_review: controller.request_review,
        keys.dispatch_refine: controller.request_refine,
        keys.dispatch_compound: controller.request_compound,
        keys.create_pr: controller.create_pr,
        keys.commit_checkpoint: controller.commit_checkpoint,
        keys.refresh_status: controller.refresh,
        keys.new_feature: _new_feature,
    }
    message: Text | None = None
    while True:
        controller.refresh()
        console.clear()
        console.print(render_status(controller.snapshot(), runtime.config))
        console.print(_menu(runtime))
        if message is not None:
            console.print(message)
        try:
            key = click.getchar().lower()
        except (KeyboardInterrupt, EOFError):
            break
        if key in (keys.quit, "\x03"):
            break
        action = actions.get(key)
        if action is None:
            message = Text(f"Unknown key: {key!r}", style="dim")
            continue
        result = action()
        message = Text(result.reason, style="green" if result.advance else "red")


if __name__ == "__main__":
    cli()
