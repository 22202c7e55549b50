"""CLI entrypoint for phaseflow."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from phaseflow import __version__
from phaseflow.agents.base_agent import WorkerRegistry
from phaseflow.agents.command_worker import CommandWorker, build_command_workers
from phaseflow.core.config import AppConfig, load_config
from phaseflow.core.exceptions import ConfigError, PhaseflowError
from phaseflow.core.models import AdvanceResult, EscalationChoice, ExternalSignals, PhaseStatus
from phaseflow.orchestrator.classifier import rank_tasks
from phaseflow.orchestrator.escalation import DeferredEscalation, EscalationHandler, StaticEscalation
from phaseflow.orchestrator.gates import DRIVER
from phaseflow.orchestrator.templates import TEMPLATES, get_template
from phaseflow.workflow.commands import Orchestrator, load_tasks

_CHOICES = [choice.value for choice in EscalationChoice]


def _setup_logging(config: Optional[AppConfig], verbose: bool = False) -> None:
    """Apply logging configuration from the loaded config."""
    if config is not None:
        level_name = config.logging.level
        fmt = config.logging.format
    else:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


def _config(ctx: click.Context) -> AppConfig:
    return ctx.obj["config"]


def _orchestrator(
    ctx: click.Context,
    registry: Optional[WorkerRegistry] = None,
    escalation_handler: Optional[EscalationHandler] = None,
    driver: Optional[CommandWorker] = None,
) -> Orchestrator:
    return Orchestrator(
        config=_config(ctx),
        registry=registry,
        escalation_handler=escalation_handler,
        driver=driver,
        progress_callback=_echo_progress,
    )


def _echo_progress(message: str) -> None:
    if message.startswith("✓"):
        click.echo(click.style(message, fg="green"))
    elif message.startswith("⚠"):
        click.echo(click.style(message, fg="yellow", bold=True))
    elif message.startswith("↻"):
        click.echo(click.style(message, fg="yellow"))
    else:
        click.echo(click.style(message, fg="cyan"))


def _signals(ux_plan: Optional[Path], no_component_library: bool) -> ExternalSignals:
    return ExternalSignals(
        ux_plan_exists=bool(ux_plan and ux_plan.exists()),
        component_library_known=not no_component_library,
    )


@click.group()
@click.version_option(version=__version__, prog_name="phaseflow")
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    required=False,
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding default.yaml and environment overlays.",
)
@click.option("--env", required=False, default=None, help="Optional config overlay environment.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Optional[Path], env: Optional[str]) -> None:
    """phaseflow command line interface."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_dir=config_dir, env=env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config
    _setup_logging(config, verbose=verbose)


@cli.command("setup")
@click.option("--change-id", required=True, help="Identifier of the change; names the state file.")
@click.option(
    "--tasks",
    "tasks_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML or JSON file with the task list.",
)
@click.option("--pre-approved", is_flag=True, default=False, help="Let workers proceed without confirmation.")
@click.option(
    "--ux-plan",
    required=False,
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path of the UX plan; its presence skips UX research.",
)
@click.option("--no-component-library", is_flag=True, default=False, help="No UI component library is known.")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing state file.")
@click.pass_context
def setup(
    ctx: click.Context,
    change_id: str,
    tasks_path: Path,
    pre_approved: bool,
    ux_plan: Optional[Path],
    no_component_library: bool,
    force: bool,
) -> None:
    """Classify tasks, pick a phase template and write the initial state."""
    orchestrator = _orchestrator(ctx)
    try:
        tasks = load_tasks(tasks_path)
        state = orchestrator.setup(
            change_id,
            tasks,
            pre_approved=pre_approved,
            signals=_signals(ux_plan, no_component_library),
            overwrite=force,
        )
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(click.style(f"Workflow '{state.change_id}' ready", bold=True))
    click.echo(f"  Template: {state.selected_template} ({len(state.phases)} phases)")
    click.echo(f"  Tasks:    {len(state.tasks)}")
    click.echo(f"  State:    {orchestrator.store.path_for(change_id)}")


def _parse_worker_options(values: tuple[str, ...], timeout: int) -> list[CommandWorker]:
    workers = []
    for value in values:
        role, sep, command = value.partition("=")
        if not sep or not role.strip() or not command.strip():
            raise click.BadParameter(f"expected ROLE=COMMAND, got '{value}'", param_hint="--worker")
        workers.append(CommandWorker(role=role.strip(), command=command.strip(), timeout_seconds=timeout))
    return workers


def _echo_advance(result: AdvanceResult) -> None:
    click.echo()
    for outcome in result.outcomes:
        color = {
            PhaseStatus.COMPLETED: "green",
            PhaseStatus.SKIPPED: "yellow",
            PhaseStatus.FAILED: "red",
        }.get(outcome.status, "cyan")
        suffix = f" via {outcome.escalation_choice.value}" if outcome.escalation_choice else ""
        if outcome.escalation_queued:
            suffix = " (escalation queued)"
        click.echo(
            f"  {outcome.phase_name:<28} "
            + click.style(outcome.status.value, fg=color)
            + f" ({outcome.attempts} attempts){suffix}"
        )
    click.echo(f"\nProgress: {result.progress_percentage}%")
    if result.escalation is not None:
        esc = result.escalation
        click.echo(click.style(
            f"Escalation on '{esc.phase_name}' after {esc.attempts} attempts: {esc.reason}",
            fg="yellow", bold=True,
        ))
        click.echo(
            f"Resolve with: phaseflow resolve --change-id {result.change_id} "
            f"--choice [{'|'.join(o.value for o in esc.options)}]"
        )
        if result.queued_escalations:
            queued = ", ".join(r.phase_name for r in result.queued_escalations)
            click.echo(f"Queued escalations: {queued}")
    elif result.archived:
        click.echo(click.style("All phases done; state archived.", fg="green", bold=True))
    elif result.current_phase:
        click.echo(f"Next phase: {result.current_phase}")


@cli.command("advance")
@click.option("--change-id", required=True, help="Workflow to advance.")
@click.option(
    "--worker",
    "worker_specs",
    multiple=True,
    help="ROLE=COMMAND worker definition; overrides workers.commands from config.",
)
@click.option(
    "--driver",
    "driver_command",
    default=None,
    help="Command that runs planning phases whose role has no worker; overrides workers.driver.",
)
@click.option(
    "--on-escalation",
    type=click.Choice(["defer", *_CHOICES]),
    default="defer",
    show_default=True,
    help="Decision applied automatically when a phase escalates.",
)
@click.pass_context
def advance(
    ctx: click.Context,
    change_id: str,
    worker_specs: tuple[str, ...],
    driver_command: Optional[str],
    on_escalation: str,
) -> None:
    """Run phases until the workflow finishes, escalates or aborts."""
    config = _config(ctx)
    registry = WorkerRegistry()
    for worker in build_command_workers(config.workers.commands, timeout_seconds=config.workers.timeout_seconds):
        registry.register(worker)
    for worker in _parse_worker_options(worker_specs, config.workers.timeout_seconds):
        registry.register(worker)

    driver_command = driver_command or config.workers.driver
    driver = (
        CommandWorker(role=DRIVER, command=driver_command, timeout_seconds=config.workers.timeout_seconds)
        if driver_command else None
    )

    handler: EscalationHandler = (
        DeferredEscalation() if on_escalation == "defer" else StaticEscalation(EscalationChoice(on_escalation))
    )
    try:
        result = _orchestrator(ctx, registry=registry, escalation_handler=handler, driver=driver).advance(change_id)
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_advance(result)


@cli.command("status")
@click.option("--change-id", required=True, help="Workflow to report on.")
@click.option("--quick", is_flag=True, default=False, help="One-line summary.")
@click.pass_context
def status(ctx: click.Context, change_id: str, quick: bool) -> None:
    """Show workflow progress."""
    orchestrator = _orchestrator(ctx)
    try:
        text = orchestrator.quick_status(change_id) if quick else orchestrator.detailed_status(change_id)
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(text)


@cli.command("resolve")
@click.option("--change-id", required=True, help="Workflow with a pending escalation.")
@click.option("--choice", required=True, type=click.Choice(_CHOICES), help="Escalation decision.")
@click.pass_context
def resolve(ctx: click.Context, change_id: str, choice: str) -> None:
    """Resolve a pending escalation with retry, skip or abort."""
    try:
        state = _orchestrator(ctx).resolve_escalation(change_id, choice)
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Escalation resolved with '{choice}'. Current phase: {state.current_phase or 'none'}")


@cli.command("abort")
@click.option("--change-id", required=True, help="Workflow to abort.")
@click.option("--reason", default="aborted by user", show_default=True, help="Recorded on the failed phase.")
@click.pass_context
def abort(ctx: click.Context, change_id: str, reason: str) -> None:
    """Fail the in-progress phase and halt the run."""
    try:
        _orchestrator(ctx).abort(change_id, reason)
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(click.style(f"Workflow '{change_id}' aborted.", fg="red", bold=True))


@cli.command("reset-phase")
@click.option("--change-id", required=True, help="Workflow holding the phase.")
@click.option("--phase", "phase_name", required=True, help="Phase to return to pending.")
@click.option("--reason", default="manual reset", show_default=True, help="Recorded in the phase notes.")
@click.pass_context
def reset_phase(ctx: click.Context, change_id: str, phase_name: str, reason: str) -> None:
    """Return a phase to pending and clear an abort."""
    try:
        state = _orchestrator(ctx).reset_phase(change_id, phase_name, reason)
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Phase '{phase_name}' reset. Current phase: {state.current_phase or 'none'}")


@cli.command("classify")
@click.option(
    "--tasks",
    "tasks_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML or JSON file with the task list.",
)
@click.option(
    "--ux-plan",
    required=False,
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path of the UX plan; its presence skips UX research.",
)
@click.option("--no-component-library", is_flag=True, default=False, help="No UI component library is known.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print classifications as JSON.")
@click.pass_context
def classify(
    ctx: click.Context,
    tasks_path: Path,
    ux_plan: Optional[Path],
    no_component_library: bool,
    as_json: bool,
) -> None:
    """Classify tasks without creating a workflow."""
    try:
        tasks = load_tasks(tasks_path)
        classifications = _orchestrator(ctx).classify_tasks(tasks, _signals(ux_plan, no_component_library))
    except PhaseflowError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        payload = {task_id: c.model_dump(mode="json") for task_id, c in classifications.items()}
        click.echo(json.dumps(payload, indent=2, ensure_ascii=True))
        return

    titles = {task.id: task.title for task in tasks}
    for task_id in rank_tasks(classifications):
        c = classifications[task_id]
        priority = f"{c.priority.label.value:<8} {c.priority.score:>3}" if c.priority else "-"
        click.echo(click.style(f"{task_id}: {titles[task_id]}", bold=True))
        click.echo(f"  priority:   {priority}")
        click.echo(f"  complexity: {c.complexity.score} ({c.complexity.level.value}) {', '.join(c.complexity.factors)}")
        click.echo(f"  risk:       {c.risk.level.value} ({c.risk.score})")
        click.echo(f"  tdd:        {'required' if c.tdd_required else 'optional'}")
        if c.research is not None:
            click.echo(f"  research:   {c.research.category} (~{c.research.estimated_minutes} min)")
        if c.dependencies.blocked_by:
            click.echo(f"  blocked by: {', '.join(c.dependencies.blocked_by)}")
        if c.subtasks:
            click.echo(f"  subtasks:   {len(c.subtasks)}")


@cli.command("templates")
@click.option("--name", required=False, default=None, help="Show the phases of one template.")
def templates(name: Optional[str]) -> None:
    """List the phase templates."""
    if name is None:
        for template_name, template in TEMPLATES.items():
            click.echo(f"{template_name:<15} {len(template.phases):>2} phases")
        return

    try:
        template = get_template(name)
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    for number, phase in enumerate(template.phases, start=1):
        parallel = " (parallel)" if not phase.depends_on_prior_phase else ""
        click.echo(
            f"{number:>2}. {phase.name:<28} {phase.worker_role:<15} "
            f"{phase.default_estimate_minutes:>3} min{parallel}"
        )


def main() -> None:
    """Entry point used by `phaseflow` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path.cwd() / ".env", override=False)
    cli()


if __name__ == "__main__":
    main()
