"""Human-readable status renderings of a workflow state."""

from __future__ import annotations

from phaseflow.core.models import PhaseStatus, WorkflowState

STATUS_ICONS: dict[PhaseStatus, str] = {
    PhaseStatus.PENDING: "·",
    PhaseStatus.IN_PROGRESS: "▶",
    PhaseStatus.COMPLETED: "✓",
    PhaseStatus.SKIPPED: "↷",
    PhaseStatus.FAILED: "✗",
}

BAR_WIDTH = 20


def progress_bar(percentage: int, width: int = BAR_WIDTH) -> str:
    filled = max(0, min(width, round(percentage / 100 * width)))
    return "[" + "#" * filled + "-" * (width - filled) + "]"


def quick_status(state: WorkflowState) -> str:
    """One line: change id, template, progress and current phase."""
    meta = state.meta
    current = state.current_phase or "done"
    line = (
        f"{state.change_id} [{state.selected_template}] "
        f"{meta.completed_phases}/{meta.total_phases} phases ({meta.progress_percentage}%) "
        f"current: {current}"
    )
    if state.aborted:
        line += " ABORTED"
    elif state.escalation is not None:
        line += f" ESCALATED: {state.escalation.phase_name}"
        if state.queued_escalations:
            line += f" (+{len(state.queued_escalations)} queued)"
    return line


def detailed_status(state: WorkflowState) -> str:
    """Multi-line report of every phase with timings, retries and notes."""
    meta = state.meta
    lines = [
        f"Workflow: {state.change_id}",
        f"Template: {state.selected_template}",
        f"Progress: {progress_bar(meta.progress_percentage)} {meta.progress_percentage}% "
        f"({meta.completed_phases}/{meta.total_phases} completed)",
        f"Current phase: {state.current_phase or 'none (all phases terminal)'}",
        f"Updated: {state.updated_at.isoformat()}",
    ]
    if state.aborted:
        lines.append("Run is ABORTED; reset a phase to resume.")
    if state.escalation is not None:
        esc = state.escalation
        lines.append(
            f"Escalation pending on '{esc.phase_name}' after {esc.attempts} attempts: {esc.reason}"
        )
        lines.append(f"  options: {', '.join(option.value for option in esc.options)}")
    for queued in state.queued_escalations:
        lines.append(
            f"Queued escalation on '{queued.phase_name}' after {queued.attempts} attempts: {queued.reason}"
        )

    lines.append("")
    lines.append("Phases:")
    for phase in state.ordered_phases():
        icon = STATUS_ICONS[phase.status]
        parallel = " ∥" if not phase.depends_on_prior_phase else ""
        row = f"  {icon} {phase.phase_number:>2}. {phase.name:<28} {phase.status.value:<11} {phase.worker_role}{parallel}"
        details = []
        if phase.actual_minutes is not None:
            details.append(f"{phase.actual_minutes:g} min (est. {phase.default_estimate_minutes})")
        if phase.retry_count:
            details.append(f"retries: {phase.retry_count}")
        if phase.files_created:
            details.append(f"files: {', '.join(phase.files_created)}")
        if details:
            row += "  | " + "; ".join(details)
        lines.append(row)
        if phase.notes:
            for note in phase.notes.splitlines():
                lines.append(f"        {note}")

    if state.classifications:
        lines.append("")
        lines.append("Tasks:")
        for task in state.tasks:
            c = state.classifications.get(task.id)
            if c is None:
                continue
            priority = f"{c.priority.label.value} {c.priority.score}" if c.priority else "-"
            lines.append(
                f"  {task.id}: {task.title} "
                f"(complexity {c.complexity.score} {c.complexity.level.value}, "
                f"risk {c.risk.level.value}, priority {priority}"
                f"{', TDD' if c.tdd_required else ''})"
            )
    return "\n".join(lines)
