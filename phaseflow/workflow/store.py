"""Progress store: one JSON state file per workflow run.

Every write goes to a temporary file in the state directory, is fsynced,
and replaces the state file with ``os.replace``, so readers only ever see
a complete document. Writers are serialized by a re-entrant lock and
guarded by an optimistic ``version`` counter: saving a state whose version
no longer matches the file on disk is rejected.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from phaseflow.core.exceptions import PersistenceFailure, PhaseTransitionError
from phaseflow.core.models import (
    EscalationRecord,
    PhaseResult,
    PhaseStatus,
    WorkflowState,
)
from phaseflow.orchestrator import phase_router

logger = logging.getLogger("phaseflow.workflow.store")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ProgressStore:
    """Reads and writes WorkflowState files."""

    def __init__(
        self,
        state_dir: str | Path,
        archive_dir: Optional[str | Path] = None,
        clock: Optional[Clock] = None,
    ):
        self.state_dir = Path(state_dir)
        self.archive_dir = Path(archive_dir) if archive_dir else self.state_dir / "archive"
        self.clock = clock or utc_now
        self._lock = threading.RLock()

    # -- paths ---------------------------------------------------------------

    def path_for(self, change_id: str) -> Path:
        return self.state_dir / f"{change_id}.json"

    def archived_path_for(self, change_id: str) -> Path:
        return self.archive_dir / f"{change_id}.json"

    def exists(self, change_id: str) -> bool:
        return self.path_for(change_id).exists()

    # -- reading -------------------------------------------------------------

    def _read(self, path: Path, change_id: str) -> WorkflowState:
        if not path.exists():
            raise PersistenceFailure(
                f"No workflow state for '{change_id}' at {path}",
                remedy="run setup for this change id first",
            )
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return WorkflowState.model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as e:
            raise PersistenceFailure(
                f"Workflow state file {path} is corrupt: {e}",
                remedy="restore or repair the state file, or delete it and re-run setup",
            ) from e

    def load(self, change_id: str) -> WorkflowState:
        """Load the current state of a run.

        Raises:
            PersistenceFailure: If the file is missing or cannot be parsed.
        """
        return self._read(self.path_for(change_id), change_id)

    def load_archived(self, change_id: str) -> WorkflowState:
        return self._read(self.archived_path_for(change_id), change_id)

    # -- writing -------------------------------------------------------------

    def _write_atomic(self, path: Path, state: WorkflowState) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def create(self, state: WorkflowState, overwrite: bool = False) -> WorkflowState:
        """Write the initial state of a run.

        Raises:
            PersistenceFailure: If a state file already exists and overwrite is False.
        """
        with self._lock:
            path = self.path_for(state.change_id)
            if path.exists() and not overwrite:
                raise PersistenceFailure(
                    f"Workflow state for '{state.change_id}' already exists",
                    remedy="choose a new change id or pass --force to overwrite",
                )
            now = self.clock()
            state.version = 0
            state.created_at = now
            for phase in state.phases.values():
                phase.recorded_at = now
            return self._commit(state, now)

    def save(self, state: WorkflowState) -> WorkflowState:
        """Persist a modified state.

        Raises:
            PersistenceFailure: If the file changed since ``state`` was loaded.
        """
        with self._lock:
            on_disk = self.load(state.change_id)
            if on_disk.version != state.version:
                raise PersistenceFailure(
                    f"Workflow state for '{state.change_id}' was modified concurrently "
                    f"(expected version {state.version}, found {on_disk.version})",
                    remedy="reload the state and apply the change again",
                )
            return self._commit(state, self.clock())

    def _commit(self, state: WorkflowState, now: datetime) -> WorkflowState:
        state.version += 1
        state.recompute(now)
        self._write_atomic(self.path_for(state.change_id), state)
        logger.debug(
            "Saved '%s' v%d (%d%%, current=%s)",
            state.change_id, state.version, state.meta.progress_percentage, state.current_phase,
        )
        return state

    @contextmanager
    def transaction(self, change_id: str) -> Iterator[WorkflowState]:
        """Load, let the caller mutate, then save, all under the writer lock."""
        with self._lock:
            state = self.load(change_id)
            yield state
            self.save(state)

    @contextmanager
    def _phase_transaction(self, change_id: str, phase_name: str):
        with self.transaction(change_id) as state:
            phase = state.phases.get(phase_name)
            if phase is None:
                raise PhaseTransitionError(f"Unknown phase '{phase_name}' in workflow '{change_id}'")
            yield state, phase
            phase.recorded_at = self.clock()

    # -- phase mutations -----------------------------------------------------

    def mark_in_progress(self, change_id: str, phase_name: str) -> WorkflowState:
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            phase_router.transition(phase, PhaseStatus.IN_PROGRESS, self.clock())
        return state

    def mark_validated(self, change_id: str, phase_name: str) -> WorkflowState:
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            phase.validated = True
        return state

    def mark_completed(self, change_id: str, phase_name: str, result: PhaseResult) -> WorkflowState:
        """Complete a phase that has passed response validation.

        Raises:
            PhaseTransitionError: If the phase was never validated or is not in progress.
        """
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            if not phase.validated:
                raise PhaseTransitionError(
                    f"Phase '{phase_name}' cannot complete before its response passed validation"
                )
            phase_router.transition(phase, PhaseStatus.COMPLETED, self.clock())
            phase.actual_minutes = result.actual_minutes
            phase.files_created = list(result.files_created)
            phase.tasks_completed = list(result.tasks_completed)
            if result.notes:
                phase.notes = append_note(phase.notes, result.notes)
        return state

    def mark_skipped(self, change_id: str, phase_name: str, reason: str = "") -> WorkflowState:
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            phase_router.transition(phase, PhaseStatus.SKIPPED, self.clock(), reason=reason or None)
            if reason:
                phase.notes = append_note(phase.notes, f"skipped: {reason}")
        return state

    def mark_failed(self, change_id: str, phase_name: str, reason: str = "") -> WorkflowState:
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            phase_router.transition(phase, PhaseStatus.FAILED, self.clock(), reason=reason or None)
            if reason:
                phase.notes = append_note(phase.notes, f"failed: {reason}")
        return state

    def increment_retry(self, change_id: str, phase_name: str, note: str = "") -> WorkflowState:
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            phase.retry_count += 1
            if note:
                phase.notes = append_note(phase.notes, note)
        return state

    def reset_phase(self, change_id: str, phase_name: str, reason: str) -> WorkflowState:
        """Administrative reset: the phase returns to pending and the run is resumable."""
        with self._phase_transaction(change_id, phase_name) as (state, phase):
            phase_router.reset(phase, reason)
            phase.notes = append_note(phase.notes, f"reset: {reason}")
            state.aborted = False
            state.drop_escalations(phase_name)
        return state

    def touch_phase(self, change_id: str, phase_name: str, now: Optional[datetime] = None) -> WorkflowState:
        """Rewrite a phase record so its ``recorded_at`` is current."""
        with self.transaction(change_id) as state:
            phase = state.phases.get(phase_name)
            if phase is None:
                raise PhaseTransitionError(f"Unknown phase '{phase_name}' in workflow '{change_id}'")
            phase.recorded_at = now or self.clock()
        logger.warning("Rewrote stale record for phase '%s' of '%s'", phase_name, change_id)
        return state

    # -- run-level mutations -------------------------------------------------

    def record_escalation(self, change_id: str, record: EscalationRecord) -> WorkflowState:
        """Store an escalation.

        Only one escalation is pending at a time. A record for another phase
        is queued behind it and becomes pending once the current one is
        cleared; a newer record for an already queued phase replaces it.
        """
        with self.transaction(change_id) as state:
            if state.escalation is None or state.escalation.phase_name == record.phase_name:
                state.escalation = record
            else:
                state.queued_escalations = [
                    r for r in state.queued_escalations if r.phase_name != record.phase_name
                ] + [record]
                logger.info(
                    "Escalation on '%s' queued behind '%s'", record.phase_name, state.escalation.phase_name,
                )
        return state

    def clear_escalation(self, change_id: str) -> WorkflowState:
        """Drop the pending escalation; the oldest queued one takes its place."""
        with self.transaction(change_id) as state:
            state.promote_next_escalation()
        return state

    def set_aborted(self, change_id: str, aborted: bool = True) -> WorkflowState:
        with self.transaction(change_id) as state:
            state.aborted = aborted
        return state

    # -- archive -------------------------------------------------------------

    def archive(self, change_id: str) -> Path:
        """Move a finished run's state file into the archive directory.

        Raises:
            PersistenceFailure: If some phase is not terminal yet.
        """
        with self._lock:
            state = self.load(change_id)
            if not state.all_terminal():
                raise PersistenceFailure(
                    f"Workflow '{change_id}' still has open phases (current: {state.current_phase})",
                    remedy="advance, skip or abort the remaining phases before archiving",
                )
            target = self.archived_path_for(change_id)
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(self.path_for(change_id), target)
            logger.info("Archived workflow '%s' to %s", change_id, target)
            return target


def append_note(existing: str, note: str) -> str:
    return f"{existing}\n{note}" if existing else note
