"""Workflow state persistence and status renderings.

The command surface lives in ``phaseflow.workflow.commands``.
"""

from phaseflow.workflow.status import detailed_status, progress_bar, quick_status
from phaseflow.workflow.store import ProgressStore, append_note, utc_now

__all__ = [
    "ProgressStore",
    "append_note",
    "detailed_status",
    "progress_bar",
    "quick_status",
    "utc_now",
]
