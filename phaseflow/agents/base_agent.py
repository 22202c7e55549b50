"""Worker invocation contract for phaseflow.

Workers (UI builder, API builder, schema builder, tester, integrator, ...)
are external collaborators. The engine reaches every one of them through
``BaseWorker.invoke``: a blocking request/response call that never raises,
so a crashing worker becomes a failed response the sentinel can reject.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from phaseflow.core.exceptions import WorkerNotFoundError
from phaseflow.core.models import WorkerRequest, WorkerResponse


class BaseWorker(ABC):
    """Base class for all workers.

    Every worker follows the same lifecycle:
    1. Receive a WorkerRequest (phase, role, task context, feedback)
    2. Process it (subprocess, RPC, in-process callable)
    3. Return a WorkerResponse with text and/or a structured result
    4. Log metrics and errors throughout

    Subclasses must implement `process()`. They receive dependencies
    via __init__ injection — no global state, no singletons.
    """

    def __init__(self, name: str, role: str):
        """Initialize worker with name and role.

        Args:
            name: Human-readable worker name (e.g., "CommandWorker").
            role: Worker role key (e.g., "ui-builder", "tester").
        """
        self.name = name
        self.role = role
        self.logger = logging.getLogger(f"phaseflow.agent.{name.lower()}")
        self._metrics_lock = threading.Lock()
        self._metrics: dict[str, Any] = {
            "total_processed": 0,
            "total_errors": 0,
            "last_duration_seconds": 0.0,
        }

    @abstractmethod
    def process(self, request: WorkerRequest) -> WorkerResponse:
        """Handle one request and return the worker's response."""

    def invoke(self, request: WorkerRequest) -> WorkerResponse:
        """Execute the worker with lifecycle logging and metrics.

        This wraps process() with start/complete/error tracking.
        Workers should override process(), not invoke().

        Returns:
            WorkerResponse from process(), or a response carrying the error.
        """
        self.logger.info(
            "[%s] Starting: phase='%s' attempt=%d", self.name, request.phase_name, request.attempt,
        )
        start = time.monotonic()

        try:
            response = self.process(request)
            duration = time.monotonic() - start
            response.duration_seconds = duration
            with self._metrics_lock:
                self._metrics["total_processed"] += 1
                self._metrics["last_duration_seconds"] = duration
            self.logger.info("[%s] Complete: phase='%s' (%.2fs)", self.name, request.phase_name, duration)
            return response
        except Exception as e:
            duration = time.monotonic() - start
            with self._metrics_lock:
                self._metrics["total_errors"] += 1
                self._metrics["last_duration_seconds"] = duration
            self.logger.error("[%s] Error: %s", self.name, e, exc_info=True)
            return WorkerResponse(
                role=self.role,
                error=str(e),
                duration_seconds=duration,
            )

    def get_metrics(self) -> dict[str, Any]:
        """Return a copy of the worker's runtime metrics."""
        with self._metrics_lock:
            return self._metrics.copy()


class FunctionWorker(BaseWorker):
    """Adapts a plain callable into a worker.

    The callable may return a WorkerResponse, a plain string (treated as the
    response text) or a dict (treated as a structured result payload).
    """

    def __init__(self, role: str, handler: Callable[[WorkerRequest], Any], name: Optional[str] = None):
        super().__init__(name=name or f"FunctionWorker-{role}", role=role)
        self.handler = handler

    def process(self, request: WorkerRequest) -> WorkerResponse:
        result = self.handler(request)
        if isinstance(result, WorkerResponse):
            return result
        if isinstance(result, dict):
            return WorkerResponse.model_validate({"role": self.role, "structured": result})
        return WorkerResponse(role=self.role, content=str(result))


class WorkerRegistry:
    """Maps worker roles to the worker that serves them."""

    def __init__(self, workers: Optional[dict[str, BaseWorker]] = None):
        self._workers: dict[str, BaseWorker] = dict(workers or {})

    def register(self, worker: BaseWorker, role: Optional[str] = None) -> "WorkerRegistry":
        self._workers[role or worker.role] = worker
        return self

    def has(self, role: str) -> bool:
        return role in self._workers

    def roles(self) -> list[str]:
        return sorted(self._workers)

    def get(self, role: str) -> BaseWorker:
        try:
            return self._workers[role]
        except KeyError:
            raise WorkerNotFoundError(
                f"No worker registered for role '{role}'. "
                f"Registered: {', '.join(self.roles()) or 'none'}"
            ) from None
