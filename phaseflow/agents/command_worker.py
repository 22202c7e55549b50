"""Command worker: runs an external program as a phase worker.

The WorkerRequest is written to the program's stdin as JSON. The program
prints its response on stdout: either a JSON object (a full WorkerResponse,
or a structured result payload) or plain text for the sentinel's text
checks. A non-zero exit code is reported as a worker error.
"""

from __future__ import annotations

import json
from typing import Optional

from pydantic import ValidationError

from phaseflow.agents.base_agent import BaseWorker
from phaseflow.core.models import WorkerRequest, WorkerResponse
from phaseflow.llm.response_parser import parse_structured_result
from phaseflow.tools.shell import DEFAULT_TIMEOUT, run_command


class CommandWorker(BaseWorker):
    """Worker backed by a shell command."""

    def __init__(
        self,
        role: str,
        command: str | list[str],
        timeout_seconds: int = DEFAULT_TIMEOUT,
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ):
        super().__init__(name=f"CommandWorker-{role}", role=role)
        self.command = command
        self.timeout_seconds = timeout_seconds
        self.cwd = cwd
        self.env = env

    def process(self, request: WorkerRequest) -> WorkerResponse:
        result = run_command(
            self.command,
            input_text=request.model_dump_json(),
            cwd=self.cwd,
            timeout=self.timeout_seconds,
            env=self.env,
        )
        if not result.success:
            detail = result.stderr.strip() or result.stdout.strip()
            return WorkerResponse(
                role=self.role,
                content=result.stdout,
                error=f"exit code {result.return_code}: {detail[:500]}",
            )
        return self.parse_output(result.stdout)

    def parse_output(self, stdout: str) -> WorkerResponse:
        """Interpret the command's stdout as a WorkerResponse."""
        text = stdout.strip()
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return WorkerResponse(role=self.role, content=stdout)
        if not isinstance(payload, dict):
            return WorkerResponse(role=self.role, content=stdout)

        if "structured" in payload or "content" in payload:
            payload.setdefault("role", self.role)
            try:
                return WorkerResponse.model_validate(payload)
            except ValidationError as e:
                self.logger.warning("[%s] Unrecognized JSON output: %s", self.name, e)
                return WorkerResponse(role=self.role, content=stdout)
        return WorkerResponse(role=self.role, content=stdout, structured=parse_structured_result(text))


def build_command_workers(
    commands: dict[str, str],
    timeout_seconds: int = DEFAULT_TIMEOUT,
    cwd: Optional[str] = None,
) -> list[CommandWorker]:
    """One CommandWorker per ``role -> command`` entry."""
    return [
        CommandWorker(role=role, command=command, timeout_seconds=timeout_seconds, cwd=cwd)
        for role, command in sorted(commands.items())
    ]
