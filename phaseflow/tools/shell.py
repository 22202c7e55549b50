"""Subprocess execution for command workers.

Runs a worker command with a timeout, feeds it input on stdin, and
captures stdout/stderr into a structured result.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from phaseflow.core.exceptions import WorkerError, WorkerTimeoutError

logger = logging.getLogger("phaseflow.tools.shell")

DEFAULT_TIMEOUT = 600  # seconds
MAX_OUTPUT_BYTES = 1_048_576


@dataclass
class ShellResult:
    """Structured result from a shell command."""
    command: str
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0


def run_command(
    command: str | list[str],
    input_text: Optional[str] = None,
    cwd: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT,
    env: Optional[dict[str, str]] = None,
) -> ShellResult:
    """Execute a command with timeout and output capture.

    Args:
        command: Command string (run through the shell) or list of args.
        input_text: Text written to the command's stdin.
        cwd: Working directory for the command.
        timeout: Max seconds before killing the process.
        env: Optional environment variables (merged with current env).

    Returns:
        ShellResult with return code, stdout, stderr.

    Raises:
        WorkerTimeoutError: If the command exceeds the timeout.
        WorkerError: If the command can't be started.
    """
    cmd_str = command if isinstance(command, str) else " ".join(command)
    logger.debug("Running: %s (cwd=%s, timeout=%ds)", cmd_str, cwd, timeout)

    run_env = dict(os.environ)
    if env:
        run_env.update(env)

    try:
        result = subprocess.run(
            command,
            shell=isinstance(command, str),
            input=input_text,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=run_env,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning("Command timed out after %ds: %s", timeout, cmd_str)
        raise WorkerTimeoutError(f"Command timed out after {timeout}s: {cmd_str}") from e
    except OSError as e:
        raise WorkerError(f"Failed to run command '{cmd_str}': {e}") from e

    stdout = _truncate_output(result.stdout)
    stderr = _truncate_output(result.stderr)
    logger.debug(
        "Command finished: rc=%d stdout=%d chars stderr=%d chars",
        result.returncode, len(stdout), len(stderr),
    )
    return ShellResult(command=cmd_str, return_code=result.returncode, stdout=stdout, stderr=stderr)


def _truncate_output(text: str) -> str:
    """Keep the last MAX_OUTPUT_BYTES; completion markers sit at the end of worker output."""
    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_OUTPUT_BYTES:
        return text

    tail = encoded[-MAX_OUTPUT_BYTES:].decode("utf-8", errors="ignore")
    return "[output truncated] ...\n" + tail
