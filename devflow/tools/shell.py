"""Shell command execution for devflow.

Runs subprocesses with timeout, captures stdout/stderr, and provides
structured results for git operations, build/test verification and
CLI-based generation backends.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from devflow.core.exceptions import ShellTimeoutError, ToolError

logger = logging.getLogger("devflow.tools.shell")

DEFAULT_TIMEOUT = 120  # seconds
MAX_OUTPUT_BYTES = 1_048_576
TRUNCATION_MARKER = "\n... [output truncated]"


@dataclass
class ShellResult:
    """Structured result from a shell command."""
    command: str
    return_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.return_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


def run_command(
    command: str | list[str],
    cwd: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    env: Optional[dict[str, str]] = None,
    input_text: Optional[str] = None,
) -> ShellResult:
    """Execute a shell command with timeout and output capture.

    Args:
        command: Command string or list of args.
        cwd: Working directory for the command.
        timeout: Max seconds before killing the process.
        env: Optional environment variables (merged with current env).
        input_text: Optional text written to the process's stdin.

    Returns:
        ShellResult with return code, stdout, stderr.

    Raises:
        ShellTimeoutError: If command exceeds timeout.
        ToolError: If command can't be started.
    """
    cmd_str = command if isinstance(command, str) else " ".join(command)
    logger.debug("Running: %s (cwd=%s, timeout=%ss)", cmd_str, cwd, timeout)

    run_env = dict(os.environ)
    if env:
        run_env.update(env)

    try:
        result = subprocess.run(
            command,
            shell=isinstance(command, str),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=run_env,
            input=input_text,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, cmd_str)
        raise ShellTimeoutError(f"Command timed out after {timeout}s: {cmd_str}")
    except FileNotFoundError as e:
        raise ToolError(f"Command not found: {e}") from e
    except OSError as e:
        raise ToolError(f"Failed to run command: {e}") from e

    stdout = _truncate_output(result.stdout)
    stderr = _truncate_output(result.stderr)
    logger.debug(
        "Command finished: rc=%d stdout=%d chars stderr=%d chars",
        result.returncode, len(stdout), len(stderr),
    )
    return ShellResult(
        command=cmd_str,
        return_code=result.returncode,
        stdout=stdout,
        stderr=stderr,
    )


def _truncate_output(text: str) -> str:
    """Cap text at MAX_OUTPUT_BYTES, marker included."""
    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_OUTPUT_BYTES:
        return text

    keep = MAX_OUTPUT_BYTES - len(TRUNCATION_MARKER.encode("utf-8"))
    truncated = encoded[:keep].decode("utf-8", errors="ignore")
    return truncated + TRUNCATION_MARKER
