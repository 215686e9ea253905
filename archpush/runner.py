"""External command execution.

Every interaction with the host (swap, mounts, systemd), the docker CLI
and buildx goes through :func:`run_command`, so that components stay
plain functions and tests can patch a single seam.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from archpush.errors import CommandError
from archpush.types import CommandResult

logger = logging.getLogger(__name__)


def run_command(
    args: Sequence[str],
    *,
    check: bool = True,
    input_text: str | None = None,
    log_path: Path | None = None,
    cwd: Path | None = None,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
    redact: bool = False,
) -> CommandResult:
    """Run an external command.

    Output is captured in memory, or appended to ``log_path`` (stderr
    merged into stdout) when a log file is given.

    Args:
        args: Command and arguments.
        check: Raise CommandError on a non-zero exit code.
        input_text: Text passed on stdin (used for secrets).
        log_path: Optional log file for long-running commands.
        cwd: Working directory.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Environment variables layered over the current ones.
        redact: Do not log the command line.

    Returns:
        CommandResult with exit code and captured output.

    Raises:
        CommandError: If the command cannot start, times out, or fails
            while ``check`` is set.
    """
    cmd = list(args)
    cmd_str = shlex.join(cmd)
    if redact:
        logger.debug("Executing: %s <redacted>", cmd[0])
    else:
        logger.debug("Executing: %s", cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    try:
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(
                    f"# Started: {datetime.now(timezone.utc).isoformat()}\n"
                )
                log_file.flush()
                completed = subprocess.run(
                    cmd,
                    cwd=cwd,
                    input=input_text,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    text=True,
                    timeout=timeout,
                    env=env,
                    check=False,
                )
                log_file.write(f"# Exit code: {completed.returncode}\n")
            result = CommandResult(args=cmd, exit_code=completed.returncode)
        else:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                check=False,
            )
            result = CommandResult(
                args=cmd,
                exit_code=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
            )
    except subprocess.TimeoutExpired as e:
        raise CommandError(
            f"Command timed out after {timeout} seconds: {cmd[0]}",
            exit_code=-1,
        ) from e
    except OSError as e:
        raise CommandError(f"Failed to execute {cmd[0]}: {e}") from e

    if check and not result.ok:
        details = (result.stderr or result.stdout).strip()
        shown = cmd[0] if redact else cmd_str
        message = f"Command failed with exit code {result.exit_code}: {shown}"
        if details:
            message = f"{message}\n{details}"
        raise CommandError(message, exit_code=result.exit_code, output=details)

    return result


__all__ = ["run_command"]
