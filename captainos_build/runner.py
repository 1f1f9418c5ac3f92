"""Command runner for external tools.

This module handles:
- Executing external commands (container engine, make, strip, qemu)
- Capturing output when a caller needs it
- Converting spawn failures and timeouts into CommandError

Every component takes a runner argument so tests can substitute a fake.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external command cannot run or fails under check=True."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "command_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        argv: The command that was executed.
        exit_code: Process exit code.
        started_at: Start time.
        finished_at: Finish time.
        stdout: Captured standard output (None unless capture was requested).
    """

    argv: list[str]
    exit_code: int
    started_at: datetime
    finished_at: datetime
    stdout: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


class CommandRunner:
    """Run external commands with subprocess."""

    def run(
        self,
        argv: Sequence[str | Path],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
        check: bool = False,
        quiet: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Execute a command.

        Args:
            argv: Command and arguments (never passed through a shell).
            cwd: Working directory.
            env: Environment overrides merged over the current environment.
            capture: Capture stdout as text instead of inheriting it.
            check: Raise CommandError on a non-zero exit.
            quiet: Discard stdout and stderr.
            timeout: Timeout in seconds (None = no timeout).

        Returns:
            CommandResult with execution details.

        Raises:
            CommandError: If the command cannot be started, times out, or
                exits non-zero with check=True.
        """
        cmd = [str(a) for a in argv]
        cmd_str = shlex.join(cmd)
        logger.debug("Executing: %s", cmd_str)

        full_env: dict[str, str] | None = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        stdout = None
        stderr = None
        if capture:
            stdout = subprocess.PIPE
        if quiet:
            stdout = subprocess.DEVNULL if not capture else stdout
            stderr = subprocess.DEVNULL

        started_at = datetime.now(timezone.utc)
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=full_env,
                stdout=stdout,
                stderr=stderr,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"{cmd[0]} timed out after {timeout} seconds",
                exit_code=-1,
                code="timeout",
            ) from e
        except OSError as e:
            raise CommandError(
                f"Failed to execute {cmd[0]}: {e}",
                code="execution_error",
            ) from e
        finished_at = datetime.now(timezone.utc)

        command_result = CommandResult(
            argv=cmd,
            exit_code=result.returncode,
            started_at=started_at,
            finished_at=finished_at,
            stdout=result.stdout if capture else None,
        )

        if not command_result.success:
            logger.debug("%s exited with %d", cmd[0], result.returncode)
            if check:
                raise CommandError(
                    f"Command failed with exit code {result.returncode}: {cmd_str}",
                    exit_code=result.returncode,
                    code="command_failed",
                )

        return command_result


__all__ = ["CommandError", "CommandResult", "CommandRunner"]
