"""mkosi invocation.

This module handles:
- Detecting cross-architecture builds
- Registering binfmt_misc handlers for foreign binaries
- Running mkosi inside the builder image
"""

from __future__ import annotations

import logging
import platform
from collections.abc import Sequence

from captainos_build.builder.container import compose_run_command
from captainos_build.config import Settings
from captainos_build.runner import CommandError, CommandResult, CommandRunner
from captainos_build.types import Architecture

logger = logging.getLogger(__name__)

BINFMT_IMAGE = "tonistiigi/binfmt"


def host_machine() -> str:
    """Return the host processor family as reported by ``uname -m``."""
    return platform.machine()


def needs_foreign_execution(machine: str, target: Architecture) -> bool:
    """Return True if target binaries cannot run natively on this host.

    Unknown host families are treated as native; mkosi reports the failure
    itself if execution support is really missing.
    """
    machine = machine.lower()
    known = {name for arch in Architecture for name in arch.machine_names}
    if machine not in known:
        return False
    return machine not in target.machine_names


def compose_binfmt_command(engine: str) -> list[str]:
    return [engine, "run", "--rm", "--privileged", BINFMT_IMAGE, "--install", "all"]


def ensure_binfmt(
    settings: Settings,
    runner: CommandRunner,
    machine: str | None = None,
) -> bool:
    """Register binfmt handlers when building for a foreign architecture.

    Failure only logs a warning.

    Args:
        settings: Build settings.
        runner: Command runner.
        machine: Host processor family (detected if None).

    Returns:
        True if registration was attempted.
    """
    machine = machine or host_machine()
    if not needs_foreign_execution(machine, settings.arch):
        return False

    logger.info(
        "Registering binfmt_misc handlers for cross-architecture build (%s -> %s)...",
        machine,
        settings.arch.value,
    )
    cmd = compose_binfmt_command(settings.container_engine)
    try:
        result = runner.run(cmd, quiet=True)
        ok = result.success
    except CommandError as e:
        logger.debug("binfmt registration failed: %s", e)
        ok = False

    if not ok:
        logger.warning("Could not auto-register binfmt handlers.")
        logger.warning(
            "Run manually: %s run --privileged --rm %s --install all",
            settings.container_engine,
            BINFMT_IMAGE,
        )
    return True


def compose_mkosi_command(settings: Settings, args: Sequence[str]) -> list[str]:
    """Compose ``mkosi --architecture=<arch> <args>`` inside the builder."""
    return compose_run_command(
        settings,
        [f"--architecture={settings.arch.mkosi_arch}", *args],
    )


def run_mkosi(
    settings: Settings,
    runner: CommandRunner,
    args: Sequence[str],
    machine: str | None = None,
) -> CommandResult:
    """Run mkosi in the builder image.

    Args:
        settings: Build settings.
        runner: Command runner.
        args: mkosi verb and arguments.
        machine: Host processor family (detected if None).

    Returns:
        CommandResult of the mkosi run.
    """
    ensure_binfmt(settings, runner, machine=machine)
    return runner.run(compose_mkosi_command(settings, args))


__all__ = [
    "BINFMT_IMAGE",
    "compose_binfmt_command",
    "compose_mkosi_command",
    "ensure_binfmt",
    "host_machine",
    "needs_foreign_execution",
    "run_mkosi",
]
