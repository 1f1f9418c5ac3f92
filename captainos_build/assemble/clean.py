"""Workspace cleanup.

mkosi runs as root inside the builder, so its outputs are removed through a
throwaway container rather than from the host.
"""

from __future__ import annotations

import logging
import shutil

from captainos_build.config import CONTAINER_WORKDIR, Settings
from captainos_build.runner import CommandRunner

logger = logging.getLogger(__name__)

CLEAN_IMAGE = "debian:trixie"


def compose_clean_command(settings: Settings, remove_kernel: bool = False) -> list[str]:
    """Compose the containerised removal of mkosi outputs and cache."""
    targets = [
        f"{CONTAINER_WORKDIR}/mkosi.output/image*",
        f"{CONTAINER_WORKDIR}/mkosi.cache",
    ]
    if remove_kernel:
        targets.append(f"{CONTAINER_WORKDIR}/mkosi.output/kernel")
    return [
        settings.container_engine,
        "run",
        "--rm",
        "-v",
        f"{settings.project_dir.resolve()}:{CONTAINER_WORKDIR}",
        "-w",
        str(CONTAINER_WORKDIR),
        CLEAN_IMAGE,
        "sh",
        "-c",
        "rm -rf " + " ".join(targets),
    ]


def clean_workspace(
    settings: Settings,
    runner: CommandRunner,
    remove_kernel: bool = False,
) -> list[str]:
    """Remove build outputs, the mkosi cache and the output directory.

    Args:
        settings: Build settings.
        runner: Command runner.
        remove_kernel: Also remove the staged kernel and tools.

    Returns:
        Descriptions of what was removed.

    Raises:
        CommandError: If the cleanup container fails.
    """
    removed: list[str] = []

    if settings.mkosi_output_dir.exists() or settings.mkosi_cache_dir.exists():
        runner.run(compose_clean_command(settings, remove_kernel), check=True)
        removed.append("mkosi outputs and cache")

    if settings.out_dir.exists():
        shutil.rmtree(settings.out_dir)
        removed.append(str(settings.out_dir))

    logger.info("Clean complete.")
    return removed


__all__ = ["CLEAN_IMAGE", "clean_workspace", "compose_clean_command"]
