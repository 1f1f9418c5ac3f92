"""Tool staging reconciliation.

This module handles:
- Probing which tools are already installed
- Planning installs and removals (desired vs present)
- Applying a plan: download, selective extraction, cleanup

Runs inside the builder container (``captainos tools``).
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from captainos_build.fetch import (
    DOWNLOAD_TIMEOUT,
    download_file,
    extract_members,
)
from captainos_build.tools.catalog import DEFAULT_TOOLS, ToolSpec
from captainos_build.types import Architecture

logger = logging.getLogger(__name__)


@dataclass
class ToolPlan:
    """Operations needed to reach the desired tool set.

    Attributes:
        install: Tools to download and install.
        present: Tools left untouched.
        remove: Existing files to delete.
    """

    install: list[ToolSpec] = field(default_factory=list)
    present: list[ToolSpec] = field(default_factory=list)
    remove: list[Path] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.install and not self.remove


@dataclass
class ToolSet:
    """Result of a tool fetch.

    Attributes:
        staging_root: Root of the staging tree.
        installed: Names of tools installed during this run.
        present: Names of tools that were already present.
        removed: Files deleted during this run.
        files: Tool files now in the staging tree.
    """

    staging_root: Path
    installed: list[str] = field(default_factory=list)
    present: list[str] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)


def is_installed(staging_root: Path, spec: ToolSpec) -> bool:
    """Return True if the tool's probe executable exists."""
    probe = spec.probe_path(staging_root)
    return probe.is_file() and os.access(probe, os.X_OK)


def plan_tools(
    staging_root: Path,
    specs: Sequence[ToolSpec] = DEFAULT_TOOLS,
    force: bool = False,
) -> ToolPlan:
    """Diff the desired tool set against the staging tree.

    Args:
        staging_root: Root of the staging tree.
        specs: Desired tools.
        force: Reinstall every tool.

    Returns:
        ToolPlan with installs and removals.
    """
    plan = ToolPlan()
    for spec in specs:
        if force or not is_installed(staging_root, spec):
            plan.install.append(spec)
            plan.remove.extend(
                path
                for path in (staging_root / rel for rel in spec.obsolete)
                if path.exists() or path.is_symlink()
            )
        else:
            plan.present.append(spec)
    return plan


def install_tool(
    client: httpx.Client,
    spec: ToolSpec,
    staging_root: Path,
    arch: Architecture,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> list[Path]:
    """Download and install one tool.

    Returns:
        Installed files.

    Raises:
        DownloadError: If the download fails.
        ExtractionError: If extraction fails.
    """
    install_dir = staging_root / spec.install_dir
    if spec.replace_dir and install_dir.exists():
        shutil.rmtree(install_dir)
    install_dir.mkdir(parents=True, exist_ok=True)

    url = spec.url(arch)
    logger.info("Installing %s %s (%s)...", spec.name, spec.version, arch.download_arch)

    if not spec.is_archive:
        dest = install_dir / (spec.binary_name or spec.name)
        download_file(client, url, dest, timeout=timeout)
        dest.chmod(0o755)
        return [dest]

    with tempfile.NamedTemporaryFile(
        dir=staging_root, prefix=f".{spec.name}-", suffix=".tmp", delete=False
    ) as tmp_file:
        tmp_path = Path(tmp_file.name)
    try:
        download_file(client, url, tmp_path, timeout=timeout)
        return extract_members(tmp_path, install_dir, spec.members)
    finally:
        tmp_path.unlink(missing_ok=True)


def apply_plan(
    plan: ToolPlan,
    staging_root: Path,
    arch: Architecture,
    client: httpx.Client,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> ToolSet:
    """Execute a ToolPlan.

    Removals run after the installs so a failed download leaves them alone.
    """
    result = ToolSet(staging_root=staging_root)

    for spec in plan.present:
        logger.info(
            "%s already present (set FORCE_TOOLS=1 to re-download)", spec.name
        )
        result.present.append(spec.name)

    for spec in plan.install:
        for path in install_tool(client, spec, staging_root, arch, timeout=timeout):
            logger.info("    %s: %s", spec.name, path.relative_to(staging_root))
        result.installed.append(spec.name)

    for path in plan.remove:
        path.unlink(missing_ok=True)
        logger.info("Removed superseded %s", path.relative_to(staging_root))
        result.removed.append(path)

    for spec in (*plan.present, *plan.install):
        result.files.extend(p for p in spec.expected_files(staging_root) if p.exists())
    return result


def fetch_tools(
    staging_root: Path,
    arch: Architecture,
    force: bool = False,
    client: httpx.Client | None = None,
    specs: Sequence[ToolSpec] = DEFAULT_TOOLS,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> ToolSet:
    """Bring the staging tree to the desired tool set.

    Args:
        staging_root: Root of the staging tree (mkosi.output/kernel).
        arch: Target architecture.
        force: Re-download every tool.
        client: HTTPX client; created on demand.
        specs: Desired tools.
        timeout: Per-download timeout in seconds.

    Returns:
        ToolSet describing what was done.
    """
    staging_root.mkdir(parents=True, exist_ok=True)
    plan = plan_tools(staging_root, specs, force=force)

    if client is not None:
        return apply_plan(plan, staging_root, arch, client, timeout)
    with httpx.Client() as own_client:
        return apply_plan(plan, staging_root, arch, own_client, timeout)


__all__ = [
    "ToolPlan",
    "ToolSet",
    "apply_plan",
    "fetch_tools",
    "install_tool",
    "is_installed",
    "plan_tools",
]
