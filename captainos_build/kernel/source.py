"""Kernel source acquisition.

This module handles:
- Building the upstream tarball URL for a kernel version
- Downloading and extracting the tarball into the scratch area
- Reusing an already-extracted tree for the same version
- Snapshotting a caller-supplied tree so it is never written to
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import httpx

from captainos_build.config import Settings
from captainos_build.fetch import ExtractionError, download_file, extract_archive

logger = logging.getLogger(__name__)

KERNEL_MIRROR = "https://cdn.kernel.org/pub/linux/kernel"

# Snapshot directory for a local source tree, inside the scratch area
LOCAL_SNAPSHOT_NAME = "linux-local"


def kernel_tarball_url(version: str, mirror: str = KERNEL_MIRROR) -> str:
    """Return the upstream tarball URL for a kernel version.

    Args:
        version: Kernel version (e.g., '6.12.69').
        mirror: Base URL of the kernel.org mirror.

    Returns:
        URL of ``linux-<version>.tar.xz``.
    """
    major = version.split(".", 1)[0]
    return f"{mirror.rstrip('/')}/v{major}.x/linux-{version}.tar.xz"


def cached_source_dir(scratch_dir: Path, version: str) -> Path:
    """Return where the extracted tree for a version lives."""
    return scratch_dir / f"linux-{version}"


def snapshot_local_source(source: Path, scratch_dir: Path) -> Path:
    """Copy a local kernel tree into the scratch area.

    The snapshot is recreated each time so edits to the original tree are
    picked up.

    Args:
        source: Caller-supplied kernel tree (read-only).
        scratch_dir: Scratch area.

    Returns:
        Path to the writable snapshot.
    """
    snapshot = scratch_dir / LOCAL_SNAPSHOT_NAME
    if snapshot.exists():
        shutil.rmtree(snapshot)
    logger.info("Copying kernel source from %s", source)
    shutil.copytree(
        source,
        snapshot,
        symlinks=True,
        ignore=shutil.ignore_patterns(".git"),
    )
    return snapshot


def ensure_kernel_source(
    settings: Settings,
    client: httpx.Client | None = None,
) -> Path:
    """Provide a writable kernel tree for the configured version.

    Args:
        settings: Build settings.
        client: HTTPX client, created on demand if a download is needed.

    Returns:
        Path to the kernel tree to build in.

    Raises:
        DownloadError: If the tarball download fails.
        ExtractionError: If extraction fails.
    """
    scratch = settings.kernel_build_dir
    scratch.mkdir(parents=True, exist_ok=True)

    if settings.kernel_src is not None:
        logger.info("Using provided kernel source at %s", settings.kernel_src)
        return snapshot_local_source(settings.kernel_src, scratch)

    source_dir = cached_source_dir(scratch, settings.kernel_version)
    if source_dir.is_dir():
        logger.info("Using cached kernel source at %s", source_dir)
        return source_dir

    url = kernel_tarball_url(settings.kernel_version, settings.kernel_mirror)
    tarball = scratch / url.rsplit("/", 1)[-1]

    logger.info("Downloading kernel %s...", settings.kernel_version)
    if client is None:
        with httpx.Client() as own_client:
            download_file(own_client, url, tarball, timeout=settings.download_timeout)
    else:
        download_file(client, url, tarball, timeout=settings.download_timeout)

    try:
        extract_archive(tarball, scratch, remove_archive=True)
    except ExtractionError:
        # A half-extracted tree would be reused as the cache on the next run
        shutil.rmtree(source_dir, ignore_errors=True)
        raise
    finally:
        tarball.unlink(missing_ok=True)

    return source_dir


__all__ = [
    "KERNEL_MIRROR",
    "cached_source_dir",
    "ensure_kernel_source",
    "kernel_tarball_url",
    "snapshot_local_source",
]
