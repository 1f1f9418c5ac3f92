"""Artifact collection.

This module handles:
- Locating the initramfs CPIO produced by mkosi
- Locating the kernel image staged by the kernel build
- Copying both into the output directory with architecture-qualified names
- Computing checksums of everything in the output directory
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from captainos_build.config import Settings
from captainos_build.fetch import compute_file_sha256
from captainos_build.types import Architecture, ArtifactInfo

logger = logging.getLogger(__name__)

INITRAMFS_PATTERN = "*.cpio*"
KERNEL_PATTERN = "vmlinuz-*"


@dataclass
class CollectedArtifacts:
    """Files collected into the output directory.

    Attributes:
        initramfs: Copied initramfs, or None if mkosi produced none.
        kernel: Copied kernel image, or None if none was found.
        checksums: Checksums of every file in the output directory.
        warnings: Human-readable warnings for missing inputs.
    """

    initramfs: Path | None = None
    kernel: Path | None = None
    checksums: list[ArtifactInfo] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.initramfs is not None and self.kernel is not None


def initramfs_name(arch: Architecture) -> str:
    return f"initramfs-{arch.value}.cpio.zst"


def kernel_name(arch: Architecture) -> str:
    return f"vmlinuz-{arch.value}"


def classify_artifact(filename: str) -> str:
    """Classify an output file by name (initramfs, kernel, other)."""
    if ".cpio" in filename:
        return "initramfs"
    if filename.startswith("vmlinuz"):
        return "kernel"
    return "other"


def _first_match(directory: Path, pattern: str) -> Path | None:
    if not directory.is_dir():
        return None
    matches = sorted(p for p in directory.glob(pattern) if p.is_file())
    return matches[0] if matches else None


def find_initramfs(mkosi_output_dir: Path) -> Path | None:
    """Return the first CPIO archive directly under the mkosi output dir."""
    return _first_match(mkosi_output_dir, INITRAMFS_PATTERN)


def find_kernel_image(kernel_output_dir: Path) -> Path | None:
    """Return the first vmlinuz-* under the kernel output's boot dir."""
    return _first_match(kernel_output_dir / "boot", KERNEL_PATTERN)


def checksum_directory(directory: Path) -> list[ArtifactInfo]:
    """Checksum every file in a directory (non-recursive).

    Args:
        directory: Directory to scan.

    Returns:
        ArtifactInfo for each file, sorted by name.
    """
    if not directory.is_dir():
        return []
    artifacts = []
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        artifacts.append(
            ArtifactInfo(
                filename=path.name,
                relative_path=path.name,
                size_bytes=path.stat().st_size,
                sha256=compute_file_sha256(path),
                kind=classify_artifact(path.name),
            )
        )
    return artifacts


def format_size(size_bytes: int) -> str:
    """Render a byte count the way ``du -h`` does."""
    size = float(size_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def collect_artifacts(settings: Settings) -> CollectedArtifacts:
    """Copy build outputs into the output directory and checksum them.

    The output directory is not cleared; files from other architectures
    are left in place.

    Args:
        settings: Build settings.

    Returns:
        CollectedArtifacts. Missing inputs are reported as warnings.
    """
    out_dir = settings.out_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    collected = CollectedArtifacts()

    initrd_src = find_initramfs(settings.mkosi_output_dir)
    if initrd_src is not None:
        dest = out_dir / initramfs_name(settings.arch)
        shutil.copyfile(initrd_src, dest)
        collected.initramfs = dest
        logger.info("initramfs: %s (%s)", dest, format_size(dest.stat().st_size))
    else:
        message = f"No initramfs CPIO found in {settings.mkosi_output_dir}/"
        logger.warning(message)
        collected.warnings.append(message)

    vmlinuz = find_kernel_image(settings.kernel_output_dir)
    if vmlinuz is not None:
        dest = out_dir / kernel_name(settings.arch)
        shutil.copyfile(vmlinuz, dest)
        collected.kernel = dest
        logger.info("kernel: %s (%s)", dest, format_size(dest.stat().st_size))
    else:
        message = f"No kernel image found in {settings.kernel_output_dir / 'boot'}/"
        logger.warning(message)
        collected.warnings.append(message)

    collected.checksums = checksum_directory(out_dir)
    return collected


__all__ = [
    "CollectedArtifacts",
    "checksum_directory",
    "classify_artifact",
    "collect_artifacts",
    "find_initramfs",
    "find_kernel_image",
    "format_size",
    "initramfs_name",
    "kernel_name",
]
