"""Kernel build.

This module handles:
- Skipping the build when modules are already installed
- Applying the architecture defconfig (or the toolchain default)
- Widening the x86 command line limit
- Compiling the image and modules
- Installing modules in the merged-usr layout mkosi expects
- Stripping modules and placing the kernel image

Runs inside the builder container (``captainos kernel``).
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx

from captainos_build.config import ConfigurationError, Settings
from captainos_build.kernel.source import ensure_kernel_source
from captainos_build.runner import CommandRunner
from captainos_build.types import Architecture

logger = logging.getLogger(__name__)

COMMAND_LINE_SIZE = 4096
DEFAULT_COMMAND_LINE_SIZE = 2048
SETUP_HEADER = Path("arch/x86/include/asm/setup.h")

_COMMAND_LINE_RE = re.compile(
    rf"#define COMMAND_LINE_SIZE[ \t]*{DEFAULT_COMMAND_LINE_SIZE}\b"
)

# Modules passed to one strip invocation
STRIP_BATCH_SIZE = 200


class KernelBuildError(Exception):
    """Raised when the kernel build cannot complete."""

    def __init__(self, message: str, code: str = "kernel_build_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class KernelOutput:
    """Installed kernel.

    Attributes:
        output_dir: Root of the staged tree (mkosi.output/kernel).
        release: Kernel release reported by the build (None if unknown).
        modules_dir: usr/lib/modules/<release>.
        image_path: Kernel image inside modules_dir.
        boot_image_path: Copy of the image under boot/.
        skipped: True if an existing build was reused.
    """

    output_dir: Path
    release: str | None
    modules_dir: Path | None
    image_path: Path | None
    boot_image_path: Path | None
    skipped: bool = False


def kernel_already_built(output_dir: Path) -> bool:
    """Return True if installed modules exist under output_dir."""
    return (output_dir / "usr" / "lib" / "modules").is_dir()


def existing_kernel_output(output_dir: Path) -> KernelOutput:
    """Describe a previously built kernel without touching it."""
    modules_root = output_dir / "usr" / "lib" / "modules"
    releases = sorted(p for p in modules_root.iterdir() if p.is_dir())
    if not releases:
        return KernelOutput(output_dir, None, None, None, None, skipped=True)
    modules_dir = releases[0]
    release = modules_dir.name
    return KernelOutput(
        output_dir=output_dir,
        release=release,
        modules_dir=modules_dir,
        image_path=modules_dir / "vmlinuz",
        boot_image_path=output_dir / "boot" / f"vmlinuz-{release}",
        skipped=True,
    )


def make_command(
    arch: Architecture,
    *targets: str,
    jobs: int | None = None,
    silent: bool = False,
    variables: dict[str, str] | None = None,
) -> list[str]:
    """Compose a kernel ``make`` invocation.

    Args:
        arch: Target architecture.
        targets: Make targets.
        jobs: Parallel jobs (-j).
        silent: Pass -s.
        variables: Extra make variables.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = ["make"]
    if silent:
        cmd.append("-s")
    cmd.append(f"ARCH={arch.kernel_arch}")
    if arch.cross_compile:
        cmd.append(f"CROSS_COMPILE={arch.cross_compile}")
    if jobs:
        cmd.append(f"-j{jobs}")
    for key, value in (variables or {}).items():
        cmd.append(f"{key}={value}")
    cmd.extend(targets)
    return cmd


def available_cpus() -> int:
    try:
        return len(os.sched_getaffinity(0))
    except AttributeError:
        return os.cpu_count() or 1


def patch_command_line_size(source_dir: Path) -> bool:
    """Raise COMMAND_LINE_SIZE in the x86 setup header to 4096.

    Returns:
        True if the header was changed.
    """
    header = source_dir / SETUP_HEADER
    if not header.is_file():
        logger.warning("%s not found; COMMAND_LINE_SIZE left unchanged", header)
        return False
    content = header.read_text()
    patched, count = _COMMAND_LINE_RE.subn(
        f"#define COMMAND_LINE_SIZE {COMMAND_LINE_SIZE}", content
    )
    if count:
        header.write_text(patched)
        logger.info("Increased COMMAND_LINE_SIZE to %d", COMMAND_LINE_SIZE)
        return True

    if f"COMMAND_LINE_SIZE {COMMAND_LINE_SIZE}" not in content:
        logger.warning("COMMAND_LINE_SIZE definition not found in %s", header)
    return False


def configure_kernel(
    settings: Settings,
    source_dir: Path,
    runner: CommandRunner,
) -> None:
    """Write .config from the architecture defconfig or the kernel default."""
    arch = settings.arch
    defconfig = settings.config_dir / f"defconfig.{arch.value}"

    if defconfig.is_file():
        logger.info("Using defconfig: %s", defconfig)
        shutil.copyfile(defconfig, source_dir / ".config")
        runner.run(make_command(arch, "olddefconfig"), cwd=source_dir, check=True)
        resolved = settings.config_dir / f".config.resolved.{arch.value}"
        shutil.copyfile(source_dir / ".config", resolved)
        logger.info("Resolved config saved to %s", resolved)
    else:
        logger.info("No defconfig found at %s, using default", defconfig)
        runner.run(make_command(arch, "defconfig"), cwd=source_dir, check=True)


def _remove_build_links(modules_dir: Path) -> None:
    for name in ("build", "source"):
        link = modules_dir / name
        if link.is_symlink() or link.is_file():
            link.unlink()


def _chunks(items: Sequence[Path], size: int) -> list[Sequence[Path]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def strip_modules(
    arch: Architecture,
    output_dir: Path,
    runner: CommandRunner,
) -> int:
    """Strip debug symbols from every installed module.

    Returns:
        Number of modules stripped.
    """
    modules = sorted(output_dir.rglob("*.ko"))
    strip = f"{arch.cross_compile}strip"
    for batch in _chunks(modules, STRIP_BATCH_SIZE):
        runner.run([strip, "--strip-unneeded", *batch], check=True)
    return len(modules)


def install_modules(
    settings: Settings,
    source_dir: Path,
    release: str,
    runner: CommandRunner,
) -> Path:
    """Install modules into the output tree under usr/lib/modules/<release>.

    Returns:
        The modules directory.
    """
    output_dir = settings.kernel_output_dir
    runner.run(
        make_command(
            settings.arch,
            "modules_install",
            variables={"INSTALL_MOD_PATH": str(output_dir)},
        ),
        cwd=source_dir,
        check=True,
    )

    count = strip_modules(settings.arch, output_dir, runner)
    logger.info("Stripped debug symbols from %d modules", count)

    modules_dir = output_dir / "usr" / "lib" / "modules" / release
    legacy_dir = output_dir / "lib" / "modules" / release
    if legacy_dir.is_dir():
        _remove_build_links(legacy_dir)
        modules_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(legacy_dir, modules_dir, symlinks=True, dirs_exist_ok=True)
        shutil.rmtree(output_dir / "lib")

    modules_dir.mkdir(parents=True, exist_ok=True)
    _remove_build_links(modules_dir)
    return modules_dir


def build_kernel(
    settings: Settings,
    runner: CommandRunner,
    client: httpx.Client | None = None,
) -> KernelOutput:
    """Build the kernel and stage it for mkosi.

    Args:
        settings: Build settings (arch, version, local source, force flag).
        runner: Command runner for make and strip.
        client: Optional HTTPX client for the source download.

    Returns:
        KernelOutput describing the staged kernel.

    Raises:
        ConfigurationError: If no kernel version is configured.
        CommandError: If a toolchain command fails.
        KernelBuildError: If the compiled image is missing.
        DownloadError: If the source download fails.
    """
    output_dir = settings.kernel_output_dir

    if kernel_already_built(output_dir) and not settings.force_kernel:
        logger.info("Kernel already built (set FORCE_KERNEL=1 to rebuild)")
        return existing_kernel_output(output_dir)

    if not settings.kernel_version.strip():
        raise ConfigurationError(
            "KERNEL_VERSION must be set", code="missing_kernel_version"
        )

    # Full recreation, never incremental
    if output_dir.exists():
        shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True)

    try:
        return _build_into(settings, output_dir, runner, client)
    except BaseException:
        # Partial output must never pass the skip check
        logger.error("Kernel build failed; removing %s", output_dir)
        shutil.rmtree(output_dir, ignore_errors=True)
        raise


def _build_into(
    settings: Settings,
    output_dir: Path,
    runner: CommandRunner,
    client: httpx.Client | None,
) -> KernelOutput:
    arch = settings.arch
    source_dir = ensure_kernel_source(settings, client)
    configure_kernel(settings, source_dir, runner)

    if arch is Architecture.AMD64:
        patch_command_line_size(source_dir)

    jobs = available_cpus()
    logger.info("Building kernel with %d jobs...", jobs)
    runner.run(
        make_command(arch, arch.kernel_image_target, "modules", jobs=jobs),
        cwd=source_dir,
        check=True,
    )

    result = runner.run(
        make_command(arch, "kernelrelease", silent=True),
        cwd=source_dir,
        capture=True,
        check=True,
    )
    release = (result.stdout or "").strip()
    if not release:
        raise KernelBuildError("make kernelrelease returned nothing")
    logger.info("Built kernel version: %s", release)

    modules_dir = install_modules(settings, source_dir, release, runner)

    built_image = source_dir / arch.kernel_image_path
    if not built_image.is_file():
        raise KernelBuildError(
            f"Kernel image not found at {built_image}", code="image_missing"
        )

    image_path = modules_dir / "vmlinuz"
    shutil.copyfile(built_image, image_path)

    boot_dir = output_dir / "boot"
    boot_dir.mkdir(parents=True, exist_ok=True)
    boot_image_path = boot_dir / f"vmlinuz-{release}"
    shutil.copyfile(image_path, boot_image_path)

    logger.info("Kernel build complete: %s (%s)", release, image_path)
    return KernelOutput(
        output_dir=output_dir,
        release=release,
        modules_dir=modules_dir,
        image_path=image_path,
        boot_image_path=boot_image_path,
    )


__all__ = [
    "COMMAND_LINE_SIZE",
    "KernelBuildError",
    "KernelOutput",
    "build_kernel",
    "configure_kernel",
    "existing_kernel_output",
    "install_modules",
    "kernel_already_built",
    "make_command",
    "patch_command_line_size",
    "strip_modules",
]
