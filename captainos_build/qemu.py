"""QEMU boot test and boot-time parameters.

This module handles:
- Composing the QEMU command for the built kernel/initramfs pair
- Documenting the kernel command line keys read by the image
"""

from __future__ import annotations

import logging

from captainos_build.assemble.artifacts import initramfs_name, kernel_name
from captainos_build.config import Settings
from captainos_build.runner import CommandResult, CommandRunner
from captainos_build.types import Architecture

logger = logging.getLogger(__name__)

# Kernel command line keys consumed by the image at boot; not parsed here.
BOOT_PARAMETERS: dict[str, str] = {
    "tink_worker_image": "Workload container image reference to run",
    "docker_registry": "Registry endpoint the worker image is pulled from",
    "registry_username": "Registry username",
    "registry_password": "Registry password",
    "tinkerbell_tls": "Use TLS when talking to the provisioning server (true/false)",
    "syslog_host": "Remote syslog host receiving boot and worker logs",
    "syslog_port": "Remote syslog port",
    "insecure_registries": "Comma-separated registries reachable without TLS",
}


class ArtifactsMissingError(Exception):
    """Raised when qemu-test runs before a build produced its inputs."""

    def __init__(self, missing: list[str], code: str = "artifacts_missing") -> None:
        super().__init__(f"Build artifacts not found: {', '.join(missing)}")
        self.missing = missing
        self.code = code


def qemu_binary(arch: Architecture) -> str:
    return "qemu-system-x86_64" if arch is Architecture.AMD64 else "qemu-system-aarch64"


def serial_console(arch: Architecture) -> str:
    return "ttyS0" if arch is Architecture.AMD64 else "ttyAMA0"


def compose_cmdline(settings: Settings, worker_image: str | None = None) -> str:
    """Compose the kernel command line for a test boot."""
    parts = [f"console={serial_console(settings.arch)}", "audit=0"]
    if worker_image:
        parts.append(f"tink_worker_image={worker_image}")
    if settings.qemu_append.strip():
        parts.append(settings.qemu_append.strip())
    return " ".join(parts)


def compose_qemu_command(settings: Settings, worker_image: str | None = None) -> list[str]:
    """Compose the QEMU invocation booting the output kernel and initramfs.

    Args:
        settings: Build settings (arch, memory, CPUs, extra cmdline).
        worker_image: Optional tink_worker_image to inject.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    arch = settings.arch
    cmd = [qemu_binary(arch)]
    if arch is Architecture.ARM64:
        cmd.extend(["-machine", "virt", "-cpu", "cortex-a57"])
    cmd.extend(
        [
            "-kernel",
            str(settings.out_dir / kernel_name(arch)),
            "-initrd",
            str(settings.out_dir / initramfs_name(arch)),
            "-append",
            compose_cmdline(settings, worker_image),
            "-nographic",
            "-m",
            settings.qemu_mem,
            "-smp",
            str(settings.qemu_smp),
            "-nic",
            "user,model=virtio-net-pci",
            "-no-reboot",
        ]
    )
    return cmd


def qemu_test(
    settings: Settings,
    runner: CommandRunner,
    worker_image: str | None = None,
) -> CommandResult:
    """Boot the built image in QEMU.

    Raises:
        ArtifactsMissingError: If the kernel or initramfs is missing.
    """
    required = [
        settings.out_dir / kernel_name(settings.arch),
        settings.out_dir / initramfs_name(settings.arch),
    ]
    missing = [str(p) for p in required if not p.is_file()]
    if missing:
        raise ArtifactsMissingError(missing)

    logger.info("Kernel cmdline: %s", compose_cmdline(settings, worker_image))
    return runner.run(compose_qemu_command(settings, worker_image))


__all__ = [
    "ArtifactsMissingError",
    "BOOT_PARAMETERS",
    "compose_cmdline",
    "compose_qemu_command",
    "qemu_binary",
    "qemu_test",
    "serial_console",
]
