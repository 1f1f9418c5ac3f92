"""Shared type definitions for captainos_build.

This module contains enums and dataclasses shared across subpackages to avoid
circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class UnsupportedArchitectureError(ValueError):
    """Raised when an architecture name maps to no supported target."""

    def __init__(self, value: str, code: str = "unsupported_arch") -> None:
        super().__init__(
            f"Unsupported architecture: {value!r} (expected amd64/x86_64 or arm64/aarch64)"
        )
        self.value = value
        self.code = code


class Architecture(str, Enum):
    """Target architecture of the image."""

    AMD64 = "amd64"
    ARM64 = "arm64"

    @property
    def kernel_arch(self) -> str:
        """Value for the kernel's ``ARCH=`` make variable."""
        return "x86_64" if self is Architecture.AMD64 else "arm64"

    @property
    def cross_compile(self) -> str:
        """Toolchain prefix for ``CROSS_COMPILE=`` (empty for native)."""
        return "" if self is Architecture.AMD64 else "aarch64-linux-gnu-"

    @property
    def kernel_image_target(self) -> str:
        """Make target producing the bootable kernel image."""
        return "bzImage" if self is Architecture.AMD64 else "Image"

    @property
    def kernel_image_path(self) -> str:
        """Path of the compiled image relative to the kernel tree."""
        if self is Architecture.AMD64:
            return "arch/x86/boot/bzImage"
        return "arch/arm64/boot/Image"

    @property
    def mkosi_arch(self) -> str:
        """Architecture name understood by mkosi."""
        return "x86-64" if self is Architecture.AMD64 else "arm64"

    @property
    def download_arch(self) -> str:
        """Architecture name used in upstream release asset names."""
        return self.value

    @property
    def machine_names(self) -> tuple[str, ...]:
        """``uname -m`` spellings of this architecture."""
        if self is Architecture.AMD64:
            return ("x86_64", "amd64")
        return ("aarch64", "arm64")


_ARCH_ALIASES = {
    "amd64": Architecture.AMD64,
    "x86_64": Architecture.AMD64,
    "arm64": Architecture.ARM64,
    "aarch64": Architecture.ARM64,
}


def resolve_architecture(value: "str | Architecture") -> Architecture:
    """Map an architecture name or alias to its canonical value.

    Args:
        value: Architecture name (amd64, x86_64, arm64, aarch64).

    Returns:
        The canonical Architecture.

    Raises:
        UnsupportedArchitectureError: If the name is not recognised.
    """
    if isinstance(value, Architecture):
        return value
    arch = _ARCH_ALIASES.get(str(value).strip().lower())
    if arch is None:
        raise UnsupportedArchitectureError(str(value))
    return arch


class StageStatus(str, Enum):
    """Outcome of a pipeline stage."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StageResult:
    """Result of one pipeline stage."""

    name: str
    status: StageStatus
    message: str
    exit_code: int | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is not StageStatus.FAILED


@dataclass
class ArtifactInfo:
    """Information about a file in the final output directory."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None


__all__ = [
    "Architecture",
    "ArtifactInfo",
    "StageResult",
    "StageStatus",
    "UnsupportedArchitectureError",
    "resolve_architecture",
]
