"""Configuration settings for captainos_build.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Settings are built once at process start and passed explicitly to every
component; nothing reads the process environment afterwards.
"""

from pathlib import Path, PurePosixPath
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from captainos_build.types import Architecture, resolve_architecture

# Mount points inside the builder container
CONTAINER_WORKDIR = PurePosixPath("/work")
CONTAINER_KERNEL_SRC = CONTAINER_WORKDIR / "kernel-src"

DEFAULT_KERNEL_VERSION = "6.12.69"


class ConfigurationError(Exception):
    """Raised when the build configuration is unusable."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message)
        self.code = code


class Settings(BaseSettings):
    """Build settings.

    Loaded from unprefixed environment variables (ARCH, KERNEL_VERSION, ...).
    Instances are immutable; use apply_overrides() for CLI flags.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    # Target
    arch: Architecture = Field(
        default=Architecture.AMD64,
        description="Target architecture (amd64/x86_64 or arm64/aarch64)",
    )
    kernel_version: str = Field(
        default=DEFAULT_KERNEL_VERSION,
        description="Kernel version to download and build",
    )
    kernel_src: Path | None = Field(
        default=None,
        description="Local kernel source tree (skips the download)",
    )
    kernel_mirror: str = Field(
        default="https://cdn.kernel.org/pub/linux/kernel",
        description="Base URL for kernel source tarballs",
    )

    # Paths
    project_dir: Path = Field(
        default_factory=Path.cwd,
        description="Project root holding Dockerfile, mkosi.conf and config/",
    )
    output_dir: Path = Field(
        default=Path("out"),
        description="Final output directory (relative to project_dir)",
    )
    kernel_build_dir: Path = Field(
        default=Path("/var/tmp/kernel-build"),
        description="Scratch area for kernel sources and objects",
    )

    # Builder environment
    builder_image: str = Field(
        default="captainos-builder",
        description="Name of the builder container image",
    )
    container_engine: Literal["docker", "podman"] = Field(
        default="docker",
        description="Container engine used for the builder",
    )

    # Force flags
    no_cache: bool = Field(
        default=False,
        description="Rebuild the builder image without the engine's build cache",
    )
    force_kernel: bool = Field(
        default=False,
        description="Rebuild the kernel even if output exists",
    )
    force_tools: bool = Field(
        default=False,
        description="Re-download tools even if present",
    )

    # Emulator
    qemu_mem: str = Field(default="2G", description="QEMU RAM size")
    qemu_smp: int = Field(default=2, ge=1, description="QEMU CPU count")
    qemu_append: str = Field(
        default="",
        description="Extra kernel command line for qemu-test",
    )

    # Operational
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for downloads in seconds",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("arch", mode="before")
    @classmethod
    def _resolve_arch(cls, value: Any) -> Architecture:
        return resolve_architecture(value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @property
    def definition_path(self) -> Path:
        """Builder environment definition (Dockerfile)."""
        return self.project_dir / "Dockerfile"

    @property
    def config_dir(self) -> Path:
        return self.project_dir / "config"

    @property
    def mkosi_output_dir(self) -> Path:
        return self.project_dir / "mkosi.output"

    @property
    def mkosi_cache_dir(self) -> Path:
        return self.project_dir / "mkosi.cache"

    @property
    def kernel_output_dir(self) -> Path:
        """Kernel, modules and tools staged for mkosi ExtraTrees."""
        return self.mkosi_output_dir / "kernel"

    @property
    def out_dir(self) -> Path:
        """Final output directory."""
        if self.output_dir.is_absolute():
            return self.output_dir
        return self.project_dir / self.output_dir


def get_settings() -> Settings:
    """Load settings from the environment.

    Returns:
        Settings instance loaded from environment.

    Raises:
        pydantic.ValidationError: If a value is invalid (e.g. unsupported ARCH).
    """
    return Settings()


def apply_overrides(settings: Settings, **overrides: Any) -> Settings:
    """Return a copy of settings with CLI overrides applied.

    None values are treated as "not given" and leave the setting unchanged.
    """
    update = {key: value for key, value in overrides.items() if value is not None}
    if "arch" in update:
        update["arch"] = resolve_architecture(update["arch"])
    if not update:
        return settings
    return settings.model_copy(update=update)


def validate_build_settings(settings: Settings) -> None:
    """Check settings required before any build step runs.

    Raises:
        ConfigurationError: If the kernel version is empty or the local
            kernel source does not exist.
    """
    if not settings.kernel_version.strip():
        raise ConfigurationError(
            "KERNEL_VERSION must be set", code="missing_kernel_version"
        )
    if settings.kernel_src is not None and not settings.kernel_src.is_dir():
        raise ConfigurationError(
            f"KERNEL_SRC={settings.kernel_src} does not exist",
            code="missing_kernel_src",
        )


def container_env(settings: Settings) -> dict[str, str]:
    """Environment forwarded to in-container stages.

    Paths are translated to their mount points inside the builder.
    """
    env = {
        "ARCH": settings.arch.value,
        "KERNEL_VERSION": settings.kernel_version,
        "KERNEL_MIRROR": settings.kernel_mirror,
        "FORCE_KERNEL": "1" if settings.force_kernel else "0",
        "FORCE_TOOLS": "1" if settings.force_tools else "0",
        "PROJECT_DIR": str(CONTAINER_WORKDIR),
        "OUTPUT_DIR": str(settings.output_dir)
        if not settings.output_dir.is_absolute()
        else "out",
        "DOWNLOAD_TIMEOUT": str(settings.download_timeout),
        "LOG_LEVEL": settings.log_level,
        "PYTHONPATH": str(CONTAINER_WORKDIR),
    }
    if settings.kernel_src is not None:
        env["KERNEL_SRC"] = str(CONTAINER_KERNEL_SRC)
    return env


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "CONTAINER_KERNEL_SRC",
    "CONTAINER_WORKDIR",
    "ConfigurationError",
    "DEFAULT_KERNEL_VERSION",
    "Settings",
    "apply_overrides",
    "container_env",
    "get_settings",
    "print_settings_json",
    "validate_build_settings",
]
