"""Commands executed inside the builder container.

Every in-environment step runs through ``<engine> run --rm --privileged`` with
the project mounted at /work. The local kernel source, when given, is mounted
read-only at /work/kernel-src.
"""

from __future__ import annotations

from collections.abc import Sequence

from captainos_build.config import (
    CONTAINER_KERNEL_SRC,
    CONTAINER_WORKDIR,
    Settings,
    container_env,
)


def compose_run_command(
    settings: Settings,
    args: Sequence[str] = (),
    *,
    entrypoint: str | None = None,
    interactive: bool = False,
    image: str | None = None,
) -> list[str]:
    """Compose a ``run`` command for the builder image.

    Args:
        settings: Build settings.
        args: Arguments passed to the image entrypoint.
        entrypoint: Override the image entrypoint (default: mkosi).
        interactive: Allocate a TTY and keep stdin open.
        image: Override the image name.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [settings.container_engine, "run", "--rm", "--privileged"]
    if interactive:
        cmd.append("-it")

    cmd.extend(["-v", f"{settings.project_dir.resolve()}:{CONTAINER_WORKDIR}"])
    cmd.extend(["-w", str(CONTAINER_WORKDIR)])

    if settings.kernel_src is not None:
        cmd.extend(["-v", f"{settings.kernel_src.resolve()}:{CONTAINER_KERNEL_SRC}:ro"])

    for key, value in container_env(settings).items():
        cmd.extend(["-e", f"{key}={value}"])

    if entrypoint:
        cmd.extend(["--entrypoint", entrypoint])

    cmd.append(image or settings.builder_image)
    cmd.extend(args)
    return cmd


def compose_stage_command(settings: Settings, stage: str) -> list[str]:
    """Compose the command running a captainos stage inside the builder."""
    return compose_run_command(
        settings,
        ["-m", "captainos_build", stage],
        entrypoint="python3",
    )


__all__ = ["compose_run_command", "compose_stage_command"]
