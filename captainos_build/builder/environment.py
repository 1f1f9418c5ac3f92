"""Builder environment preparation.

This module handles:
- Inspecting the builder container image
- Deciding whether it must be rebuilt (needs_rebuild)
- Rebuilding it from the environment definition (Dockerfile)

The image is rebuilt when it is missing, when the definition is newer than
the image, or when forced. Any doubt about timestamps means rebuild.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from captainos_build.runner import CommandError, CommandRunner

logger = logging.getLogger(__name__)

# 2024-05-01T10:11:12.123456789Z / 2024-05-01T10:11:12+02:00
_RFC3339 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[T ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?\s*(?P<tz>Z|[+-]\d{2}:?\d{2})?"
)


class EnvironmentBuildError(Exception):
    """Raised when the builder image cannot be built."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "environment_build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class EnvironmentHandle:
    """A prepared builder environment.

    Attributes:
        image: Container image name.
        engine: Container engine binary.
        rebuilt: Whether the image was (re)built during this call.
        created_at: Image creation time, if known.
    """

    image: str
    engine: str
    rebuilt: bool
    created_at: datetime | None = None


def parse_engine_timestamp(value: str) -> datetime | None:
    """Parse an image creation timestamp reported by docker or podman.

    Docker reports RFC 3339 with nanoseconds; podman reports
    ``2024-05-01 10:11:12.123456789 +0000 UTC``.

    Args:
        value: Timestamp string.

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed.
    """
    match = _RFC3339.match(value.strip())
    if not match:
        return None

    frac = (match.group("frac") or "")[:6].ljust(6, "0")
    try:
        parsed = datetime.strptime(
            f"{match.group('date')} {match.group('time')}.{frac}",
            "%Y-%m-%d %H:%M:%S.%f",
        )
    except ValueError:
        return None

    tz = match.group("tz")
    if tz is None or tz == "Z":
        return parsed.replace(tzinfo=timezone.utc)

    digits = tz[1:].replace(":", "")
    offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
    if tz[0] == "-":
        offset = -offset
    return parsed.replace(tzinfo=timezone(offset))


def needs_rebuild(
    image_created: datetime | None,
    definition_mtime: float | None,
    *,
    image_exists: bool,
    force: bool,
) -> bool:
    """Decide whether the builder image must be (re)built.

    Args:
        image_created: Creation time of the existing image, if known.
        definition_mtime: Modification time of the definition file, if known.
        image_exists: Whether an image with the expected name exists.
        force: Always rebuild.

    Returns:
        True if a build is required.
    """
    if force or not image_exists:
        return True
    if image_created is None or definition_mtime is None:
        return True
    return definition_mtime > image_created.timestamp()


def inspect_image(
    runner: CommandRunner,
    engine: str,
    image: str,
) -> tuple[bool, datetime | None]:
    """Look up an image and its creation time.

    Returns:
        Tuple of (exists, created_at). created_at is None if unparseable.
    """
    result = runner.run(
        [engine, "image", "inspect", image, "--format", "{{.Created}}"],
        capture=True,
        quiet=True,
    )
    if not result.success:
        return False, None
    created = parse_engine_timestamp(result.stdout or "")
    if created is None:
        logger.debug("Could not parse creation time of %s: %r", image, result.stdout)
    return True, created


def definition_mtime(definition_path: Path) -> float | None:
    """Return the definition's modification time, or None if unavailable."""
    try:
        return definition_path.stat().st_mtime
    except OSError:
        return None


def compose_build_command(
    engine: str,
    image: str,
    definition_path: Path,
    no_cache: bool = False,
) -> list[str]:
    """Compose the image build command."""
    cmd = [engine, "build"]
    if no_cache:
        cmd.append("--no-cache")
    cmd.extend(["-t", image, "-f", str(definition_path), str(definition_path.parent)])
    return cmd


def ensure_environment(
    definition_path: Path,
    force: bool,
    *,
    runner: CommandRunner,
    image: str,
    engine: str = "docker",
) -> EnvironmentHandle:
    """Ensure the builder image exists and is current.

    Args:
        definition_path: Path to the Dockerfile.
        force: Rebuild without the engine's build cache.
        runner: Command runner.
        image: Image name.
        engine: Container engine binary.

    Returns:
        EnvironmentHandle for the image.

    Raises:
        EnvironmentBuildError: If the build command fails.
    """
    exists, created = inspect_image(runner, engine, image)
    mtime = definition_mtime(definition_path)

    if not needs_rebuild(created, mtime, image_exists=exists, force=force):
        logger.info("Builder image '%s' is up to date.", image)
        return EnvironmentHandle(
            image=image, engine=engine, rebuilt=False, created_at=created
        )

    logger.info("Building builder image '%s'...", image)
    cmd = compose_build_command(engine, image, definition_path, no_cache=force)
    try:
        result = runner.run(cmd)
    except CommandError as e:
        raise EnvironmentBuildError(str(e), exit_code=e.exit_code) from e

    if not result.success:
        raise EnvironmentBuildError(
            f"Builder image build failed with exit code {result.exit_code}",
            exit_code=result.exit_code,
        )

    return EnvironmentHandle(image=image, engine=engine, rebuilt=True)


__all__ = [
    "EnvironmentBuildError",
    "EnvironmentHandle",
    "compose_build_command",
    "definition_mtime",
    "ensure_environment",
    "inspect_image",
    "needs_rebuild",
    "parse_engine_timestamp",
]
