"""Shared fixtures.

FakeRunner stands in for CommandRunner: it records every argv and returns
exit codes (and captured output) chosen by an optional handler.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from captainos_build.config import Settings
from captainos_build.runner import CommandError, CommandResult

# handler(argv, cwd) -> None | exit_code | (exit_code, stdout)
Handler = Callable[[list[str], Path | None], object]

SETTINGS_ENV = (
    "ARCH",
    "KERNEL_VERSION",
    "KERNEL_SRC",
    "KERNEL_MIRROR",
    "PROJECT_DIR",
    "OUTPUT_DIR",
    "KERNEL_BUILD_DIR",
    "BUILDER_IMAGE",
    "CONTAINER_ENGINE",
    "NO_CACHE",
    "FORCE_KERNEL",
    "FORCE_TOOLS",
    "QEMU_MEM",
    "QEMU_SMP",
    "QEMU_APPEND",
    "DOWNLOAD_TIMEOUT",
    "LOG_LEVEL",
)


class FakeRunner:
    """Records commands instead of running them."""

    def __init__(self, handler: Handler | None = None) -> None:
        self.handler = handler
        self.calls: list[list[str]] = []
        self.cwds: list[Path | None] = []

    def run(
        self,
        argv,
        *,
        cwd=None,
        env=None,
        capture=False,
        check=False,
        quiet=False,
        timeout=None,
    ) -> CommandResult:
        cmd = [str(a) for a in argv]
        self.calls.append(cmd)
        self.cwds.append(cwd)

        exit_code, stdout = 0, ""
        if self.handler is not None:
            outcome = self.handler(cmd, cwd)
            if isinstance(outcome, tuple):
                exit_code, stdout = outcome
            elif outcome is not None:
                exit_code = outcome

        if exit_code != 0 and check:
            raise CommandError(
                f"Command failed with exit code {exit_code}",
                exit_code=exit_code,
                code="command_failed",
            )

        now = datetime.now(timezone.utc)
        return CommandResult(
            argv=cmd,
            exit_code=exit_code,
            started_at=now,
            finished_at=now,
            stdout=stdout if capture else None,
        )

    def matching(self, *prefix: str) -> list[list[str]]:
        """Return recorded commands whose argv starts with prefix."""
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of Settings."""
    for key in SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    (project / "Dockerfile").write_text("FROM debian:trixie\n")
    return project


@pytest.fixture
def settings(tmp_path: Path, project_dir: Path) -> Settings:
    """Settings rooted in a temporary project."""
    return Settings(
        _env_file=None,
        project_dir=project_dir,
        kernel_build_dir=tmp_path / "scratch",
    )
