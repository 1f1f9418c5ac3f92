"""Build pipeline driver.

This module provides the high-level build API:
- run_pipeline(): run every stage in order, halting on the first failure
- One stage function per step, each returning a StageResult

Stages: builder image, kernel, tools, image (mkosi), collect. The kernel and
tools stages run inside the builder container; their skip checks also run
here on the host so an up-to-date tree never starts a container.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from captainos_build.assemble.artifacts import CollectedArtifacts, collect_artifacts
from captainos_build.assemble.mkosi import run_mkosi
from captainos_build.builder.container import compose_stage_command
from captainos_build.builder.environment import EnvironmentBuildError, ensure_environment
from captainos_build.config import Settings, validate_build_settings
from captainos_build.kernel.build import kernel_already_built
from captainos_build.runner import CommandError, CommandRunner
from captainos_build.tools.reconcile import plan_tools
from captainos_build.types import StageResult, StageStatus

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of a pipeline run.

    Attributes:
        stages: Results of the stages that ran, in order.
        artifacts: Collected artifacts (None unless the collect stage ran).
    """

    stages: list[StageResult] = field(default_factory=list)
    artifacts: CollectedArtifacts | None = None

    @property
    def success(self) -> bool:
        return all(stage.success for stage in self.stages)

    @property
    def failed_stage(self) -> StageResult | None:
        for stage in self.stages:
            if not stage.success:
                return stage
        return None

    @property
    def exit_code(self) -> int:
        failed = self.failed_stage
        if failed is None:
            return 0
        return failed.exit_code or 1


def _failed(name: str, message: str, exit_code: int | None = None) -> StageResult:
    logger.error("%s stage failed: %s", name, message)
    return StageResult(
        name=name, status=StageStatus.FAILED, message=message, exit_code=exit_code
    )


def _run_in_builder(name: str, runner: CommandRunner, argv: list[str]) -> StageResult:
    try:
        result = runner.run(argv)
    except CommandError as e:
        return _failed(name, str(e), e.exit_code)
    if not result.success:
        return _failed(
            name, f"exited with status {result.exit_code}", result.exit_code
        )
    return StageResult(name=name, status=StageStatus.SUCCEEDED, message="done")


def stage_builder(settings: Settings, runner: CommandRunner) -> StageResult:
    """Prepare the builder image."""
    try:
        handle = ensure_environment(
            settings.definition_path,
            settings.no_cache,
            runner=runner,
            image=settings.builder_image,
            engine=settings.container_engine,
        )
    except EnvironmentBuildError as e:
        return _failed("builder", str(e), e.exit_code)

    return StageResult(
        name="builder",
        status=StageStatus.SUCCEEDED if handle.rebuilt else StageStatus.SKIPPED,
        message="rebuilt" if handle.rebuilt else "up to date",
        details={"image": handle.image},
    )


def stage_kernel(settings: Settings, runner: CommandRunner) -> StageResult:
    """Build the kernel inside the builder unless it is already installed."""
    if kernel_already_built(settings.kernel_output_dir) and not settings.force_kernel:
        logger.info("Kernel already built (set FORCE_KERNEL=1 to rebuild)")
        return StageResult(
            name="kernel", status=StageStatus.SKIPPED, message="already built"
        )

    logger.info("Building kernel %s (%s)...", settings.kernel_version, settings.arch.value)
    return _run_in_builder("kernel", runner, compose_stage_command(settings, "kernel"))


def stage_tools(settings: Settings, runner: CommandRunner) -> StageResult:
    """Fetch the runtime tools inside the builder unless all are present."""
    plan = plan_tools(settings.kernel_output_dir, force=settings.force_tools)
    if plan.is_noop:
        logger.info("All tools present (set FORCE_TOOLS=1 to re-download)")
        return StageResult(
            name="tools", status=StageStatus.SKIPPED, message="all present"
        )

    logger.info(
        "Downloading tools: %s", ", ".join(spec.name for spec in plan.install)
    )
    return _run_in_builder("tools", runner, compose_stage_command(settings, "tools"))


def stage_image(
    settings: Settings,
    runner: CommandRunner,
    mkosi_args: Sequence[str] = (),
    machine: str | None = None,
) -> StageResult:
    """Assemble the initramfs with mkosi."""
    logger.info("Building initrd with mkosi...")
    try:
        result = run_mkosi(settings, runner, ["build", *mkosi_args], machine=machine)
    except CommandError as e:
        return _failed("image", str(e), e.exit_code)
    if not result.success:
        return _failed("image", f"mkosi exited with status {result.exit_code}", result.exit_code)
    return StageResult(name="image", status=StageStatus.SUCCEEDED, message="done")


def stage_collect(settings: Settings) -> tuple[StageResult, CollectedArtifacts]:
    """Collect outputs. Missing inputs are warnings, never a failure."""
    collected = collect_artifacts(settings)
    message = "complete" if collected.complete else "; ".join(collected.warnings)
    return (
        StageResult(
            name="collect",
            status=StageStatus.SUCCEEDED,
            message=message,
            details={"files": [a.filename for a in collected.checksums]},
        ),
        collected,
    )


def run_pipeline(
    settings: Settings,
    runner: CommandRunner,
    mkosi_args: Sequence[str] = (),
    machine: str | None = None,
) -> PipelineResult:
    """Run the full build.

    Args:
        settings: Build settings.
        runner: Command runner.
        mkosi_args: Extra arguments for ``mkosi build`` (e.g. --force).
        machine: Host processor family (detected if None).

    Returns:
        PipelineResult. Stages after the first failure are not run.

    Raises:
        ConfigurationError: If the settings are unusable; nothing has run.
    """
    validate_build_settings(settings)

    result = PipelineResult()
    steps: list[Callable[[], StageResult]] = [
        lambda: stage_builder(settings, runner),
        lambda: stage_kernel(settings, runner),
        lambda: stage_tools(settings, runner),
        lambda: stage_image(settings, runner, mkosi_args, machine=machine),
    ]
    for step in steps:
        stage = step()
        result.stages.append(stage)
        if not stage.success:
            return result

    stage, result.artifacts = stage_collect(settings)
    result.stages.append(stage)
    logger.info("Build complete!")
    return result


__all__ = [
    "PipelineResult",
    "run_pipeline",
    "stage_builder",
    "stage_collect",
    "stage_image",
    "stage_kernel",
    "stage_tools",
]
