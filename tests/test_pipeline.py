"""Tests for the pipeline driver.

External commands are simulated; the fake in-container stages write the
files the real ones would.
"""

from pathlib import Path

import pytest

from captainos_build.config import ConfigurationError, apply_overrides
from captainos_build.pipeline import run_pipeline
from captainos_build.tools.catalog import DEFAULT_TOOLS
from captainos_build.types import StageStatus


def simulated_build(settings, fail: str | None = None, exit_code: int = 2):
    """Handler emulating the builder, in-container stages and mkosi."""

    def handler(argv: list[str], cwd: Path | None):
        if argv[1:3] == ["image", "inspect"]:
            return 1
        if argv[1] == "build":
            return exit_code if fail == "builder" else 0
        if argv[-1] == "kernel":
            if fail == "kernel":
                return exit_code
            boot = settings.kernel_output_dir / "boot"
            boot.mkdir(parents=True)
            (boot / "vmlinuz-6.12.69").write_bytes(b"kernel")
            (settings.kernel_output_dir / "usr/lib/modules/6.12.69").mkdir(parents=True)
            return 0
        if argv[-1] == "tools":
            if fail == "tools":
                return exit_code
            for spec in DEFAULT_TOOLS:
                probe = spec.probe_path(settings.kernel_output_dir)
                probe.parent.mkdir(parents=True, exist_ok=True)
                probe.write_bytes(b"bin")
                probe.chmod(0o755)
            return 0
        if any(a.startswith("--architecture=") for a in argv):
            if fail == "image":
                return exit_code
            settings.mkosi_output_dir.mkdir(parents=True, exist_ok=True)
            (settings.mkosi_output_dir / "image.cpio.zst").write_bytes(b"initramfs")
            return 0
        return 0

    return handler


class TestRunPipeline:
    """Tests for run_pipeline function."""

    def test_end_to_end(self, settings, fake_runner):
        """A full amd64 run produces exactly the two output files."""
        fake_runner.handler = simulated_build(settings)

        result = run_pipeline(settings, fake_runner, machine="x86_64")

        assert result.success
        assert result.exit_code == 0
        assert [s.name for s in result.stages] == [
            "builder",
            "kernel",
            "tools",
            "image",
            "collect",
        ]
        assert sorted(p.name for p in settings.out_dir.iterdir()) == [
            "initramfs-amd64.cpio.zst",
            "vmlinuz-amd64",
        ]
        assert len(result.artifacts.checksums) == 2

    @pytest.mark.parametrize("stage", ["builder", "kernel", "tools", "image"])
    def test_fail_fast(self, settings, fake_runner, stage):
        """A failing command halts the pipeline with its exit status."""
        fake_runner.handler = simulated_build(settings, fail=stage, exit_code=7)

        result = run_pipeline(settings, fake_runner, machine="x86_64")

        assert not result.success
        assert result.exit_code == 7
        assert result.stages[-1].name == stage
        assert result.stages[-1].status is StageStatus.FAILED
        assert result.artifacts is None
        assert not settings.out_dir.exists()

    def test_second_run_skips_kernel_and_tools(self, settings, fake_runner):
        fake_runner.handler = simulated_build(settings)
        run_pipeline(settings, fake_runner, machine="x86_64")
        fake_runner.calls.clear()

        result = run_pipeline(settings, fake_runner, machine="x86_64")

        statuses = {s.name: s.status for s in result.stages}
        assert statuses["kernel"] is StageStatus.SKIPPED
        assert statuses["tools"] is StageStatus.SKIPPED
        assert not any(c[-1] in ("kernel", "tools") for c in fake_runner.calls)

    def test_force_kernel_runs_stage(self, settings, fake_runner):
        (settings.kernel_output_dir / "usr/lib/modules/old").mkdir(parents=True)
        fake_runner.handler = simulated_build(settings)
        forced = apply_overrides(settings, force_kernel=True)

        result = run_pipeline(forced, fake_runner, machine="x86_64")

        assert result.stages[1].status is StageStatus.SUCCEEDED
        kernel_runs = [c for c in fake_runner.calls if c[-1] == "kernel"]
        assert len(kernel_runs) == 1
        assert "FORCE_KERNEL=1" in kernel_runs[0]

    def test_mkosi_args_passed(self, settings, fake_runner):
        fake_runner.handler = simulated_build(settings)

        run_pipeline(settings, fake_runner, ["--force"], machine="x86_64")

        mkosi = next(c for c in fake_runner.calls if "--architecture=x86-64" in c)
        assert mkosi[-2:] == ["build", "--force"]

    def test_cross_build_registers_binfmt(self, settings, fake_runner):
        arm = apply_overrides(settings, arch="arm64")
        fake_runner.handler = simulated_build(arm)

        result = run_pipeline(arm, fake_runner, machine="x86_64")

        assert result.success
        binfmt = [i for i, c in enumerate(fake_runner.calls) if "tonistiigi/binfmt" in c]
        mkosi = [i for i, c in enumerate(fake_runner.calls) if "--architecture=arm64" in c]
        assert binfmt and binfmt[0] < mkosi[0]

    def test_configuration_error_runs_nothing(self, settings, fake_runner, tmp_path):
        bad = apply_overrides(settings, kernel_src=tmp_path / "missing")
        with pytest.raises(ConfigurationError):
            run_pipeline(bad, fake_runner)
        assert fake_runner.calls == []

    def test_missing_outputs_still_complete(self, settings, fake_runner):
        """Collection warnings do not fail the run."""

        def handler(argv, cwd):
            if argv[1:3] == ["image", "inspect"]:
                return 1
            return 0

        fake_runner.handler = handler
        result = run_pipeline(settings, fake_runner, machine="x86_64")

        assert result.success
        assert len(result.artifacts.warnings) == 2
