"""Tests for mkosi invocation, artifact collection and cleanup."""

import hashlib

import pytest

from captainos_build.assemble.artifacts import (
    checksum_directory,
    collect_artifacts,
    format_size,
)
from captainos_build.assemble.clean import clean_workspace, compose_clean_command
from captainos_build.assemble.mkosi import (
    BINFMT_IMAGE,
    compose_mkosi_command,
    ensure_binfmt,
    needs_foreign_execution,
    run_mkosi,
)
from captainos_build.config import apply_overrides
from captainos_build.runner import CommandError
from captainos_build.types import Architecture


class TestNeedsForeignExecution:
    """Tests for cross-architecture detection."""

    @pytest.mark.parametrize(
        ("machine", "target", "expected"),
        [
            ("x86_64", Architecture.AMD64, False),
            ("x86_64", Architecture.ARM64, True),
            ("aarch64", Architecture.ARM64, False),
            ("arm64", Architecture.AMD64, True),
            ("riscv64", Architecture.AMD64, False),
        ],
    )
    def test_detection(self, machine, target, expected):
        assert needs_foreign_execution(machine, target) is expected


class TestEnsureBinfmt:
    """Tests for binfmt registration."""

    def test_native_skips(self, settings, fake_runner):
        assert ensure_binfmt(settings, fake_runner, machine="x86_64") is False
        assert fake_runner.calls == []

    def test_cross_registers(self, settings, fake_runner):
        arm = apply_overrides(settings, arch="arm64")
        assert ensure_binfmt(arm, fake_runner, machine="x86_64") is True
        assert fake_runner.calls == [
            ["docker", "run", "--rm", "--privileged", BINFMT_IMAGE, "--install", "all"]
        ]

    def test_failure_is_warning(self, settings, fake_runner, caplog):
        arm = apply_overrides(settings, arch="arm64")
        fake_runner.handler = lambda argv, cwd: 1

        assert ensure_binfmt(arm, fake_runner, machine="x86_64") is True
        assert "Could not auto-register" in caplog.text
        assert "--install all" in caplog.text


class TestRunMkosi:
    """Tests for the mkosi invocation."""

    def test_command(self, settings):
        cmd = compose_mkosi_command(settings, ["build", "--force"])
        assert cmd[-4:] == ["captainos-builder", "--architecture=x86-64", "build", "--force"]

    def test_binfmt_before_mkosi_for_cross(self, settings, fake_runner):
        arm = apply_overrides(settings, arch="aarch64")
        run_mkosi(arm, fake_runner, ["build"], machine="x86_64")

        assert BINFMT_IMAGE in fake_runner.calls[0]
        assert fake_runner.calls[1][-2:] == ["--architecture=arm64", "build"]

    def test_native_runs_mkosi_only(self, settings, fake_runner):
        result = run_mkosi(settings, fake_runner, ["summary"], machine="x86_64")
        assert result.success
        assert len(fake_runner.calls) == 1


def stage_outputs(settings, initramfs=True, kernel=True):
    settings.mkosi_output_dir.mkdir(parents=True, exist_ok=True)
    if initramfs:
        (settings.mkosi_output_dir / "image.cpio.zst").write_bytes(b"initramfs")
    if kernel:
        boot = settings.kernel_output_dir / "boot"
        boot.mkdir(parents=True)
        (boot / "vmlinuz-6.12.69").write_bytes(b"kernel")


class TestCollectArtifacts:
    """Tests for collect_artifacts function."""

    def test_collects_both(self, settings):
        stage_outputs(settings)

        collected = collect_artifacts(settings)

        assert collected.complete
        assert collected.warnings == []
        assert sorted(p.name for p in settings.out_dir.iterdir()) == [
            "initramfs-amd64.cpio.zst",
            "vmlinuz-amd64",
        ]
        sums = {a.filename: a.sha256 for a in collected.checksums}
        assert sums["vmlinuz-amd64"] == hashlib.sha256(b"kernel").hexdigest()

    def test_missing_inputs_warn(self, settings):
        collected = collect_artifacts(settings)

        assert not collected.complete
        assert len(collected.warnings) == 2
        assert collected.checksums == []

    def test_other_arch_outputs_kept(self, settings):
        stage_outputs(settings)
        settings.out_dir.mkdir()
        (settings.out_dir / "vmlinuz-arm64").write_bytes(b"arm")

        collected = collect_artifacts(settings)

        assert [a.filename for a in collected.checksums] == [
            "initramfs-amd64.cpio.zst",
            "vmlinuz-amd64",
            "vmlinuz-arm64",
        ]

    def test_checksum_directory_kinds(self, tmp_path):
        (tmp_path / "initramfs-arm64.cpio.zst").write_bytes(b"i")
        (tmp_path / "notes.txt").write_bytes(b"n")
        (tmp_path / "sub").mkdir()

        kinds = {a.filename: a.kind for a in checksum_directory(tmp_path)}

        assert kinds == {"initramfs-arm64.cpio.zst": "initramfs", "notes.txt": "other"}

    @pytest.mark.parametrize(
        ("size", "expected"),
        [(512, "512B"), (2048, "2.0K"), (5 * 1024 * 1024, "5.0M")],
    )
    def test_format_size(self, size, expected):
        assert format_size(size) == expected


class TestClean:
    """Tests for workspace cleanup."""

    def test_compose_command(self, settings):
        cmd = compose_clean_command(settings)
        assert cmd[-1] == "rm -rf /work/mkosi.output/image* /work/mkosi.cache"
        assert "debian:trixie" in cmd

    def test_compose_command_all(self, settings):
        cmd = compose_clean_command(settings, remove_kernel=True)
        assert cmd[-1].endswith("/work/mkosi.output/kernel")

    def test_removes_outputs(self, settings, fake_runner):
        stage_outputs(settings)
        settings.out_dir.mkdir()

        removed = clean_workspace(settings, fake_runner)

        assert len(fake_runner.calls) == 1
        assert not settings.out_dir.exists()
        assert len(removed) == 2

    def test_nothing_to_clean(self, settings, fake_runner):
        assert clean_workspace(settings, fake_runner) == []
        assert fake_runner.calls == []

    def test_container_failure(self, settings, fake_runner):
        stage_outputs(settings)
        fake_runner.handler = lambda argv, cwd: 125
        with pytest.raises(CommandError):
            clean_workspace(settings, fake_runner)
