"""Tests for shared types."""

import pytest

from captainos_build.types import (
    Architecture,
    StageResult,
    StageStatus,
    UnsupportedArchitectureError,
    resolve_architecture,
)


class TestResolveArchitecture:
    """Tests for resolve_architecture function."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("amd64", Architecture.AMD64),
            ("x86_64", Architecture.AMD64),
            ("AMD64", Architecture.AMD64),
            ("arm64", Architecture.ARM64),
            ("aarch64", Architecture.ARM64),
            (" AArch64 ", Architecture.ARM64),
        ],
    )
    def test_aliases(self, value, expected):
        """Every supported spelling maps to one canonical value."""
        assert resolve_architecture(value) is expected

    def test_passes_enum_through(self):
        assert resolve_architecture(Architecture.ARM64) is Architecture.ARM64

    @pytest.mark.parametrize("value", ["riscv64", "i386", "", "arm"])
    def test_unsupported(self, value):
        """Anything else is rejected."""
        with pytest.raises(UnsupportedArchitectureError) as exc_info:
            resolve_architecture(value)
        assert exc_info.value.code == "unsupported_arch"


class TestArchitecture:
    """Tests for per-architecture toolchain mapping."""

    def test_amd64_mapping(self):
        arch = Architecture.AMD64
        assert arch.kernel_arch == "x86_64"
        assert arch.cross_compile == ""
        assert arch.kernel_image_target == "bzImage"
        assert arch.kernel_image_path == "arch/x86/boot/bzImage"
        assert arch.mkosi_arch == "x86-64"

    def test_arm64_mapping(self):
        arch = Architecture.ARM64
        assert arch.kernel_arch == "arm64"
        assert arch.cross_compile == "aarch64-linux-gnu-"
        assert arch.kernel_image_target == "Image"
        assert arch.kernel_image_path == "arch/arm64/boot/Image"
        assert arch.mkosi_arch == "arm64"


class TestStageResult:
    """Tests for StageResult."""

    def test_skipped_counts_as_success(self):
        result = StageResult(name="kernel", status=StageStatus.SKIPPED, message="")
        assert result.success is True

    def test_failed(self):
        result = StageResult(
            name="kernel", status=StageStatus.FAILED, message="boom", exit_code=2
        )
        assert result.success is False
