"""Kernel build module.

This module handles:
- Kernel source download, caching and local-tree snapshots
- Configuration, compilation and module installation
"""

from captainos_build.kernel.build import (
    KernelBuildError,
    KernelOutput,
    build_kernel,
    kernel_already_built,
)

__all__ = ["KernelBuildError", "KernelOutput", "build_kernel", "kernel_already_built"]
