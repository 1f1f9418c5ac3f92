"""Image assembly module.

This module handles:
- Running mkosi (with binfmt registration for cross builds)
- Collecting the initramfs and kernel into the output directory
- Cleaning build outputs
"""

from captainos_build.assemble.artifacts import CollectedArtifacts, collect_artifacts
from captainos_build.assemble.mkosi import ensure_binfmt, run_mkosi

__all__ = ["CollectedArtifacts", "collect_artifacts", "ensure_binfmt", "run_mkosi"]
