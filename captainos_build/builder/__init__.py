"""Builder environment module.

This module handles:
- Deciding when the builder image needs a rebuild
- Building the image from the Dockerfile
- Composing commands that run inside the builder container
"""

from captainos_build.builder.container import (
    compose_run_command,
    compose_stage_command,
)
from captainos_build.builder.environment import (
    EnvironmentBuildError,
    EnvironmentHandle,
    ensure_environment,
    needs_rebuild,
)

__all__ = [
    "EnvironmentBuildError",
    "EnvironmentHandle",
    "compose_run_command",
    "compose_stage_command",
    "ensure_environment",
    "needs_rebuild",
]
