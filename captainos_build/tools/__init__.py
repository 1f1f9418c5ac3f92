"""Tool download module.

This module handles:
- The pinned set of runtime binaries shipped in the image
- Reconciling the staging tree against that set
"""

from captainos_build.tools.catalog import DEFAULT_TOOLS, ToolSpec
from captainos_build.tools.reconcile import ToolPlan, ToolSet, fetch_tools, plan_tools

__all__ = ["DEFAULT_TOOLS", "ToolPlan", "ToolSet", "ToolSpec", "fetch_tools", "plan_tools"]
