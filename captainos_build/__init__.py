"""CaptainOS build orchestration.

This package drives the CaptainOS image build: builder container preparation,
kernel compilation, tool downloads, and mkosi image assembly.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
