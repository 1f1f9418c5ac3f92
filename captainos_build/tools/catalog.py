"""Desired tool set for the image.

Each entry pins a version, the release asset to download, the archive
members to keep, and files from older layouts to remove when it is
(re)installed. Paths are relative to the staging root
(``mkosi.output/kernel``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from captainos_build.types import Architecture


@dataclass(frozen=True)
class ToolSpec:
    """A pinned binary artifact.

    Attributes:
        name: Tool name.
        version: Pinned upstream version.
        url_template: Download URL with {version} and {arch} placeholders.
        install_dir: Extraction/installation directory.
        members: Archive members to extract; empty for a raw binary.
        binary_name: File name of a raw binary download.
        probe: Executable whose presence marks the tool as installed.
        obsolete: Files removed whenever the tool is installed.
        replace_dir: Wipe install_dir before installing.
    """

    name: str
    version: str
    url_template: str
    install_dir: str
    probe: str
    members: tuple[str, ...] = ()
    binary_name: str | None = None
    obsolete: tuple[str, ...] = field(default_factory=tuple)
    replace_dir: bool = False

    @property
    def is_archive(self) -> bool:
        return bool(self.members)

    def url(self, arch: Architecture) -> str:
        return self.url_template.format(version=self.version, arch=arch.download_arch)

    def probe_path(self, staging_root: Path) -> Path:
        return staging_root / self.probe

    def expected_files(self, staging_root: Path) -> list[Path]:
        """Files this tool places in the staging tree."""
        base = staging_root / self.install_dir
        if self.is_archive:
            return [base / m.removeprefix("./") for m in self.members]
        return [base / (self.binary_name or self.name)]


CONTAINERD = ToolSpec(
    name="containerd",
    version="2.2.1",
    url_template=(
        "https://github.com/containerd/containerd/releases/download/"
        "v{version}/containerd-{version}-linux-{arch}.tar.gz"
    ),
    install_dir="usr/local",
    probe="usr/local/bin/containerd",
    members=("bin/containerd", "bin/containerd-shim-runc-v2"),
    obsolete=("usr/local/bin/ctr", "usr/local/bin/containerd-stress"),
)

RUNC = ToolSpec(
    name="runc",
    version="1.4.0",
    url_template=(
        "https://github.com/opencontainers/runc/releases/download/"
        "v{version}/runc.{arch}"
    ),
    install_dir="usr/local/bin",
    probe="usr/local/bin/runc",
    binary_name="runc",
)

NERDCTL = ToolSpec(
    name="nerdctl",
    version="2.2.1",
    url_template=(
        "https://github.com/containerd/nerdctl/releases/download/"
        "v{version}/nerdctl-{version}-linux-{arch}.tar.gz"
    ),
    install_dir="usr/local/bin",
    probe="usr/local/bin/nerdctl",
    members=("nerdctl",),
    obsolete=(
        "usr/local/bin/dockerd",
        "usr/local/bin/docker",
        "usr/local/bin/docker-init",
        "usr/local/bin/docker-proxy",
    ),
)

CNI_PLUGINS = ToolSpec(
    name="cni-plugins",
    version="1.6.0",
    url_template=(
        "https://github.com/containernetworking/plugins/releases/download/"
        "v{version}/cni-plugins-linux-{arch}-v{version}.tgz"
    ),
    install_dir="opt/cni/bin",
    probe="opt/cni/bin/bridge",
    # Core plugins for bridge networking
    members=(
        "./bridge",
        "./host-local",
        "./loopback",
        "./portmap",
        "./firewall",
        "./tuning",
    ),
    replace_dir=True,
)

DEFAULT_TOOLS: tuple[ToolSpec, ...] = (CONTAINERD, RUNC, NERDCTL, CNI_PLUGINS)


__all__ = [
    "CNI_PLUGINS",
    "CONTAINERD",
    "DEFAULT_TOOLS",
    "NERDCTL",
    "RUNC",
    "ToolSpec",
]
