"""Tests for the download and extraction helpers.

These tests use mocked HTTP responses and in-memory tar archives.
"""

import hashlib
import io
import tarfile
from pathlib import Path

import httpx
import pytest
import respx

from captainos_build.fetch import (
    DownloadError,
    ExtractionError,
    compute_file_sha256,
    download_file,
    extract_archive,
    extract_members,
)


def make_tar(path: Path, files: dict[str, bytes], mode: str = "w:gz") -> Path:
    """Write a tar archive holding the given members."""
    with tarfile.open(path, mode) as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return path


class TestComputeFileSha256:
    """Tests for compute_file_sha256 function."""

    def test_matches_hashlib(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"x" * 100_000)
        assert compute_file_sha256(path) == hashlib.sha256(b"x" * 100_000).hexdigest()


class TestDownloadFile:
    """Tests for download_file function."""

    @respx.mock
    def test_successful_download(self, tmp_path):
        content = b"binary"
        respx.get("https://example.com/tool").mock(
            return_value=httpx.Response(200, content=content)
        )

        dest = tmp_path / "sub" / "tool"
        with httpx.Client() as client:
            result = download_file(client, "https://example.com/tool", dest)

        assert dest.read_bytes() == content
        assert result.size_bytes == len(content)
        assert result.checksum == hashlib.sha256(content).hexdigest()

    @respx.mock
    def test_http_error(self, tmp_path):
        respx.get("https://example.com/missing").mock(return_value=httpx.Response(404))

        dest = tmp_path / "missing"
        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, "https://example.com/missing", dest)

        assert exc_info.value.code == "http_error"
        assert not dest.exists()

    @respx.mock
    def test_timeout(self, tmp_path):
        respx.get("https://example.com/slow").mock(
            side_effect=httpx.TimeoutException("timed out")
        )

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, "https://example.com/slow", tmp_path / "slow")

        assert exc_info.value.code == "timeout"


class TestExtractArchive:
    """Tests for extract_archive function."""

    def test_extracts_everything(self, tmp_path):
        archive = make_tar(
            tmp_path / "linux.tar.gz",
            {"linux-6.1/Makefile": b"all:\n", "linux-6.1/README": b"hi"},
        )
        dest = tmp_path / "out"
        extract_archive(archive, dest, remove_archive=True)

        assert (dest / "linux-6.1" / "Makefile").read_bytes() == b"all:\n"
        assert not archive.exists()

    def test_rejects_traversal(self, tmp_path):
        archive = make_tar(tmp_path / "evil.tar", {"../../etc/passwd": b"x"}, mode="w")
        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(archive, tmp_path / "out")
        assert exc_info.value.code == "path_traversal"

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "bad.tar.xz"
        archive.write_bytes(b"not a tarball")
        with pytest.raises(ExtractionError):
            extract_archive(archive, tmp_path / "out")


class TestExtractMembers:
    """Tests for selective extraction."""

    def test_only_requested_members(self, tmp_path):
        archive = make_tar(
            tmp_path / "containerd.tar.gz",
            {
                "bin/containerd": b"c",
                "bin/containerd-shim-runc-v2": b"s",
                "bin/ctr": b"ctr",
                "bin/containerd-stress": b"stress",
            },
        )
        dest = tmp_path / "usr" / "local"

        paths = extract_members(
            archive, dest, ["bin/containerd", "bin/containerd-shim-runc-v2"]
        )

        assert paths == [dest / "bin/containerd", dest / "bin/containerd-shim-runc-v2"]
        assert sorted(p.name for p in (dest / "bin").iterdir()) == [
            "containerd",
            "containerd-shim-runc-v2",
        ]
        assert (dest / "bin" / "containerd").stat().st_mode & 0o777 == 0o755

    def test_dot_slash_prefix(self, tmp_path):
        """Members match with or without a leading ./."""
        archive = make_tar(
            tmp_path / "cni.tgz", {"./bridge": b"b", "./macvlan": b"m"}
        )
        dest = tmp_path / "cni"

        extract_members(archive, dest, ["./bridge"])

        assert [p.name for p in dest.iterdir()] == ["bridge"]

    def test_missing_member(self, tmp_path):
        archive = make_tar(tmp_path / "n.tar.gz", {"nerdctl": b"n"})
        with pytest.raises(ExtractionError) as exc_info:
            extract_members(archive, tmp_path / "out", ["nerdctl", "containerd-rootless.sh"])
        assert exc_info.value.code == "missing_member"
