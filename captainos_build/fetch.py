"""Download and extraction helpers.

This module handles:
- Streaming downloads with httpx
- Full archive extraction (kernel sources)
- Selective extraction of named archive members (tool binaries)
"""

from __future__ import annotations

import hashlib
import logging
import tarfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import httpx

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads and hashing (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


class DownloadError(Exception):
    """Raised when a download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        """Initialize DownloadError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        """Initialize ExtractionError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


@dataclass
class DownloadResult:
    """Result of a download."""

    path: Path
    checksum: str
    size_bytes: int


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, checksum, and size.

    Raises:
        DownloadError: If download fails.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()

            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Timeout downloading {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e

    checksum = sha256.hexdigest()
    logger.debug(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        checksum[:16] + "...",
    )
    return DownloadResult(path=dest_path, checksum=checksum, size_bytes=total_bytes)


def _check_member_path(name: str) -> None:
    member_path = PurePosixPath(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ExtractionError(
            f"Refusing to extract {name}: path traversal detected",
            code="path_traversal",
        )


def _normalize_member_name(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return name.rstrip("/")


def extract_archive(
    archive_path: Path,
    dest_dir: Path,
    remove_archive: bool = False,
) -> None:
    """Extract a whole tar archive.

    Args:
        archive_path: Path to the archive file (compression auto-detected).
        dest_dir: Destination directory for extraction.
        remove_archive: Whether to remove the archive after extraction.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, "r:*") as tar:
            members = tar.getmembers()
            if not members:
                raise ExtractionError(
                    f"Archive {archive_path} is empty",
                    code="empty_archive",
                )
            for member in members:
                _check_member_path(member.name)
            tar.extractall(dest_dir, filter="data")
    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    if remove_archive:
        archive_path.unlink()
        logger.debug("Removed archive %s", archive_path)


def extract_members(
    archive_path: Path,
    dest_dir: Path,
    members: Iterable[str],
    mode: int = 0o755,
) -> list[Path]:
    """Extract only the named members of a tar archive.

    Member names match with or without a leading ``./``. Everything else in
    the archive is skipped.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory.
        members: Member names to extract.
        mode: Permission bits applied to each extracted file.

    Returns:
        Paths of the extracted files.

    Raises:
        ExtractionError: If a requested member is missing or extraction fails.
    """
    wanted = {_normalize_member_name(m): m for m in members}
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, "r:*") as tar:
            selected: dict[str, tarfile.TarInfo] = {}
            for member in tar.getmembers():
                name = _normalize_member_name(member.name)
                if name in wanted and member.isfile():
                    _check_member_path(member.name)
                    selected[name] = member

            missing = sorted(set(wanted) - set(selected))
            if missing:
                raise ExtractionError(
                    f"Missing from {archive_path.name}: {', '.join(missing)}",
                    code="missing_member",
                )

            tar.extractall(dest_dir, members=list(selected.values()), filter="data")
    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    extracted = []
    for name in sorted(selected):
        path = dest_dir / name
        path.chmod(mode)
        extracted.append(path)
    return extracted


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DOWNLOAD_TIMEOUT",
    "DownloadError",
    "DownloadResult",
    "ExtractionError",
    "compute_file_sha256",
    "download_file",
    "extract_archive",
    "extract_members",
]
