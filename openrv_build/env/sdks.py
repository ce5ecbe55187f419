"""Optional vendor SDK download.

This module handles:
- Streaming download of the Blackmagic DeckLink and NDI SDKs
- Extraction of the NDI SDK archive (zip or tar)
- The CMake arguments and environment that point the upstream build at them

Both SDKs are skipped unless their URL is configured.
"""

from __future__ import annotations

import logging
import tarfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import httpx

from openrv_build.config import Settings

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024

BMD_ZIP_NAME = "BMD_DeckLink_SDK.zip"
NDI_ARCHIVE_NAME = "NDI_SDK.archive"
NDI_EXTRACT_DIRNAME = "ndi_sdk"


class SdkError(Exception):
    """Raised when an SDK cannot be downloaded or extracted."""

    def __init__(self, message: str, code: str = "sdk_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class SdkSetup:
    """CMake arguments and environment for the downloaded SDKs."""

    cmake_args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    def cfg_extra(self, preset: str = "") -> str:
        """Join ``preset`` and the SDK arguments into an RV_CFG_EXTRA value."""
        return " ".join(part for part in [preset.strip(), *self.cmake_args] if part)


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = 3600,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> int:
    """Stream ``url`` to ``dest_path``.

    Returns:
        Number of bytes written.

    Raises:
        SdkError: If the download fails or the file cannot be written; a
            partial file is removed.
    """
    logger.info("Downloading %s to %s", url, dest_path)

    try:
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            total_bytes = 0
            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)
    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise SdkError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise SdkError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise SdkError(
            f"Network error downloading {url}: {e}", code="network_error"
        ) from e
    except OSError as e:
        if dest_path.is_file():
            dest_path.unlink()
        raise SdkError(f"Cannot write {dest_path}: {e}", code="write_error") from e

    logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
    return total_bytes


def _check_member_name(name: str) -> None:
    member_path = PurePosixPath(name.replace("\\", "/"))
    if member_path.is_absolute() or ".." in member_path.parts:
        raise SdkError(
            f"Refusing to extract {name}: path traversal detected",
            code="extraction_error",
        )


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a zip or tar archive, detecting the type from its content.

    Raises:
        SdkError: If the archive is unreadable, of an unknown type, or has
            members outside ``dest_dir``.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        if zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path) as zf:
                for name in zf.namelist():
                    _check_member_name(name)
                zf.extractall(dest_dir)
        elif tarfile.is_tarfile(archive_path):
            with tarfile.open(archive_path) as tar:
                for member in tar.getmembers():
                    _check_member_name(member.name)
                tar.extractall(dest_dir, filter="data")
        else:
            raise SdkError(
                f"Unsupported archive format: {archive_path.name}",
                code="extraction_error",
            )
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        raise SdkError(
            f"Failed to extract {archive_path}: {e}", code="extraction_error"
        ) from e

    return dest_dir


def find_ndi_root(extract_dir: Path) -> Path:
    """Return the top ``*NDI*`` directory, or ``extract_dir`` itself."""
    for candidate in sorted(extract_dir.iterdir()):
        if candidate.is_dir() and "NDI" in candidate.name:
            return candidate
    return extract_dir


def prepare_bmd_sdk(client: httpx.Client, url: str, workdir: Path, timeout: float) -> SdkSetup:
    zip_path = workdir / BMD_ZIP_NAME
    download_file(client, url, zip_path, timeout=timeout)
    return SdkSetup(cmake_args=[f"-DRV_DEPS_BMD_DECKLINK_SDK_ZIP_PATH={zip_path}"])


def prepare_ndi_sdk(client: httpx.Client, url: str, workdir: Path, timeout: float) -> SdkSetup:
    archive_path = workdir / NDI_ARCHIVE_NAME
    download_file(client, url, archive_path, timeout=timeout)
    extract_dir = extract_archive(archive_path, workdir / NDI_EXTRACT_DIRNAME)
    root = find_ndi_root(extract_dir)
    logger.info("NDI SDK root: %s", root)
    return SdkSetup(
        cmake_args=[f"-DNDI_SDK_ROOT={root}"],
        env={"NDI_SDK_ROOT": str(root)},
    )


def prepare_sdks(
    settings: Settings,
    workdir: Path,
    client: httpx.Client | None = None,
) -> SdkSetup:
    """Download the configured optional SDKs.

    Args:
        settings: Settings holding the SDK URLs and download timeout.
        workdir: Directory receiving the downloads.
        client: HTTPX client (a new one is created and closed if None).

    Returns:
        Combined SdkSetup; empty when no SDK URL is configured.

    Raises:
        SdkError: If a configured SDK cannot be prepared.
    """
    setup = SdkSetup()
    if not settings.bmd_decklink_sdk_zip_url and not settings.ndi_sdk_url:
        logger.info("No optional SDKs configured")
        return setup

    own_client = client is None
    if client is None:
        client = httpx.Client()
    try:
        parts = []
        if settings.bmd_decklink_sdk_zip_url:
            parts.append(
                prepare_bmd_sdk(
                    client,
                    settings.bmd_decklink_sdk_zip_url,
                    workdir,
                    settings.download_timeout,
                )
            )
        if settings.ndi_sdk_url:
            parts.append(
                prepare_ndi_sdk(
                    client, settings.ndi_sdk_url, workdir, settings.download_timeout
                )
            )
    finally:
        if own_client:
            client.close()

    for part in parts:
        setup.cmake_args.extend(part.cmake_args)
        setup.env.update(part.env)
    return setup


__all__ = [
    "SdkError",
    "SdkSetup",
    "download_file",
    "extract_archive",
    "find_ndi_root",
    "prepare_sdks",
]
