"""
macOS SDK archive retrieval.

The SDK archive is fetched on the host, not inside the build environment,
so that network failures can be retried without invalidating any build
step: the archive enters the graph as an external artifact fingerprinted
by content.

Downloads go to ``<cache_dir>/sdks/`` through a ``.part`` file that is
renamed on success, under a cross-process download lock, and are retried
with exponential backoff on connection errors, timeouts and HTTP errors.
"""

import hashlib
import logging
import time
from pathlib import Path
from typing import Optional

import requests
from requests.exceptions import RequestException

from crosskit.core.exceptions import ConfigurationError, DownloadError
from crosskit.core.filesystem import compute_file_hash
from crosskit.core.locking import LockManager, get_global_cache_dir
from crosskit.env import Artifact, host_artifact

logger = logging.getLogger(__name__)

SDK_RELEASES_URL = "https://github.com/joseluisq/macosx-sdks/releases/download"


def sdk_archive_name(version: str) -> str:
    return f"MacOSX{version}.sdk.tar.xz"


def sdk_archive_url(version: str, base_url: str = SDK_RELEASES_URL) -> str:
    """
    URL of the SDK archive for a version.

    Example:
        >>> sdk_archive_url("15.0")
        'https://github.com/joseluisq/macosx-sdks/releases/download/15.0/MacOSX15.0.sdk.tar.xz'
    """
    return f"{base_url.rstrip('/')}/{version}/{sdk_archive_name(version)}"


class SdkFetcher:
    """
    Locates or downloads the macOS SDK archive.

    Example:
        >>> fetcher = SdkFetcher(cache_dir=Path("~/.crosskit").expanduser())
        >>> archive = fetcher.fetch("15.0", download=True)
        >>> archive.host_path.name
        'MacOSX15.0.sdk.tar.xz'
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        sdk_dir: Path = Path("sdks"),
        base_url: str = SDK_RELEASES_URL,
        max_retries: int = 3,
        timeout: int = 60,
        lock_manager: Optional[LockManager] = None,
    ):
        """
        Initialize SDK fetcher.

        Args:
            cache_dir: Download cache root (default: global cache directory)
            sdk_dir: Directory holding local archives when not downloading
            base_url: Release download base URL
            max_retries: Download attempts before giving up
            timeout: Per-request timeout in seconds
            lock_manager: Lock manager for the download lock
        """
        self.cache_dir = Path(cache_dir) if cache_dir else get_global_cache_dir()
        self.sdk_dir = Path(sdk_dir)
        self.base_url = base_url
        self.max_retries = max_retries
        self.timeout = timeout
        self.lock_manager = lock_manager or LockManager(self.cache_dir / "lock")

    def fetch(
        self,
        version: str,
        download: bool = True,
        expected_sha256: Optional[str] = None,
    ) -> Artifact:
        """
        Get the SDK archive as a host artifact.

        Args:
            version: SDK version (e.g., '15.0')
            download: Download the archive; otherwise use ``<sdk_dir>/MacOSX<v>.sdk.tar.xz``
            expected_sha256: Optional checksum the archive must match

        Returns:
            Host artifact for the archive

        Raises:
            ConfigurationError: If the local archive does not exist
            DownloadError: If the download fails after all retries
            LockTimeout: If another process keeps the download lock
        """
        if download:
            path = self.download(version, expected_sha256)
        else:
            path = self.local(version)
            if expected_sha256 and compute_file_hash(path) != expected_sha256.lower():
                raise DownloadError(f"Checksum mismatch for {path}")
        return host_artifact("sdk-archive", path)

    def local(self, version: str) -> Path:
        """Path of a local SDK archive."""
        path = self.sdk_dir / sdk_archive_name(version)
        if not path.is_file():
            raise ConfigurationError(
                f"SDK archive not found: {path}. "
                f"Place {sdk_archive_name(version)} in {self.sdk_dir} "
                "or enable download_sdk."
            )
        logger.info(f"Using local SDK archive {path}")
        return path

    def download(self, version: str, expected_sha256: Optional[str] = None) -> Path:
        """
        Download the archive into the cache (no-op if already present).

        Returns:
            Path to the cached archive
        """
        name = sdk_archive_name(version)
        destination = self.cache_dir / "sdks" / name
        destination.parent.mkdir(parents=True, exist_ok=True)

        with self.lock_manager.download_lock(name):
            if destination.is_file():
                if (
                    expected_sha256 is None
                    or compute_file_hash(destination) == expected_sha256.lower()
                ):
                    logger.info(f"SDK archive already cached: {destination}")
                    return destination
                logger.warning(f"Checksum mismatch for cached {name}, re-downloading")
                destination.unlink()

            url = sdk_archive_url(version, self.base_url)
            for attempt in range(self.max_retries):
                try:
                    self._download(url, destination, expected_sha256)
                    return destination
                except RequestException as e:
                    if attempt == self.max_retries - 1:
                        raise DownloadError(
                            f"Download of {url} failed after {self.max_retries} attempts: {e}"
                        ) from e

                    backoff_seconds = 2**attempt
                    logger.warning(
                        f"Download attempt {attempt + 1} failed: {e}. "
                        f"Retrying in {backoff_seconds}s..."
                    )
                    time.sleep(backoff_seconds)

        raise DownloadError(f"Download of {url} failed")

    def _download(self, url: str, destination: Path, expected_sha256: Optional[str]):
        logger.info(f"Downloading {url}")
        partial = destination.with_name(destination.name + ".part")
        hasher = hashlib.sha256()

        response = requests.get(
            url, stream=True, timeout=self.timeout, allow_redirects=True
        )
        try:
            response.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        f.write(chunk)
                        hasher.update(chunk)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        finally:
            response.close()

        if expected_sha256 and hasher.hexdigest() != expected_sha256.lower():
            partial.unlink(missing_ok=True)
            raise DownloadError(
                f"Checksum mismatch for {destination.name}: "
                f"expected {expected_sha256}, got {hasher.hexdigest()}"
            )

        partial.replace(destination)
        logger.info(f"✓ Downloaded {destination.name}")


__all__ = [
    "SDK_RELEASES_URL",
    "sdk_archive_name",
    "sdk_archive_url",
    "SdkFetcher",
]
