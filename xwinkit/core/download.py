"""
HTTP helpers for SDK providers that fetch release archives.

Downloads stream to disk in chunks and report progress through a callback.
Connection failures, timeouts and server-side statuses are retried a bounded
number of times with exponential backoff; client errors such as 404 fail at
once since retrying cannot fix them.

Usage:
    from xwinkit.core.download import download_file, fetch_json

    release = fetch_json("https://api.github.com/repos/o/r/releases/latest")
    download_file(release["assets"][0]["browser_download_url"], archive)
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

import requests
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from xwinkit.core.exceptions import OperationCancelled

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
REPORT_INTERVAL = 0.5  # seconds between progress callbacks
RETRY_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

_MB = 1024 * 1024


@dataclass
class DownloadProgress:
    """Bytes received so far, and the expected size (0 when unknown)."""

    received: int
    total: int
    elapsed: float

    @property
    def percentage(self) -> float:
        return self.received * 100.0 / self.total if self.total else 0.0

    @property
    def rate(self) -> float:
        """Average bytes per second."""
        return self.received / self.elapsed if self.elapsed > 0 else 0.0

    def __str__(self) -> str:
        return format_progress(self)


class DownloadError(Exception):
    """A download or API request failed."""


ProgressCallback = Callable[[DownloadProgress], None]


def _is_transient(error: RequestException) -> bool:
    if isinstance(error, (ConnectionError, Timeout)):
        return True
    if isinstance(error, HTTPError) and error.response is not None:
        return error.response.status_code in RETRY_STATUSES
    return False


def download_file(
    url: str,
    destination: Path,
    headers: Optional[Dict[str, str]] = None,
    progress_callback: Optional[ProgressCallback] = None,
    timeout: int = 30,
    max_attempts: int = 3,
    cancel: Optional[threading.Event] = None,
) -> Path:
    """
    Stream ``url`` into ``destination``.

    Args:
        url: URL to download
        destination: File to write; parent directories are created
        headers: Extra request headers
        progress_callback: Called with a DownloadProgress while receiving
        timeout: Connect/read timeout in seconds
        max_attempts: Attempts for transient failures
        cancel: Setting this event stops the download between chunks

    Returns:
        ``destination``

    Raises:
        DownloadError: If the download fails
        OperationCancelled: If ``cancel`` was set
        ValueError: If ``url`` is empty

    Example:
        >>> dest = Path("work/sysroot.tar.xz")
        >>> download_file(url, dest, progress_callback=lambda p: print(p))
    """
    if not url:
        raise ValueError("URL cannot be empty")

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    attempt = 1
    while True:
        try:
            _stream_to_file(
                url, destination, headers or {}, progress_callback, timeout, cancel
            )
            return destination
        except RequestException as e:
            if not _is_transient(e):
                raise DownloadError(f"Download of {url} failed: {e}") from e
            if attempt >= max_attempts:
                raise DownloadError(
                    f"Download of {url} failed after {attempt} attempts: {e}"
                ) from e
            delay = 2 ** (attempt - 1)
            logger.warning(
                f"Download attempt {attempt} failed ({e}); retrying in {delay}s"
            )
            time.sleep(delay)
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"Download of {url}")
            attempt += 1


def _stream_to_file(
    url: str,
    destination: Path,
    headers: Dict[str, str],
    progress_callback: Optional[ProgressCallback],
    timeout: int,
    cancel: Optional[threading.Event] = None,
) -> None:
    logger.info(f"Downloading {url}")
    with requests.get(url, headers=headers, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        total = int(response.headers.get("content-length") or 0)

        received = 0
        start = last_report = time.monotonic()
        with open(destination, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled(f"Download of {url}")
                if not chunk:
                    continue
                f.write(chunk)
                received += len(chunk)

                now = time.monotonic()
                if progress_callback and (
                    now - last_report >= REPORT_INTERVAL or received == total
                ):
                    progress_callback(DownloadProgress(received, total, now - start))
                    last_report = now

    logger.debug(f"Saved {received} bytes to {destination}")


def fetch_json(
    url: str, headers: Optional[Dict[str, str]] = None, timeout: int = 30
) -> dict:
    """
    GET a JSON document.

    Raises:
        DownloadError: If the request fails or the body is not JSON
    """
    logger.debug(f"Requesting {url}")
    try:
        response = requests.get(url, headers=headers or {}, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except (RequestException, ValueError) as e:
        raise DownloadError(f"Request to {url} failed: {e}") from e


def format_progress(progress: DownloadProgress) -> str:
    """
    Progress line for logs, e.g. ``50.0/100.0 MB (50%) at 1.0 MB/s``.
    """
    received = progress.received / _MB
    rate = progress.rate / _MB
    if progress.total:
        return (
            f"{received:.1f}/{progress.total / _MB:.1f} MB "
            f"({progress.percentage:.0f}%) at {rate:.1f} MB/s"
        )
    return f"{received:.1f} MB at {rate:.1f} MB/s"
