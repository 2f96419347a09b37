"""
SDK provider implementations.

A provider knows how to place an SDK/CRT payload into an empty staging
directory. It is the only component that talks to the outside world for the
payload; locking, staging and promotion are handled by `SdkCache`.

Providers:
- XwinSplatProvider: runs the ``xwin`` executable (``xwin ... splat``)
  producing the ``crt/`` + ``sdk/`` layout used by clang-cl
- MsvcSysrootProvider: downloads the ``windows-msvc-sysroot`` GitHub release
  archive producing the ``include/`` + ``lib/<triple>/`` layout used by clang
"""

import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from xwinkit.core.download import download_file, fetch_json
from xwinkit.core.filesystem import extract_archive
from xwinkit.core.platform import HostConventions, detect_host
from xwinkit.core.process import stream_collaborator
from xwinkit.cross.targets import TargetSpec

logger = logging.getLogger(__name__)

MSVC_SYSROOT_REPOSITORY = "trcrsired/windows-msvc-sysroot"
MSVC_SYSROOT_ASSET_NAME = "windows-msvc-sysroot.tar.xz"
GITHUB_API_VERSION = "2022-11-28"


class ProviderError(Exception):
    """The provider could not produce the payload."""

    pass


class UpstreamVersionNotFound(ProviderError):
    """A pinned version does not exist upstream."""

    def __init__(self, version: str, message: str = ""):
        self.version = version
        super().__init__(message or f"version {version} not found upstream")


class SdkProvider(ABC):
    """
    Abstract base class for SDK payload providers.

    Attributes:
        name: Provider name; also the cache subdirectory holding its entries
    """

    name: str = ""

    @abstractmethod
    def key_fields(self, spec: TargetSpec) -> Dict[str, object]:
        """Fields of ``spec`` that change what this provider produces."""
        pass

    def debug_toggles(self, spec: TargetSpec) -> Tuple[bool, bool]:
        """(debug libs, debug symbols) the payload must contain."""
        return (False, False)

    @abstractmethod
    def populate(self, spec: TargetSpec, staging: Path, work_dir: Path) -> None:
        """
        Produce the payload for ``spec`` inside ``staging``.

        Args:
            spec: Target to prepare
            staging: Empty directory that becomes the cache entry
            work_dir: Scratch directory for downloads, removed afterwards

        Raises:
            ProviderError: If the payload cannot be produced
            UpstreamVersionNotFound: If a pinned version does not exist
            SpawnError: If a required executable cannot be started
        """
        pass

    def describe(self, spec: TargetSpec) -> str:
        """Human readable description for progress messages."""
        return self.name


class XwinSplatProvider(SdkProvider):
    """
    Prepare the MSVC CRT and Windows SDK with the ``xwin`` executable.

    The payload is splatted into the layout clang-cl expects: ``crt/include``,
    ``crt/lib/<arch>``, ``sdk/include/{ucrt,um,shared,winrt}`` and
    ``sdk/lib/{um,ucrt}/<arch>``; ATL lands in ``crt/atlmfc``.
    """

    name = "xwin"

    def __init__(
        self,
        executable: str = "xwin",
        host: Optional[HostConventions] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.executable = executable
        self.host = host or detect_host()
        self.cancel = cancel

    def key_fields(self, spec: TargetSpec) -> Dict[str, object]:
        fields = spec.cache_fields()
        fields.pop("cache_dir")
        return fields

    def debug_toggles(self, spec: TargetSpec) -> Tuple[bool, bool]:
        return (spec.include_debug_libs, spec.include_debug_symbols)

    def build_command(
        self,
        spec: TargetSpec,
        staging: Path,
        work_dir: Path,
        debug_libs: bool,
        debug_symbols: bool,
    ) -> list:
        """Build the ``xwin`` command line for one payload."""
        cmd = [
            self.executable,
            "--accept-license",
            "--cache-dir",
            str(work_dir),
            "--manifest-version",
            spec.manifest_version,
            "--arch",
            ",".join(a.xwin_name for a in spec.payload_architectures),
            "--variant",
            spec.variant.value,
        ]
        if spec.sdk_version:
            cmd += ["--sdk-version", spec.sdk_version]
        if spec.crt_version:
            cmd += ["--crt-version", spec.crt_version]
        if spec.include_atl:
            cmd.append("--include-atl")

        cmd += ["splat", "--output", str(staging)]
        if debug_libs:
            cmd.append("--include-debug-libs")
        if debug_symbols:
            cmd.append("--include-debug-symbols")
        if self.host.is_macos:
            # Case-insensitive filesystem; symlinks would collide
            cmd.append("--disable-symlinks")
        return cmd

    def populate(self, spec: TargetSpec, staging: Path, work_dir: Path) -> None:
        debug_libs, debug_symbols = self.debug_toggles(spec)
        cmd = self.build_command(spec, staging, work_dir, debug_libs, debug_symbols)

        tail = deque(maxlen=50)

        def on_line(line: str) -> None:
            tail.append(line)
            logger.info(line)

        work_dir.mkdir(parents=True, exist_ok=True)
        exit_code = stream_collaborator(
            cmd, on_line, stream="stderr", cancel=self.cancel
        )
        if exit_code != 0:
            output = "\n".join(tail)
            self._raise_version_error(spec, output)
            raise ProviderError(
                f"xwin exited with status {exit_code}"
                + (f": {tail[-1]}" if tail else "")
            )

    @staticmethod
    def _raise_version_error(spec: TargetSpec, output: str) -> None:
        lowered = output.lower()
        if "unable to find" not in lowered and "not found" not in lowered:
            return
        for pinned in (spec.sdk_version, spec.crt_version, spec.manifest_version):
            if pinned and pinned in output:
                raise UpstreamVersionNotFound(
                    pinned, f"xwin could not find version {pinned}"
                )

    def describe(self, spec: TargetSpec) -> str:
        arches = ",".join(a.xwin_name for a in spec.payload_architectures)
        return (
            f"MSVC CRT/SDK (manifest {spec.manifest_version}, "
            f"variant {spec.variant.value}, arch {arches})"
        )


class MsvcSysrootProvider(SdkProvider):
    """
    Prepare the prebuilt windows-msvc-sysroot used by the clang backend.

    The latest GitHub release of the sysroot repository is looked up and its
    ``.tar.xz`` asset is extracted. ``GITHUB_TOKEN`` is honoured for the
    release lookup.
    """

    name = "windows-msvc-sysroot"

    def __init__(
        self,
        repository: str = MSVC_SYSROOT_REPOSITORY,
        asset_name: str = MSVC_SYSROOT_ASSET_NAME,
        environ: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.repository = repository
        self.asset_name = asset_name
        self.environ = environ if environ is not None else os.environ
        self.cancel = cancel

    def key_fields(self, spec: TargetSpec) -> Dict[str, object]:
        # The release ships every architecture in one archive
        return {"repository": self.repository, "asset": self.asset_name}

    def release_url(self) -> str:
        return f"https://api.github.com/repos/{self.repository}/releases/latest"

    def _api_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        token = self.environ.get("GITHUB_TOKEN")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def find_asset_url(self) -> str:
        """
        Look up the download URL of the sysroot asset in the latest release.

        Raises:
            ProviderError: If the release has no matching asset
        """
        release = fetch_json(self.release_url(), headers=self._api_headers())
        for asset in release.get("assets", []):
            if asset.get("name") == self.asset_name:
                return asset["browser_download_url"]
        raise ProviderError(
            f"Failed to find {self.asset_name} in the latest {self.repository} release"
        )

    def populate(self, spec: TargetSpec, staging: Path, work_dir: Path) -> None:
        url = self.find_asset_url()
        archive = work_dir / self.asset_name

        def on_progress(progress) -> None:
            logger.info(f"  {self.asset_name}: {progress}")

        download_file(
            url, archive, progress_callback=on_progress, cancel=self.cancel
        )
        extract_archive(archive, staging)
        _hoist_single_directory(staging, "windows-msvc-sysroot")

        if not (staging / "include").is_dir():
            raise ProviderError(f"{self.asset_name} has no include/ directory")

    def describe(self, spec: TargetSpec) -> str:
        return f"windows-msvc-sysroot ({self.repository})"


def _hoist_single_directory(root: Path, name: str) -> None:
    """Move ``root/name/*`` up into ``root`` when the archive wraps its content."""
    wrapper = root / name
    if not wrapper.is_dir() or [p.name for p in root.iterdir()] != [name]:
        return
    for child in wrapper.iterdir():
        shutil.move(str(child), str(root / child.name))
    wrapper.rmdir()


PROVIDERS = {
    XwinSplatProvider.name: XwinSplatProvider,
    MsvcSysrootProvider.name: MsvcSysrootProvider,
}


def provider_for_backend(
    provider_name: str, cancel: Optional[threading.Event] = None
) -> SdkProvider:
    """
    Default SDK provider named by a compiler backend's ``provider_name``.

    ``cancel`` is handed to the provider so an interrupted invocation can
    stop its download or ``xwin`` child.

    Raises:
        ValueError: If no provider has that name
    """
    try:
        return PROVIDERS[provider_name](cancel=cancel)
    except KeyError:
        raise ValueError(f"Unknown SDK provider: {provider_name}") from None
