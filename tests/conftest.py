"""
Pytest configuration and shared fixtures for xwinkit tests.
"""

import threading
from pathlib import Path
from typing import Dict, List

import pytest

from xwinkit.config.options import XWinOptions
from xwinkit.core.platform import HostConventions
from xwinkit.cross.providers import SdkProvider
from xwinkit.cross.targets import TargetResolver, TargetSpec


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests that need cargo, xwin or network access",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --integration flag is provided."""
    if not config.getoption("--integration"):
        skip_integration = pytest.mark.skip(reason="need --integration option to run")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


# ============================================================================
# Fake SDK Providers
# ============================================================================

XWIN_ARCH_DIRS = ("x86", "x86_64", "aarch", "aarch64")


def make_splat_layout(root: Path, include_atl: bool = False) -> None:
    """Create the directory layout ``xwin splat`` produces."""
    (root / "crt" / "include").mkdir(parents=True, exist_ok=True)
    for name in ("ucrt", "um", "shared", "winrt"):
        (root / "sdk" / "include" / name).mkdir(parents=True, exist_ok=True)
    for arch in XWIN_ARCH_DIRS:
        (root / "crt" / "lib" / arch).mkdir(parents=True, exist_ok=True)
        (root / "sdk" / "lib" / "um" / arch).mkdir(parents=True, exist_ok=True)
        (root / "sdk" / "lib" / "ucrt" / arch).mkdir(parents=True, exist_ok=True)
        if include_atl:
            (root / "crt" / "atlmfc" / "lib" / arch).mkdir(parents=True, exist_ok=True)
    if include_atl:
        (root / "crt" / "atlmfc" / "include").mkdir(parents=True, exist_ok=True)
    (root / "crt" / "include" / "vcruntime.h").write_text("// vcruntime\n")


def make_sysroot_layout(root: Path) -> None:
    """Create the directory layout of the windows-msvc-sysroot release."""
    (root / "include" / "c++" / "stl").mkdir(parents=True, exist_ok=True)
    for arch in ("i686", "x86_64", "aarch64"):
        (root / "lib" / f"{arch}-unknown-windows-msvc").mkdir(parents=True)


class FakeSplatProvider(SdkProvider):
    """
    Provider that creates the xwin splat layout without running anything.

    Counts populate calls and can be told to fail or to block until released.
    """

    name = "xwin"

    def __init__(self, error: Exception = None, gate: threading.Event = None):
        self.error = error
        self.gate = gate
        self.populate_calls: List[Dict[str, object]] = []
        self._lock = threading.Lock()

    def key_fields(self, spec: TargetSpec) -> Dict[str, object]:
        fields = spec.cache_fields()
        fields.pop("cache_dir")
        return fields

    def debug_toggles(self, spec: TargetSpec):
        return (spec.include_debug_libs, spec.include_debug_symbols)

    def populate(self, spec: TargetSpec, staging: Path, work_dir: Path) -> None:
        with self._lock:
            self.populate_calls.append(
                {"triple": spec.triple, "staging": staging, "work_dir": work_dir}
            )
        work_dir.mkdir(parents=True, exist_ok=True)
        (work_dir / "download.bin").write_bytes(b"\0" * 16)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.error is not None:
            (staging / "partial").write_text("half written")
            raise self.error
        make_splat_layout(staging, include_atl=spec.include_atl)

    @property
    def call_count(self) -> int:
        return len(self.populate_calls)


class FakeSysrootProvider(FakeSplatProvider):
    """Provider that creates the windows-msvc-sysroot layout."""

    name = "windows-msvc-sysroot"

    def key_fields(self, spec: TargetSpec) -> Dict[str, object]:
        return {"repository": "example/windows-msvc-sysroot"}

    def debug_toggles(self, spec: TargetSpec):
        return (False, False)

    def populate(self, spec: TargetSpec, staging: Path, work_dir: Path) -> None:
        with self._lock:
            self.populate_calls.append({"triple": spec.triple, "staging": staging})
        make_sysroot_layout(staging)


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def linux_host() -> HostConventions:
    """Linux x64 host conventions."""
    return HostConventions(os="linux", arch="x64", path_separator=":")


@pytest.fixture
def macos_host() -> HostConventions:
    """macOS arm64 host conventions."""
    return HostConventions(os="macos", arch="arm64", path_separator=":")


@pytest.fixture
def windows_host() -> HostConventions:
    """Windows x64 host conventions."""
    return HostConventions(os="windows", arch="x64", path_separator=";")


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    """Empty cache root."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def fake_provider() -> FakeSplatProvider:
    """Fake xwin provider that records populate calls."""
    return FakeSplatProvider()


@pytest.fixture
def sysroot_provider() -> FakeSysrootProvider:
    """Fake windows-msvc-sysroot provider."""
    return FakeSysrootProvider()


@pytest.fixture
def make_spec(cache_dir, linux_host):
    """Factory resolving a triple with option overrides into a TargetSpec."""

    def _make(triple: str = "x86_64-pc-windows-msvc", **overrides) -> TargetSpec:
        options = XWinOptions(xwin_cache_dir=cache_dir, **overrides)
        return TargetResolver(options, host=linux_host).resolve(triple)

    return _make


@pytest.fixture
def splat_root(tmp_path) -> Path:
    """Ready root with the xwin splat layout (no ATL)."""
    root = tmp_path / "splat"
    make_splat_layout(root)
    return root


@pytest.fixture
def splat_root_atl(tmp_path) -> Path:
    """Ready root with the xwin splat layout including ATL."""
    root = tmp_path / "splat-atl"
    make_splat_layout(root, include_atl=True)
    return root


@pytest.fixture
def sysroot_root(tmp_path) -> Path:
    """Ready root with the windows-msvc-sysroot layout."""
    root = tmp_path / "sysroot"
    make_sysroot_layout(root)
    return root


@pytest.fixture
def provider_factory():
    """The fake xwin provider class, for tests that configure failures."""
    return FakeSplatProvider
