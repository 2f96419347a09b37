"""
Windows MSVC target resolution.

This module turns a requested target triple plus the resolved xwin options
into a canonical `TargetSpec`: the architecture the triple names, the set of
architectures the SDK/CRT payload must contain, the SDK variant and the
version pins. Anything that cannot be built is rejected here, before any
cache or process activity.

Usage:
    from xwinkit.cross.targets import TargetResolver

    resolver = TargetResolver(options)
    spec = resolver.resolve("x86_64-pc-windows-msvc")
    print(spec.architecture, spec.payload_architectures)
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from xwinkit.config.options import XWinOptions
from xwinkit.core.exceptions import ConfigurationError
from xwinkit.core.platform import HostConventions, detect_host

logger = logging.getLogger(__name__)

MSVC_SUFFIX = "-windows-msvc"

MANIFEST_VERSION_RE = re.compile(r"^(15|16|17|\d+\.\d+)$")
SDK_VERSION_RE = re.compile(r"^\d+(\.\d+){2,}$")
CRT_VERSION_RE = re.compile(r"^\d+(\.\d+)+$")


class Architecture(Enum):
    """Windows target architectures."""

    X86 = "x86"
    X86_64 = "x86_64"
    ARM = "arm"
    ARM64 = "arm64"

    @property
    def xwin_name(self) -> str:
        """Name used by xwin for arch selection and library subdirectories."""
        return _XWIN_NAMES[self]

    @property
    def cmake_processor(self) -> str:
        """Value for CMAKE_SYSTEM_PROCESSOR."""
        return _CMAKE_PROCESSORS[self]

    @classmethod
    def from_xwin_name(cls, name: str) -> "Architecture":
        for arch, xwin_name in _XWIN_NAMES.items():
            if xwin_name == name:
                return arch
        raise ConfigurationError(f"Unknown xwin architecture: {name}")

    @classmethod
    def from_triple_arch(cls, triple_arch: str) -> "Architecture":
        """Map the architecture component of a triple."""
        try:
            return _TRIPLE_ARCHES[triple_arch]
        except KeyError:
            raise ConfigurationError(
                f"Unsupported target architecture '{triple_arch}'. "
                f"Supported: {', '.join(_TRIPLE_ARCHES)}"
            ) from None


_XWIN_NAMES = {
    Architecture.X86: "x86",
    Architecture.X86_64: "x86_64",
    Architecture.ARM: "aarch",
    Architecture.ARM64: "aarch64",
}

_CMAKE_PROCESSORS = {
    Architecture.X86: "X86",
    Architecture.X86_64: "AMD64",
    Architecture.ARM: "ARM",
    Architecture.ARM64: "ARM64",
}

_TRIPLE_ARCHES = {
    "i586": Architecture.X86,
    "i686": Architecture.X86,
    "x86_64": Architecture.X86_64,
    "thumbv7a": Architecture.ARM,
    "armv7": Architecture.ARM,
    "aarch64": Architecture.ARM64,
}

# Host architecture (as reported by detect_host) -> default triple
_HOST_DEFAULT_TRIPLES = {
    "x64": "x86_64-pc-windows-msvc",
    "arm64": "aarch64-pc-windows-msvc",
    "x86": "i686-pc-windows-msvc",
    "arm": "thumbv7a-pc-windows-msvc",
}


class Variant(Enum):
    """SDK product variants."""

    DESKTOP = "desktop"
    ONECORE = "onecore"
    SPECTRE = "spectre"

    @classmethod
    def parse(cls, value: str) -> "Variant":
        try:
            return cls(value.lower())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported SDK variant '{value}'. "
                f"Supported: {', '.join(v.value for v in cls)}"
            ) from None


@dataclass(frozen=True)
class TargetSpec:
    """
    Canonical description of one Windows MSVC target.

    Attributes:
        triple: Target triple as requested (e.g., 'x86_64-pc-windows-msvc')
        architecture: Architecture the triple names
        payload_architectures: Architectures prepared in the cache entry,
            sorted, always containing ``architecture``
        variant: SDK variant
        manifest_version: Manifest version ('15', '16', '17' or 'major.minor')
        sdk_version: Pinned Windows SDK version (None means latest)
        crt_version: Pinned MSVC CRT version (None means latest)
        include_atl: Whether ATL headers/libs are part of the payload
        include_debug_libs: Whether debug libraries are part of the payload
        include_debug_symbols: Whether PDBs are part of the payload
        cache_dir: Cache root for this invocation
    """

    triple: str
    architecture: Architecture
    payload_architectures: Tuple[Architecture, ...]
    variant: Variant = Variant.DESKTOP
    manifest_version: str = "16"
    sdk_version: Optional[str] = None
    crt_version: Optional[str] = None
    include_atl: bool = False
    include_debug_libs: bool = False
    include_debug_symbols: bool = False
    cache_dir: Path = Path(".")

    @property
    def triple_arch(self) -> str:
        """Architecture component of the triple ('x86_64', 'i686', ...)."""
        return self.triple.split("-", 1)[0]

    @property
    def env_target(self) -> str:
        """Triple in the form used by ``CC_<t>``-style variables."""
        return self.triple.lower().replace("-", "_")

    @property
    def env_target_upper(self) -> str:
        """Triple in the form used by ``CARGO_TARGET_<T>_*`` variables."""
        return self.env_target.upper()

    def cache_fields(self) -> Dict[str, object]:
        """
        Fields that decide the cache entry.

        The triple's own architecture is covered by ``payload_architectures``
        and the debug toggles are handled by the cache's superset lookup.
        """
        return {
            "payload_architectures": [a.value for a in self.payload_architectures],
            "variant": self.variant.value,
            "manifest_version": self.manifest_version,
            "sdk_version": self.sdk_version,
            "crt_version": self.crt_version,
            "include_atl": self.include_atl,
            "cache_dir": str(self.cache_dir),
        }


def parse_triple(triple: str) -> Architecture:
    """
    Validate a Windows MSVC triple and return its architecture.

    Raises:
        ConfigurationError: If the triple is not ``<arch>[-<vendor>]-windows-msvc``
            or the architecture is unsupported
    """
    triple = triple.strip()
    parts = triple.split("-")
    if not triple.endswith(MSVC_SUFFIX) or len(parts) not in (3, 4):
        raise ConfigurationError(
            f"Unsupported target triple '{triple}': only *-windows-msvc targets "
            "can be cross compiled"
        )
    return Architecture.from_triple_arch(parts[0])


def host_default_triple(host: HostConventions) -> str:
    """Windows triple matching the host CPU architecture."""
    return _HOST_DEFAULT_TRIPLES.get(host.arch, "x86_64-pc-windows-msvc")


class TargetResolver:
    """
    Resolve requested triples into TargetSpecs.

    Args:
        options: Resolved xwin options
        host: Host conventions (auto-detected if None)
        project_default: ``default-target`` from ``xwinkit.yaml``
        config_default: Callable returning cargo's configured ``build.target``
    """

    def __init__(
        self,
        options: XWinOptions,
        host: Optional[HostConventions] = None,
        project_default: Optional[str] = None,
        config_default: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.options = options
        self.host = host or detect_host()
        self.project_default = project_default
        self.config_default = config_default

    def default_triple(self) -> str:
        """
        Triple used when none is requested.

        Order: project default, cargo ``build.target``, host-appropriate default.
        """
        if self.project_default:
            logger.debug(f"Using project default target {self.project_default}")
            return self.project_default

        if self.config_default is not None:
            configured = self.config_default()
            if configured:
                logger.debug(f"Using cargo build.target {configured}")
                return configured

        triple = host_default_triple(self.host)
        logger.debug(f"Using host default target {triple}")
        return triple

    def resolve(self, triple: str) -> TargetSpec:
        """
        Resolve one triple.

        Raises:
            ConfigurationError: On an unsupported triple, variant or version
        """
        architecture = parse_triple(triple)
        options = self.options

        variant = Variant.parse(options.xwin_variant)
        self._check_version(
            options.xwin_version,
            MANIFEST_VERSION_RE,
            "--xwin-version",
            "15, 16, 17 or <major>.<minor>",
        )
        if options.xwin_sdk_version is not None:
            self._check_version(
                options.xwin_sdk_version,
                SDK_VERSION_RE,
                "--xwin-sdk-version",
                "a dotted version such as 10.0.22621",
            )
        if options.xwin_crt_version is not None:
            self._check_version(
                options.xwin_crt_version,
                CRT_VERSION_RE,
                "--xwin-crt-version",
                "a dotted version such as 14.29",
            )

        payload = {Architecture.from_xwin_name(name) for name in options.xwin_arch}
        payload.add(architecture)

        spec = TargetSpec(
            triple=triple.strip(),
            architecture=architecture,
            payload_architectures=tuple(
                sorted(payload, key=lambda a: list(Architecture).index(a))
            ),
            variant=variant,
            manifest_version=options.xwin_version,
            sdk_version=options.xwin_sdk_version,
            crt_version=options.xwin_crt_version,
            include_atl=options.xwin_include_atl,
            include_debug_libs=options.xwin_include_debug_libs,
            include_debug_symbols=options.xwin_include_debug_symbols,
            cache_dir=options.cache_dir,
        )
        logger.debug(f"Resolved {triple} -> {spec}")
        return spec

    def resolve_all(self, triples: Sequence[str]) -> List[TargetSpec]:
        """
        Resolve every requested triple, in request order, without duplicates.

        An empty request resolves the default triple.
        """
        requested = list(triples) or [self.default_triple()]
        specs = []
        seen = set()
        for triple in requested:
            if triple in seen:
                continue
            seen.add(triple)
            specs.append(self.resolve(triple))
        return specs

    @staticmethod
    def _check_version(value: str, pattern, flag: str, expected: str) -> None:
        if not pattern.match(value):
            raise ConfigurationError(f"Invalid {flag} '{value}': expected {expected}")


__all__ = [
    "Architecture",
    "Variant",
    "TargetSpec",
    "TargetResolver",
    "parse_triple",
    "host_default_triple",
]
