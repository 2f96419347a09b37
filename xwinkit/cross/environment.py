"""
Environment assembly for Windows MSVC cross compilation.

Given a resolved `TargetSpec`, a compiler backend, the host conventions and
the ready SDK root, `EnvironmentAssembler.assemble` computes the complete
`EnvironmentPlan` for one target: tool variables for the ``cc`` crate and
cargo, compiler flag variables, library search paths, rustflags and the
CMake integration variables.

Precedence between the user's environment and computed values:
- Scalar variables (``CC_<t>``, ``CARGO_TARGET_<T>_LINKER``, ...): a value
  the user already set is kept verbatim.
- List variables (``PATH``, ``LIB``, ``CFLAGS_<t>``, rustflags, ...): the
  user's entries come first and computed entries are appended after them.

Every emitted path goes through the path normalization rules. Source paths
the compiler could read as options (``/Users/...`` for clang-cl) are
separated by the ``source-terminator`` rule of the CMake toolchain override.

Usage:
    from xwinkit.cross.environment import EnvironmentAssembler

    plan = EnvironmentAssembler().assemble(spec, backend, host, root, os.environ)
    child_env = plan.apply(os.environ)
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from xwinkit.core.exceptions import AssemblyError, ConfigurationError
from xwinkit.core.platform import HostConventions, adjust_canonicalization
from xwinkit.cross.targets import TargetSpec
from xwinkit.toolchain.strategy import CompilerBackend, ToolRoles

logger = logging.getLogger(__name__)

LANGUAGES = ("c", "cxx", "rc", "link", "rust")

ENCODED_RUSTFLAGS_SEPARATOR = "\x1f"

# Homebrew LLVM install locations per host architecture
HOMEBREW_LLVM_DIRS = {
    "x64": "/usr/local/opt/llvm/bin",
    "arm64": "/opt/homebrew/opt/llvm/bin",
}

_WINDOWS_ABSOLUTE = re.compile(r"^[A-Za-z]:/")


# ============================================================================
# Path Normalization Rules
# ============================================================================


def strip_verbatim_prefix(path: str) -> str:
    """Drop the ``\\\\?\\`` prefix Windows canonicalization adds."""
    return adjust_canonicalization(path)


def forward_slashes(path: str) -> str:
    """Use ``/`` as the only separator."""
    return path.replace("\\", "/")


def require_absolute(path: str) -> str:
    """
    Reject relative paths.

    Raises:
        ConfigurationError: If ``path`` is neither POSIX-absolute nor drive-absolute
    """
    if path.startswith("/") or _WINDOWS_ABSOLUTE.match(path):
        return path
    raise ConfigurationError(f"Toolchain paths must be absolute, got '{path}'")


PATH_RULES = (strip_verbatim_prefix, forward_slashes, require_absolute)


def normalize_path(path: Union[str, PurePath]) -> str:
    """Apply every path normalization rule in order."""
    text = str(path)
    for rule in PATH_RULES:
        text = rule(text)
    return text


# ============================================================================
# Rustflags
# ============================================================================


def user_rustflags(
    environ: Mapping[str, str],
    spec: TargetSpec,
    config_rustflags: Sequence[str] = (),
) -> List[str]:
    """
    The rustflags cargo would use for ``spec``.

    Order: ``CARGO_ENCODED_RUSTFLAGS``, ``RUSTFLAGS``,
    ``CARGO_TARGET_<T>_RUSTFLAGS``, then ``config_rustflags`` (the value of
    ``target.<triple>.rustflags`` or ``build.rustflags`` from cargo config
    files); the first one set wins. Cargo ignores config-file rustflags once
    the per-target variable is exported.
    """
    encoded = environ.get("CARGO_ENCODED_RUSTFLAGS")
    if encoded:
        return [f for f in encoded.split(ENCODED_RUSTFLAGS_SEPARATOR) if f]

    plain = environ.get("RUSTFLAGS")
    if plain and plain.strip():
        return plain.split()

    per_target = environ.get(f"CARGO_TARGET_{spec.env_target_upper}_RUSTFLAGS")
    if per_target and per_target.strip():
        return per_target.split()

    return list(config_rustflags)


def is_static_crt(rustflags: Sequence[str]) -> bool:
    """Whether the last ``crt-static`` target feature in ``rustflags`` enables it."""
    enabled = False
    for flag in rustflags:
        if "+crt-static" in flag:
            enabled = True
        elif "-crt-static" in flag:
            enabled = False
    return enabled


# ============================================================================
# Plan
# ============================================================================


@dataclass(frozen=True)
class EnvironmentPlan:
    """
    Complete environment for one target. Value object, never mutated.

    Attributes:
        triple: Requested target triple
        target_triple: Triple in the backend's vocabulary
        backend: Backend name
        tools: Executables per toolchain role
        variables: Ordered (name, value) pairs to set in the child environment
        removed: Names to drop from the child environment
        flags: Ordered (language, flags) pairs for c, cxx, rc, link and rust
        include_dirs: Normalized header search directories
        lib_dirs: Normalized library search directories
        processor: CMAKE_SYSTEM_PROCESSOR value
        msvc_runtime: CMAKE_MSVC_RUNTIME_LIBRARY value
        descriptor_path: Normalized path of the CMake toolchain file, if any
    """

    triple: str
    target_triple: str
    backend: str
    tools: ToolRoles
    variables: Tuple[Tuple[str, str], ...]
    removed: FrozenSet[str]
    flags: Tuple[Tuple[str, Tuple[str, ...]], ...]
    include_dirs: Tuple[str, ...]
    lib_dirs: Tuple[str, ...]
    processor: str
    msvc_runtime: str
    descriptor_path: Optional[str] = None

    @property
    def env(self) -> Dict[str, str]:
        return dict(self.variables)

    def flags_for(self, language: str) -> List[str]:
        for lang, flags in self.flags:
            if lang == language:
                return list(flags)
        raise KeyError(f"Unknown language: {language}")

    def apply(self, base_env: Mapping[str, str]) -> Dict[str, str]:
        """
        Overlay the plan onto ``base_env``.

        Plan values win for managed names, removed names are dropped and all
        other inherited variables pass through unchanged.
        """
        child = {k: v for k, v in base_env.items() if k not in self.removed}
        child.update(self.variables)
        return child


# ============================================================================
# Assembler
# ============================================================================


class _VariableBuilder:
    """Collects variables in order while applying the precedence rules."""

    def __init__(self, base_env: Mapping[str, str]):
        self.base_env = base_env
        self.values: Dict[str, str] = {}

    def scalar(self, name: str, computed: str) -> None:
        user = self.base_env.get(name)
        if user:
            logger.debug(f"Keeping user value for {name}")
            self.values[name] = user
        else:
            self.values[name] = computed

    def listed(
        self,
        name: str,
        computed: Sequence[str],
        separator: str = " ",
        user: Optional[str] = None,
    ) -> None:
        base = user if user is not None else self.base_env.get(name)
        parts = [base] if base else []
        parts.extend(computed)
        self.values[name] = separator.join(parts)


class EnvironmentAssembler:
    """
    Computes EnvironmentPlans.

    The assembler holds no state; `assemble` is deterministic for identical
    inputs and an unchanged ready root.
    """

    def assemble(
        self,
        spec: TargetSpec,
        backend: CompilerBackend,
        host: HostConventions,
        ready_root: Path,
        base_env: Optional[Mapping[str, str]] = None,
        bin_dir: Optional[Path] = None,
        descriptor_path: Optional[Path] = None,
        config_rustflags: Sequence[str] = (),
    ) -> EnvironmentPlan:
        """
        Assemble the environment for one target.

        Args:
            spec: Resolved target
            backend: Compiler backend
            host: Host conventions
            ready_root: Ready SDK root from the cache
            base_env: User environment the plan is merged with
            bin_dir: Directory holding tool links (default ``<cache>/bin``)
            descriptor_path: CMake toolchain file path to export
            config_rustflags: Rustflags from cargo config files for the target

        Returns:
            The environment plan

        Raises:
            ConfigurationError: On an unsupported backend pairing or role mix
            AssemblyError: If a search directory is missing from the root
        """
        base_env = base_env if base_env is not None else {}
        bin_dir = bin_dir if bin_dir is not None else spec.cache_dir / "bin"

        tools = backend.tool_roles()
        tools.check_consistent(backend.name)
        backend.check_supported(spec)

        triple = backend.target_triple(spec)
        include_dirs = self._search_dirs(
            ready_root, backend.include_dirs(ready_root, spec)
        )
        lib_dirs = self._search_dirs(ready_root, backend.lib_dirs(ready_root, spec))

        c_flags = backend.compile_flags(triple, include_dirs)
        cxx_flags = c_flags + backend.cxx_extra_flags()
        rc_flags = backend.include_args(include_dirs)
        env_extra = backend.env_extra_flags(lib_dirs)
        link_flags = backend.descriptor_link_flags(
            lib_dirs, spec.include_debug_symbols
        )

        rustflags = user_rustflags(base_env, spec, config_rustflags)
        static_crt = is_static_crt(rustflags)
        rust_flags = ["-C", "linker-flavor=lld-link"]
        if static_crt:
            rust_flags += [
                "-C",
                "link-arg=-nodefaultlib:ucrt",
                "-C",
                "link-arg=-defaultlib:libucrt",
            ]
        rust_flags += [f"-Lnative={d}" for d in lib_dirs]

        t = spec.env_target
        T = spec.env_target_upper
        builder = _VariableBuilder(base_env)

        builder.scalar("TARGET_CC", tools.c_compiler.name)
        builder.scalar("TARGET_CXX", tools.cxx_compiler.name)
        builder.scalar(f"CC_{t}", tools.c_compiler.name)
        builder.scalar(f"CXX_{t}", tools.cxx_compiler.name)
        builder.scalar("TARGET_AR", tools.archiver.name)
        builder.scalar(f"AR_{t}", tools.archiver.name)
        builder.scalar(f"CARGO_TARGET_{T}_LINKER", tools.linker.name)

        if backend.exports_cl_flags():
            builder.listed("CL_FLAGS", c_flags)
        builder.listed(
            f"CFLAGS_{t}",
            c_flags + env_extra,
            user=base_env.get(f"CFLAGS_{t}") or base_env.get("CFLAGS"),
        )
        builder.listed(
            f"CXXFLAGS_{t}",
            cxx_flags + env_extra,
            user=base_env.get(f"CXXFLAGS_{t}") or base_env.get("CXXFLAGS"),
        )
        builder.listed(f"BINDGEN_EXTRA_CLANG_ARGS_{t}", rc_flags)
        builder.listed("RCFLAGS", rc_flags)
        if backend.exports_lib_variable():
            builder.listed("LIB", lib_dirs, separator=";")
        builder.listed(
            f"CARGO_TARGET_{T}_RUSTFLAGS", rust_flags, user=" ".join(rustflags)
        )
        builder.listed(
            "PATH",
            self._path_additions(host, base_env.get("PATH", ""), bin_dir),
            separator=host.path_separator,
        )

        builder.scalar("CMAKE_GENERATOR", "Ninja")
        builder.scalar("CMAKE_SYSTEM_NAME", "Windows")
        normalized_descriptor = None
        if descriptor_path is not None:
            normalized_descriptor = normalize_path(descriptor_path)
            builder.scalar(f"CMAKE_TOOLCHAIN_FILE_{t}", normalized_descriptor)

        plan = EnvironmentPlan(
            triple=spec.triple,
            target_triple=triple,
            backend=backend.name,
            tools=tools,
            variables=tuple(builder.values.items()),
            removed=frozenset({"RUSTFLAGS", "CARGO_ENCODED_RUSTFLAGS"}),
            flags=(
                ("c", tuple(c_flags)),
                ("cxx", tuple(cxx_flags)),
                ("rc", tuple(rc_flags)),
                ("link", tuple(link_flags)),
                ("rust", tuple(rust_flags)),
            ),
            include_dirs=tuple(include_dirs),
            lib_dirs=tuple(lib_dirs),
            processor=spec.architecture.cmake_processor,
            msvc_runtime="MultiThreaded" if static_crt else "MultiThreadedDLL",
            descriptor_path=normalized_descriptor,
        )
        logger.debug(f"Assembled {len(plan.variables)} variables for {spec.triple}")
        return plan

    @staticmethod
    def _search_dirs(root: Path, dirs: List[Path]) -> List[str]:
        normalized = []
        for directory in dirs:
            if not directory.is_dir():
                raise AssemblyError(root, directory.relative_to(root).as_posix())
            normalized.append(normalize_path(directory))
        return normalized

    @staticmethod
    def _path_additions(
        host: HostConventions, user_path: str, bin_dir: Path
    ) -> List[str]:
        existing = [p for p in user_path.split(host.path_separator) if p]
        additions = []
        if host.is_macos:
            llvm_dir = HOMEBREW_LLVM_DIRS.get(host.arch)
            if llvm_dir and Path(llvm_dir).is_dir() and llvm_dir not in existing:
                additions.append(llvm_dir)
        bin_dir = str(bin_dir)
        if bin_dir not in existing:
            additions.append(bin_dir)
        return additions
