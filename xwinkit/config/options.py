"""
Resolution of the ``--xwin-*`` customization options.

Every option can be given as a CLI flag, an environment variable or a key in
the ``xwin:`` section of ``xwinkit.yaml``. The first source that sets a value
wins, in that order, before the built-in default.

Usage:
    from xwinkit.config.options import resolve_options

    options = resolve_options(vars(args), os.environ, project_config)
    print(options.cross_compiler, options.xwin_arch)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from xwinkit.config.parser import ProjectConfig
from xwinkit.core.exceptions import ConfigurationError
from xwinkit.core.platform import default_cache_dir

logger = logging.getLogger(__name__)

CROSS_COMPILERS = ("clang-cl", "clang")
XWIN_ARCHES = ("x86", "x86_64", "aarch", "aarch64")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class OptionDef:
    """Where one option is read from, and how its raw value is parsed."""

    name: str
    flag: str
    env: str
    config_key: str
    kind: str  # 'str', 'list', 'bool', 'path'
    help: str = ""


OPTION_DEFS: Tuple[OptionDef, ...] = (
    OptionDef(
        "cross_compiler",
        "--cross-compiler",
        "XWIN_CROSS_COMPILER",
        "cross-compiler",
        "str",
        "The cross compiler to use: clang-cl or clang (default: clang-cl)",
    ),
    OptionDef(
        "xwin_arch",
        "--xwin-arch",
        "XWIN_ARCH",
        "arch",
        "list",
        "Comma separated architectures to include in CRT/SDK "
        "(x86, x86_64, aarch, aarch64; default: x86_64,aarch64)",
    ),
    OptionDef(
        "xwin_variant",
        "--xwin-variant",
        "XWIN_VARIANT",
        "variant",
        "str",
        "SDK variant: desktop, onecore or spectre (default: desktop)",
    ),
    OptionDef(
        "xwin_version",
        "--xwin-version",
        "XWIN_VERSION",
        "version",
        "str",
        'Manifest version: 15, 16, 17 or "<major>.<minor>" (default: 16)',
    ),
    OptionDef(
        "xwin_sdk_version",
        "--xwin-sdk-version",
        "XWIN_SDK_VERSION",
        "sdk-version",
        "str",
        "Windows SDK version to use instead of the latest in the manifest",
    ),
    OptionDef(
        "xwin_crt_version",
        "--xwin-crt-version",
        "XWIN_CRT_VERSION",
        "crt-version",
        "str",
        "MSVC CRT version to use instead of the latest in the manifest",
    ),
    OptionDef(
        "xwin_include_atl",
        "--xwin-include-atl",
        "XWIN_INCLUDE_ATL",
        "include-atl",
        "bool",
        "Include the Active Template Library (ATL)",
    ),
    OptionDef(
        "xwin_include_debug_libs",
        "--xwin-include-debug-libs",
        "XWIN_INCLUDE_DEBUG_LIBS",
        "include-debug-libs",
        "bool",
        "Include debug libraries",
    ),
    OptionDef(
        "xwin_include_debug_symbols",
        "--xwin-include-debug-symbols",
        "XWIN_INCLUDE_DEBUG_SYMBOLS",
        "include-debug-symbols",
        "bool",
        "Include debug symbols (PDBs)",
    ),
    OptionDef(
        "xwin_cache_dir",
        "--xwin-cache-dir",
        "XWIN_CACHE_DIR",
        "cache-dir",
        "path",
        "Cache directory for SDK/CRT payloads and tool links",
    ),
)


@dataclass
class XWinOptions:
    """Resolved xwin customization options for one invocation."""

    cross_compiler: str = "clang-cl"
    xwin_arch: List[str] = field(default_factory=lambda: ["x86_64", "aarch64"])
    xwin_variant: str = "desktop"
    xwin_version: str = "16"
    xwin_sdk_version: Optional[str] = None
    xwin_crt_version: Optional[str] = None
    xwin_include_atl: bool = False
    xwin_include_debug_libs: bool = False
    xwin_include_debug_symbols: bool = False
    xwin_cache_dir: Optional[Path] = None

    @property
    def cache_dir(self) -> Path:
        """Absolute cache root for this invocation."""
        root = self.xwin_cache_dir if self.xwin_cache_dir else default_cache_dir()
        return Path(root).absolute()

    def validate(self) -> None:
        """
        Check option values that do not depend on a target triple.

        Raises:
            ConfigurationError: If the backend or an architecture name is unknown
        """
        if self.cross_compiler not in CROSS_COMPILERS:
            raise ConfigurationError(
                f"Unsupported cross compiler '{self.cross_compiler}'. "
                f"Supported: {', '.join(CROSS_COMPILERS)}"
            )
        if not self.xwin_arch:
            raise ConfigurationError("--xwin-arch must name at least one architecture")
        for arch in self.xwin_arch:
            if arch not in XWIN_ARCHES:
                raise ConfigurationError(
                    f"Unsupported xwin architecture '{arch}'. "
                    f"Supported: {', '.join(XWIN_ARCHES)}"
                )


def parse_bool(value: Any, source: str) -> bool:
    """Parse a boolean option value from a CLI, env or YAML source."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean value {value!r} for {source}")


def _pick(
    option: OptionDef,
    cli: Mapping[str, Any],
    environ: Mapping[str, str],
    file_values: Mapping[str, Any],
) -> Tuple[Any, str]:
    value = cli.get(option.name)
    if value is not None:
        return value, option.flag

    value = environ.get(option.env)
    if value:
        return value, option.env

    value = file_values.get(option.config_key)
    if value is not None:
        return value, f"xwin.{option.config_key}"

    return None, ""


def _coerce(option: OptionDef, value: Any, source: str) -> Any:
    if option.kind == "bool":
        return parse_bool(value, source)
    if option.kind == "list":
        items = value if isinstance(value, (list, tuple)) else str(value).split(",")
        return [str(item).strip() for item in items if str(item).strip()]
    if option.kind == "path":
        return Path(str(value)).expanduser()
    return str(value).strip()


def resolve_options(
    cli: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    project: Optional[ProjectConfig] = None,
) -> XWinOptions:
    """
    Resolve options with precedence CLI flag > environment > xwinkit.yaml > default.

    Args:
        cli: Parsed CLI values keyed by option name (None means not given)
        environ: Environment variables
        project: Parsed project configuration

    Returns:
        Validated options

    Raises:
        ConfigurationError: If a value cannot be parsed or is unsupported
    """
    cli = cli or {}
    environ = environ or {}
    file_values = project.xwin if project else {}

    values = {}
    for option in OPTION_DEFS:
        raw, source = _pick(option, cli, environ, file_values)
        if raw is None:
            continue
        values[option.name] = _coerce(option, raw, source)
        logger.debug(f"Option {option.name} = {values[option.name]!r} (from {source})")

    options = XWinOptions(**values)
    options.validate()
    return options
