"""YAML configuration parser for xwinkit.

This module reads the optional per-project ``xwinkit.yaml`` file. The file
carries a project default target and defaults for the ``--xwin-*`` options:

    default-target: x86_64-pc-windows-msvc
    xwin:
      cross-compiler: clang-cl
      arch: [x86_64, aarch64]
      include-atl: true
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from xwinkit.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "xwinkit.yaml"

# Keys accepted under the ``xwin:`` section
XWIN_SECTION_KEYS = (
    "cross-compiler",
    "arch",
    "variant",
    "version",
    "sdk-version",
    "crt-version",
    "include-atl",
    "include-debug-libs",
    "include-debug-symbols",
    "cache-dir",
)


@dataclass
class ProjectConfig:
    """Project-level xwinkit configuration."""

    path: Optional[Path] = None
    default_target: Optional[str] = None
    xwin: Dict[str, Any] = field(default_factory=dict)


def load_yaml_config(config_file: Path, required: bool = False) -> Dict[str, Any]:
    """
    Load and parse a YAML configuration file.

    Args:
        config_file: Path to YAML configuration file
        required: If True, raise error if file doesn't exist

    Returns:
        Configuration dictionary (empty dict if file doesn't exist and not required)

    Raises:
        ConfigurationError: If the file is required but missing, or is not valid YAML
    """
    if not config_file.exists():
        if required:
            raise ConfigurationError(f"Configuration file not found: {config_file}")
        logger.debug(f"Config file not found (optional): {config_file}")
        return {}

    logger.debug(f"Loading configuration from {config_file}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e

    config = config or {}
    if not isinstance(config, dict):
        raise ConfigurationError(
            f"Invalid configuration in {config_file}: expected a mapping at top level"
        )
    return config


def find_project_config(start_dir: Path) -> Optional[Path]:
    """
    Find ``xwinkit.yaml`` in ``start_dir`` or any of its parents.

    Returns:
        Path to the file, or None if no project config exists
    """
    start_dir = Path(start_dir).resolve()
    for directory in (start_dir, *start_dir.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def parse_project_config(config_path: Optional[Path]) -> ProjectConfig:
    """
    Parse a project configuration file.

    Args:
        config_path: Path to ``xwinkit.yaml`` (None yields an empty config)

    Returns:
        Parsed configuration

    Raises:
        ConfigurationError: If the file has unknown keys or wrong value types
    """
    if config_path is None:
        return ProjectConfig()

    data = load_yaml_config(config_path, required=True)

    default_target = data.get("default-target")
    if default_target is not None and not isinstance(default_target, str):
        raise ConfigurationError(
            f"{config_path}: 'default-target' must be a string, got {default_target!r}"
        )

    xwin = data.get("xwin") or {}
    if not isinstance(xwin, dict):
        raise ConfigurationError(f"{config_path}: 'xwin' must be a mapping")

    unknown = sorted(set(xwin) - set(XWIN_SECTION_KEYS))
    if unknown:
        raise ConfigurationError(
            f"{config_path}: unknown xwin option(s): {', '.join(unknown)}. "
            f"Valid options: {', '.join(XWIN_SECTION_KEYS)}"
        )

    return ProjectConfig(path=config_path, default_target=default_target, xwin=xwin)
