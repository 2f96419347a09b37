"""
Cargo command line handling and cargo queries.

Helpers that read what xwinkit needs out of the cargo arguments the user
passed through (targets, target directory, manifest path) and query cargo
itself for values it owns (the configured ``build.target``, config-file
rustflags and the workspace target directory).
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from xwinkit.core.process import capture_output

logger = logging.getLogger(__name__)

# Lets stable cargo accept `config get -Z unstable-options`
CARGO_CHANNEL_OVERRIDE = "__CARGO_TEST_CHANNEL_OVERRIDE_DO_NOT_USE_THIS"


def flag_values(args: Sequence[str], flag: str) -> List[str]:
    """All values given for ``flag`` as ``flag VALUE`` or ``flag=VALUE``."""
    values = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == flag and i + 1 < len(args):
            values.append(args[i + 1])
            i += 2
            continue
        if arg.startswith(f"{flag}="):
            values.append(arg[len(flag) + 1 :])
        i += 1
    return values


def split_targets(args: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Separate ``--target`` arguments from the rest of the cargo arguments.

    Returns:
        (requested triples in order, remaining arguments)
    """
    triples: List[str] = []
    remaining: List[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--target" and i + 1 < len(args):
            triples.extend(_split_list(args[i + 1]))
            i += 2
            continue
        if arg.startswith("--target="):
            triples.extend(_split_list(arg[len("--target=") :]))
        else:
            remaining.append(arg)
        i += 1
    return triples, remaining


def _split_list(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def split_program_args(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Split ``argv`` at the first ``--`` into (cargo args, program args)."""
    argv = list(argv)
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1 :]
    return argv, []


def cargo_config_get(
    key: str, environ: Mapping[str, str], cwd: Optional[Path] = None
) -> Any:
    """
    Read one value from the cargo configuration (files and ``CARGO_*`` env).

    Returns:
        The decoded JSON value, or None when unset or cargo cannot answer
    """
    env = dict(environ)
    env[CARGO_CHANNEL_OVERRIDE] = "nightly"
    output = capture_output(
        ["cargo", "config", "get", "-Z", "unstable-options"]
        + ["--format", "json-value", key],
        env=env,
        cwd=cwd,
    )
    if not output:
        return None
    try:
        return json.loads(output)
    except ValueError as e:
        logger.debug(f"Unreadable value for {key} from cargo config: {e}")
        return None


def cargo_config_build_target(
    environ: Mapping[str, str], cwd: Optional[Path] = None
) -> Optional[str]:
    """
    Query cargo for the configured ``build.target``.

    Returns:
        The configured triple, or None when unset or cargo cannot answer
    """
    value = cargo_config_get("build.target", environ, cwd)
    if isinstance(value, list):
        value = value[0] if value else None
    if not isinstance(value, str):
        return None
    return value.strip() or None


def cargo_config_rustflags(
    triple: str, environ: Mapping[str, str], cwd: Optional[Path] = None
) -> List[str]:
    """
    Rustflags set in cargo configuration files for ``triple``.

    ``target.<triple>.rustflags`` wins over ``build.rustflags``. Both may be
    an array or a whitespace separated string.

    Returns:
        The flags, or an empty list when neither key is set
    """
    for key in (f"target.{triple}.rustflags", "build.rustflags"):
        value = cargo_config_get(key, environ, cwd)
        if isinstance(value, str):
            return value.split()
        if isinstance(value, list):
            return [str(flag) for flag in value]
    return []


def cargo_target_dir(
    cargo_args: Sequence[str],
    environ: Mapping[str, str],
    cwd: Path,
) -> Path:
    """
    Locate the target directory the build will write to.

    Order: ``--target-dir``, ``CARGO_TARGET_DIR``, ``cargo metadata``, then
    ``target`` next to the manifest.
    """
    explicit = flag_values(cargo_args, "--target-dir")
    if explicit:
        return _absolute(Path(explicit[-1]), cwd)

    from_env = environ.get("CARGO_TARGET_DIR")
    if from_env:
        return _absolute(Path(from_env), cwd)

    manifest_paths = flag_values(cargo_args, "--manifest-path")
    command = ["cargo", "metadata", "--no-deps", "--format-version", "1"]
    if manifest_paths:
        command += ["--manifest-path", manifest_paths[-1]]

    output = capture_output(command, env=environ, cwd=cwd)
    if output:
        try:
            target_directory = json.loads(output).get("target_directory")
        except ValueError as e:
            logger.debug(f"Unreadable cargo metadata output: {e}")
            target_directory = None
        if target_directory:
            return Path(target_directory)

    if manifest_paths:
        return _absolute(Path(manifest_paths[-1]), cwd).parent / "target"
    return Path(cwd) / "target"


def _absolute(path: Path, cwd: Path) -> Path:
    return path if path.is_absolute() else Path(cwd) / path
