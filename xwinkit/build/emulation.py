"""
Running built Windows binaries on the host.

`run` and `test` build through cargo's JSON message stream, collect the
executables cargo reports and hand each one to the emulation layer. The
emulator is the user's ``CARGO_TARGET_<T>_RUNNER`` when set, otherwise
``wine``. ``WINEDEBUG=-all`` keeps wine's own diagnostics out of the
program's output unless the user configured it.

Usage:
    from xwinkit.build.emulation import ArtifactCollector, ExecutionRequest

    collector = ArtifactCollector()
    stream_collaborator(cargo_argv, collector, env=child_env)
    request = ExecutionRequest(collector.executables[-1], ("--flag",), ("wine",))
    exit_code = EmulationRunner().run(request, child_env)
"""

import json
import logging
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, TextIO, Tuple

from xwinkit.core.process import run_collaborator

logger = logging.getLogger(__name__)

DEFAULT_EMULATOR = "wine"
MESSAGE_FORMAT = "--message-format=json-render-diagnostics"


@dataclass(frozen=True)
class ExecutionRequest:
    """One target binary to execute under the emulation layer."""

    binary: Path
    program_args: Tuple[str, ...] = ()
    emulator: Tuple[str, ...] = (DEFAULT_EMULATOR,)

    def argv(self) -> List[str]:
        return [*self.emulator, str(self.binary), *self.program_args]


@dataclass(frozen=True)
class Artifact:
    """An executable reported by cargo."""

    path: Path
    name: str
    is_test: bool


def parse_artifact(line: str) -> Optional[Artifact]:
    """
    Parse one line of cargo's JSON message stream.

    Returns:
        The executable artifact, or None for any other line
    """
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        message = json.loads(line)
    except ValueError:
        return None

    if message.get("reason") != "compiler-artifact":
        return None
    executable = message.get("executable")
    if not executable:
        return None

    target = message.get("target") or {}
    profile = message.get("profile") or {}
    return Artifact(
        path=Path(executable),
        name=target.get("name", Path(executable).stem),
        is_test=bool(profile.get("test")),
    )


class ArtifactCollector:
    """
    Line callback for `stream_collaborator` that gathers executables.

    Lines that are not cargo JSON messages (output of build scripts, for
    instance) are echoed to ``echo`` unchanged.
    """

    def __init__(self, echo: Optional[TextIO] = None):
        self.echo = echo if echo is not None else sys.stdout
        self.artifacts: List[Artifact] = []

    def __call__(self, line: str) -> None:
        artifact = parse_artifact(line)
        if artifact is not None:
            logger.debug(f"Built executable: {artifact.path}")
            self.artifacts.append(artifact)
        elif not line.lstrip().startswith("{"):
            print(line, file=self.echo)

    @property
    def executables(self) -> List[Path]:
        return [a.path for a in self.artifacts]


def emulator_command(env_target_upper: str, environ: Mapping[str, str]) -> List[str]:
    """Emulator argv prefix for a target, honouring ``CARGO_TARGET_<T>_RUNNER``."""
    runner = environ.get(f"CARGO_TARGET_{env_target_upper}_RUNNER")
    if runner and runner.strip():
        return shlex.split(runner)
    return [DEFAULT_EMULATOR]


def emulation_variables(
    env_target_upper: str, environ: Mapping[str, str]
) -> Dict[str, str]:
    """Variables the emulation layer needs on top of the cross environment."""
    runner_var = f"CARGO_TARGET_{env_target_upper}_RUNNER"
    return {
        "WINEDEBUG": environ.get("WINEDEBUG") or "-all",
        runner_var: environ.get(runner_var) or DEFAULT_EMULATOR,
    }


class EmulationRunner:
    """Executes requests with inherited stdio and reports the exit code."""

    def run(self, request: ExecutionRequest, env: Mapping[str, str]) -> int:
        child_env = dict(env)
        if not child_env.get("WINEDEBUG"):
            child_env["WINEDEBUG"] = "-all"
        logger.info(f"Running {request.binary.name} with {request.emulator[0]}")
        return run_collaborator(request.argv(), env=child_env)

    def run_all(
        self,
        requests: Sequence[ExecutionRequest],
        env: Mapping[str, str],
        fail_fast: bool = True,
    ) -> int:
        """
        Execute requests in order.

        Returns:
            0 if all succeeded, else the first non-zero exit code
        """
        status = 0
        for request in requests:
            code = self.run(request, env)
            if code != 0:
                logger.error(f"{request.binary.name} exited with status {code}")
                if status == 0:
                    status = code
                if fail_fast:
                    break
        return status
