"""
Spawning of external collaborators (cargo, wine, xwin, rustc).

Collaborators inherit stdin/stdout/stderr unless the caller asks for the
stdout line stream. Exit codes are returned as-is; a program that cannot be
started is reported as a `SpawnError`. An interrupt terminates the child
before propagating.
"""

import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, Union

from xwinkit.core.exceptions import OperationCancelled, SpawnError

logger = logging.getLogger(__name__)

# Grace period between terminate() and kill() on interrupt
TERMINATE_GRACE_SECONDS = 5

# How often a cancellable child is checked against its cancel event
CANCEL_POLL_SECONDS = 0.2


def _spawn(argv: Sequence[str], env, cwd, **kwargs) -> subprocess.Popen:
    program = argv[0]
    logger.debug(f"Running: {' '.join(str(a) for a in argv)}")
    try:
        return subprocess.Popen(
            [str(a) for a in argv],
            env=dict(env) if env is not None else None,
            cwd=str(cwd) if cwd else None,
            **kwargs,
        )
    except FileNotFoundError as e:
        raise SpawnError(program, str(e), tool_missing=True) from e
    except OSError as e:
        raise SpawnError(program, str(e)) from e


def _wait(process: subprocess.Popen) -> int:
    try:
        return process.wait()
    except KeyboardInterrupt:
        _terminate(process)
        raise


def _terminate(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    logger.debug(f"Terminating child process {process.pid}")
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def run_collaborator(
    argv: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
) -> int:
    """
    Run a collaborator with inherited stdio and return its exit code.

    Args:
        argv: Program and arguments
        env: Full child environment (None inherits the current one)
        cwd: Working directory

    Returns:
        The child's exit code

    Raises:
        SpawnError: If the program is missing or cannot be started
    """
    process = _spawn(argv, env, cwd)
    return _wait(process)


def stream_collaborator(
    argv: Sequence[str],
    on_line: Callable[[str], None],
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    stream: str = "stdout",
    cancel: Optional[threading.Event] = None,
) -> int:
    """
    Run a collaborator, feeding each line of one output stream to ``on_line``.

    Args:
        argv: Program and arguments
        on_line: Called with every line (without the newline)
        env: Full child environment (None inherits the current one)
        cwd: Working directory
        stream: 'stdout' or 'stderr'; the other streams are inherited
        cancel: Setting this event terminates the child

    Returns:
        The child's exit code

    Raises:
        SpawnError: If the program is missing or cannot be started
        OperationCancelled: If ``cancel`` was set before the child finished
    """
    if stream not in ("stdout", "stderr"):
        raise ValueError(f"Unknown stream: {stream}")

    process = _spawn(
        argv,
        env,
        cwd,
        text=True,
        encoding="utf-8",
        errors="replace",
        **{stream: subprocess.PIPE},
    )
    pipe = getattr(process, stream)
    if cancel is not None:
        threading.Thread(
            target=_terminate_on_cancel,
            args=(process, cancel),
            name=f"xwinkit-cancel-{process.pid}",
            daemon=True,
        ).start()
    try:
        for line in pipe:
            on_line(line.rstrip("\n"))
    except KeyboardInterrupt:
        _terminate(process)
        raise
    finally:
        pipe.close()
    exit_code = _wait(process)
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(str(argv[0]))
    return exit_code


def _terminate_on_cancel(process: subprocess.Popen, cancel: threading.Event) -> None:
    while process.poll() is None:
        if cancel.wait(CANCEL_POLL_SECONDS):
            _terminate(process)
            return


def capture_output(
    argv: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
) -> Optional[str]:
    """
    Run a short query command and return its stdout.

    Returns:
        Stripped stdout, or None if the program is missing or exits non-zero
    """
    try:
        result = subprocess.run(
            [str(a) for a in argv],
            env=dict(env) if env is not None else None,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.debug(f"Could not run {argv[0]}: {e}")
        return None

    if result.returncode != 0:
        logger.debug(
            f"{argv[0]} exited with {result.returncode}: {result.stderr.strip()}"
        )
        return None
    return result.stdout.strip()


def find_program(name: str, path: Optional[str] = None) -> Optional[Path]:
    """Locate ``name`` on ``path`` (defaults to the current PATH)."""
    found = shutil.which(name, path=path)
    return Path(found) if found else None
