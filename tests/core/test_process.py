"""
Unit tests for collaborator process handling.

Real child processes are started through the running Python interpreter so
the tests do not depend on cargo or wine being installed.
"""

import os
import subprocess
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from xwinkit.core.exceptions import OperationCancelled, SpawnError
from xwinkit.core.process import (
    capture_output,
    find_program,
    run_collaborator,
    stream_collaborator,
)

PYTHON = sys.executable


@pytest.mark.unit
class TestRunCollaborator:
    """Tests for run_collaborator."""

    def test_returns_exit_code(self):
        assert run_collaborator([PYTHON, "-c", "import sys; sys.exit(3)"]) == 3

    def test_success(self):
        assert run_collaborator([PYTHON, "-c", "pass"]) == 0

    def test_env_is_passed(self, tmp_path):
        out = tmp_path / "out.txt"
        code = (
            "import os, sys; "
            "open(sys.argv[1], 'w').write(os.environ['XWIN_TEST_VALUE'])"
        )

        run_collaborator(
            [PYTHON, "-c", code, str(out)],
            env={**os.environ, "XWIN_TEST_VALUE": "hello"},
        )

        assert out.read_text() == "hello"

    def test_missing_program(self):
        with pytest.raises(SpawnError) as exc_info:
            run_collaborator(["xwinkit-definitely-missing-tool"])

        assert exc_info.value.tool_missing is True
        assert exc_info.value.exit_code == 127

    def test_failed_to_start(self):
        with patch(
            "xwinkit.core.process.subprocess.Popen",
            side_effect=PermissionError("denied"),
        ):
            with pytest.raises(SpawnError) as exc_info:
                run_collaborator(["cargo", "build"])

        assert exc_info.value.tool_missing is False
        assert exc_info.value.exit_code == 126

    def test_interrupt_terminates_child(self):
        process = MagicMock()
        process.wait.side_effect = [KeyboardInterrupt, 0]
        process.poll.return_value = None

        with patch("xwinkit.core.process.subprocess.Popen", return_value=process):
            with pytest.raises(KeyboardInterrupt):
                run_collaborator(["cargo", "build"])

        process.terminate.assert_called_once()

    def test_interrupt_kills_after_grace_period(self):
        process = MagicMock()
        process.wait.side_effect = [
            KeyboardInterrupt,
            subprocess.TimeoutExpired("cargo", 5),
            0,
        ]
        process.poll.return_value = None

        with patch("xwinkit.core.process.subprocess.Popen", return_value=process):
            with pytest.raises(KeyboardInterrupt):
                run_collaborator(["cargo", "build"])

        process.kill.assert_called_once()


@pytest.mark.unit
class TestStreamCollaborator:
    """Tests for stream_collaborator."""

    def test_lines_are_delivered(self):
        lines = []
        code = "print('one'); print('two')"

        exit_code = stream_collaborator([PYTHON, "-c", code], lines.append)

        assert exit_code == 0
        assert lines == ["one", "two"]

    def test_stderr_stream(self):
        lines = []
        code = "import sys; sys.stderr.write('warn\\n'); sys.exit(2)"

        exit_code = stream_collaborator(
            [PYTHON, "-c", code], lines.append, stream="stderr"
        )

        assert exit_code == 2
        assert lines == ["warn"]

    def test_unknown_stream(self):
        with pytest.raises(ValueError):
            stream_collaborator([PYTHON], print, stream="stdin")

    def test_cancel_terminates_child(self):
        cancel = threading.Event()
        code = "import time; print('ready', flush=True); time.sleep(30)"

        def on_line(line):
            if line == "ready":
                cancel.set()

        start = time.monotonic()
        with pytest.raises(OperationCancelled):
            stream_collaborator([PYTHON, "-c", code], on_line, cancel=cancel)

        assert time.monotonic() - start < 20

    def test_unset_cancel_is_ignored(self):
        lines = []

        exit_code = stream_collaborator(
            [PYTHON, "-c", "print('done')"], lines.append, cancel=threading.Event()
        )

        assert exit_code == 0
        assert lines == ["done"]


@pytest.mark.unit
class TestCaptureOutput:
    """Tests for capture_output."""

    def test_returns_stripped_stdout(self):
        assert capture_output([PYTHON, "-c", "print('  value  ')"]) == "value"

    def test_none_on_failure(self):
        assert capture_output([PYTHON, "-c", "import sys; sys.exit(1)"]) is None

    def test_none_when_missing(self):
        assert capture_output(["xwinkit-definitely-missing-tool"]) is None


@pytest.mark.unit
class TestFindProgram:
    """Tests for find_program."""

    def test_finds_on_path(self, tmp_path):
        tool = tmp_path / "clang-cl"
        tool.write_text("#!/bin/sh\n")
        tool.chmod(0o755)

        assert find_program("clang-cl", str(tmp_path)) == tool

    def test_missing(self, tmp_path):
        assert find_program("clang-cl", str(tmp_path)) is None
