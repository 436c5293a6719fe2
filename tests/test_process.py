"""Tests for devstory.lib.process against real short-lived children."""

import sys
import threading

import pytest

from devstory.lib.errors import ExecutionCancelled
from devstory.lib.process import run_process

PY = sys.executable


class TestRunProcess:
    """Tests for run_process()."""

    def test_captures_output(self):
        result = run_process([PY, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])
        assert result.success
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"

    def test_nonzero_exit(self):
        result = run_process([PY, "-c", "raise SystemExit(3)"])
        assert result.returncode == 3
        assert not result.success

    def test_stdin(self):
        result = run_process([PY, "-c", "import sys; print(sys.stdin.read().upper())"], input="hello")
        assert result.stdout.strip() == "HELLO"

    def test_cwd_and_env(self, tmp_path):
        result = run_process(
            [PY, "-c", "import os; print(os.getcwd()); print(os.environ['DEVSTORY_X'])"],
            cwd=tmp_path,
            env={"DEVSTORY_X": "1"},
        )
        lines = result.stdout.splitlines()
        assert lines[1] == "1"

    def test_timeout(self):
        result = run_process([PY, "-c", "import time; time.sleep(30)"], timeout=1)
        assert result.timed_out
        assert result.returncode == -1
        assert "timed out after 1s" in result.stderr

    def test_cancel_event(self):
        event = threading.Event()
        event.set()
        with pytest.raises(ExecutionCancelled):
            run_process([PY, "-c", "import time; time.sleep(30)"], cancel_event=event)

    def test_missing_executable(self):
        with pytest.raises(FileNotFoundError):
            run_process(["devstory-no-such-binary"])
