"""
test_hooks.py - HookRunner subprocess tests
"""

import shlex
import subprocess
import sys

import pytest

from scaffoldr.core.hooks import HookRunner

PYTHON = shlex.quote(sys.executable)


class TestHookRunner:
    def test_runs_in_working_directory(self, tmp_path):
        command = f"{PYTHON} -c \"open('marker.txt', 'w').write('ok')\""

        HookRunner().run(command, tmp_path)

        assert (tmp_path / "marker.txt").read_text() == "ok"

    def test_non_zero_exit_raises(self, tmp_path):
        with pytest.raises(subprocess.CalledProcessError):
            HookRunner().run(f"{PYTHON} -c 'raise SystemExit(3)'", tmp_path)

    def test_run_all_collects_failures(self, tmp_path, caplog):
        commands = [
            f"{PYTHON} -c 'pass'",
            f"{PYTHON} -c 'raise SystemExit(1)'",
            "definitely-not-a-real-command-xyz",
            "'unterminated",
        ]

        failed = HookRunner().run_all(commands, tmp_path, "post-generate")

        assert failed == commands[1:]
        assert "post-generate hook failed with exit code 1" in caplog.text

    def test_timeout(self, tmp_path):
        runner = HookRunner(timeout=0.5)

        failed = runner.run_all(
            [f"{PYTHON} -c 'import time; time.sleep(5)'"], tmp_path, "pre-generate"
        )

        assert len(failed) == 1
