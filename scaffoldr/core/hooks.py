"""Lifecycle hook execution (pre/post generate, post install)."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Iterable, Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs hook commands as subprocesses rooted at a working directory.

    Commands are split with ``shlex`` and executed without a shell.
    """

    def __init__(self, timeout: float | None = 300.0) -> None:
        self.timeout = timeout

    def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run one hook; raises ``CalledProcessError`` on a non-zero exit."""
        logger.debug(f"Running hook in {cwd}: {command}")
        result = subprocess.run(
            shlex.split(command),
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode, result.args, output=result.stdout, stderr=result.stderr
            )
        return result

    def run_all(
        self,
        commands: Iterable[str],
        cwd: Path,
        stage: str,
        env: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Run hooks best-effort and return the commands that failed."""
        failures: list[str] = []
        for command in commands:
            try:
                self.run(command, cwd, env)
            except subprocess.CalledProcessError as exc:
                detail = (exc.stderr or exc.output or "").strip()
                logger.warning(
                    f"{stage} hook failed with exit code {exc.returncode}: {command}"
                    + (f" ({detail})" if detail else "")
                )
                failures.append(command)
            except (OSError, ValueError, subprocess.TimeoutExpired) as exc:
                logger.warning(f"{stage} hook could not run: {command} ({exc})")
                failures.append(command)
        return failures
