"""Process runner for stackup.

Every interaction with the outside world (container lifecycle, status
queries, SQL execution) goes through :class:`ProcessRunner`. It runs an
argument vector, never a shell string, and reports the outcome as a
:class:`ProcessResult` instead of raising on a non-zero exit.

Key Concepts:
    ProcessRunner.run(): ``(command, args) -> ProcessResult``. Non-zero exit
        and timeouts are values; only a spawn failure raises.
    ProcessResult: Frozen dataclass with ``exit_code``, ``stdout``,
        ``stderr``, ``duration_seconds`` and ``timed_out``.
    ProcessSpawnError: The binary is missing or could not be executed. This
        is distinct from "the command ran but failed".

Architecture Decisions:
    - subprocess only: the runtime is driven through its CLI, the same way
      the rest of the toolchain would be driven by an operator.
    - Secrets are passed as arguments where the downstream CLI requires it,
      but are masked in the debug log of the command line.

Related Modules:
    - :mod:`stackup.deploy.compose` — Builds ``docker compose`` argument vectors
    - :mod:`stackup.deploy.psql` — Builds ``psql`` invocations

Tags:
    subprocess, process, runner, exit-code
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from stackup.core.errors import ProcessSpawnError
from stackup.core.logging import get_logger

logger = get_logger(__name__)

MASK = "***"


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stdout and stderr combined, for diagnostics."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


def render_command(argv: Sequence[str], secrets: Sequence[str] = ()) -> str:
    """Render an argument vector for logs, masking every secret value."""
    rendered = " ".join(argv)
    for secret in secrets:
        if secret:
            rendered = rendered.replace(secret, MASK)
    return rendered


class ProcessRunner:
    """Runs external commands and captures exit status and output.

    Parameters
    ----------
    cwd
        Default working directory for every command.
    env
        Extra environment variables merged over ``os.environ``.
    default_timeout
        Timeout (seconds) used when a call does not pass one.
    """

    def __init__(
        self,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        default_timeout: float | None = 300,
    ) -> None:
        self.cwd = Path(cwd) if cwd else None
        self.env = dict(env or {})
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        capture_output: bool = True,
        timeout: float | None = None,
        input: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | Path | None = None,
        secrets: Sequence[str] = (),
    ) -> ProcessResult:
        """Run ``command`` with ``args``.

        Returns
        -------
        ProcessResult
            Non-zero exit and timeout are reported, never raised.

        Raises
        ------
        ProcessSpawnError
            If the process could not be started at all.
        """
        argv = [command, *args]
        timeout = self.default_timeout if timeout is None else timeout
        full_env = {**os.environ, **self.env, **(env or {})}
        workdir = cwd or self.cwd

        logger.debug("process.exec", cmd=render_command(argv, secrets), cwd=str(workdir) if workdir else None)

        start = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                capture_output=capture_output,
                text=True,
                timeout=timeout,
                input=input,
                cwd=str(workdir) if workdir else None,
                env=full_env,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("process.timeout", cmd=render_command(argv, secrets), timeout=timeout)
            return ProcessResult(
                exit_code=-1,
                stdout=_text(exc.stdout),
                stderr=_text(exc.stderr) or f"Command timed out after {timeout}s",
                duration_seconds=time.monotonic() - start,
                timed_out=True,
            )
        except OSError as exc:
            raise ProcessSpawnError(
                f"Could not start {command!r}: {exc}",
                cause=exc,
            ).with_context(command=command)

        result = ProcessResult(
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_seconds=time.monotonic() - start,
        )
        if not result.ok:
            logger.debug("process.failed", cmd=render_command(argv, secrets), exit_code=result.exit_code)
        return result


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
