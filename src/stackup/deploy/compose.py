"""``docker compose`` client for stackup.

Builds structured argument vectors for every container-runtime operation the
orchestrator needs (start, stop, remove, tear down, status, logs, exec) and
runs them through :class:`~stackup.deploy.process.ProcessRunner`.

Key Concepts:
    ComposeClient: One instance per run, bound to the project's compose
        files and project name.
    UnitStatus: Parsed row of ``docker compose ps --format json``.
    HEALTHY_MARKER: The marker compose prints in a unit's status string
        once its healthcheck passes (``"Up 2 minutes (healthy)"``).

Architecture Decisions:
    - Argument vectors only: service names and environment values are
      separate argv entries, never concatenated into a shell string.
    - Lifecycle methods return ``ProcessResult``; callers decide whether a
      failure is fatal (``ComposeClient.check``).
    - ``ps`` output is accepted both as a JSON array (older compose) and as
      one JSON object per line (compose v2.21+).

Related Modules:
    - :mod:`stackup.deploy.process` — Executes the commands
    - :mod:`stackup.deploy.health` — Polls ``unit_status``
    - :mod:`stackup.deploy.psql` — Runs SQL through ``exec``

Tags:
    docker, compose, containers, lifecycle, status
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from stackup.core.errors import CommandError, ProcessSpawnError, RuntimeUnavailableError
from stackup.core.logging import get_logger
from stackup.core.settings import StackSettings
from stackup.deploy.process import ProcessResult, ProcessRunner

logger = get_logger(__name__)

HEALTHY_MARKER = "(healthy)"


@dataclass(frozen=True)
class UnitStatus:
    """Status of one compose service as reported by ``ps``."""

    service: str
    name: str = ""
    state: str = ""
    health: str = ""
    status: str = ""

    @property
    def healthy(self) -> bool:
        return self.health == "healthy" or HEALTHY_MARKER in self.status

    @property
    def running(self) -> bool:
        return self.state == "running"

    @property
    def summary(self) -> str:
        """Normalised status: healthy, unhealthy, starting, running, exited or not_found."""
        return map_compose_status(self.state, self.health, self.status)

    @classmethod
    def from_ps(cls, data: dict[str, Any]) -> UnitStatus:
        return cls(
            service=data.get("Service", data.get("Name", "unknown")),
            name=data.get("Name", ""),
            state=str(data.get("State", "")).lower(),
            health=str(data.get("Health", "")).lower(),
            status=data.get("Status", ""),
        )


def map_compose_status(state: str, health: str = "", status: str = "") -> str:
    """Map compose state/health to a single status word."""
    state = state.lower()
    health = health.lower()
    if health == "healthy" or HEALTHY_MARKER in status:
        return "healthy"
    if health == "unhealthy" or "(unhealthy)" in status:
        return "unhealthy"
    if health == "starting" or "starting" in status or state == "created":
        return "starting"
    if state == "running":
        return "running"
    if "exit" in state or state == "dead":
        return "exited"
    return "not_found"


def parse_ps_output(stdout: str) -> list[UnitStatus]:
    """Parse ``docker compose ps --format json`` output."""
    text = stdout.strip()
    if not text:
        return []
    rows: list[dict[str, Any]] = []
    if text.startswith("["):
        try:
            rows = [row for row in json.loads(text) if isinstance(row, dict)]
        except json.JSONDecodeError:
            rows = []
    else:
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                rows.append(data)
    return [UnitStatus.from_ps(row) for row in rows]


class ComposeClient:
    """Drives a compose project through the ``docker compose`` CLI.

    Parameters
    ----------
    runner
        Process runner used for every command.
    compose_files
        Compose files passed as ``-f`` flags (compose default lookup if empty).
    project_name
        Optional ``--project-name``.
    docker
        Name or path of the docker binary.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        compose_files: Sequence[str] = (),
        project_name: str | None = None,
        docker: str = "docker",
    ) -> None:
        self.runner = runner
        self.compose_files = list(compose_files)
        self.project_name = project_name
        self.docker = docker

    @classmethod
    def from_settings(cls, settings: StackSettings, runner: ProcessRunner | None = None) -> ComposeClient:
        runner = runner or ProcessRunner(cwd=settings.project_dir, default_timeout=settings.command_timeout)
        return cls(
            runner,
            compose_files=settings.compose_files,
            project_name=settings.compose_project_name,
        )

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def base_args(self) -> list[str]:
        args = ["compose"]
        for path in self.compose_files:
            args.extend(["-f", path])
        if self.project_name:
            args.extend(["--project-name", self.project_name])
        return args

    def compose(
        self,
        *args: str,
        timeout: float | None = None,
        input: str | None = None,
        secrets: Sequence[str] = (),
    ) -> ProcessResult:
        """Run ``docker compose <args>``."""
        return self.runner.run(
            self.docker,
            [*self.base_args(), *args],
            timeout=timeout,
            input=input,
            secrets=secrets,
        )

    @staticmethod
    def check(result: ProcessResult, action: str) -> ProcessResult:
        """Raise :class:`CommandError` unless ``result`` succeeded."""
        if not result.ok:
            raise CommandError(
                f"{action} failed (exit {result.exit_code}): {result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def ensure_available(self) -> None:
        """Raise :class:`RuntimeUnavailableError` if the engine is unreachable."""
        try:
            result = self.runner.run(self.docker, ["info"], timeout=30)
        except ProcessSpawnError as exc:
            raise RuntimeUnavailableError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH.",
                cause=exc,
            ) from exc
        if not result.ok:
            raise RuntimeUnavailableError(
                "Docker is not running or the current user lacks permission: "
                + (result.stderr.strip() or f"exit {result.exit_code}")
            )

    def prune_networks(self) -> ProcessResult:
        return self.runner.run(self.docker, ["network", "prune", "--force"])

    def remove_volumes(self, *volumes: str) -> ProcessResult:
        if not volumes:
            return ProcessResult(exit_code=0)
        return self.runner.run(self.docker, ["volume", "rm", "--force", *volumes])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def up(self, *services: str, force_recreate: bool = False) -> ProcessResult:
        args = ["up", "--detach"]
        if force_recreate:
            args.append("--force-recreate")
        logger.info("compose.up", services=list(services))
        return self.compose(*args, *services)

    def stop(self, *services: str) -> ProcessResult:
        return self.compose("stop", *services)

    def rm(self, *services: str) -> ProcessResult:
        return self.compose("rm", "--force", "--stop", *services)

    def restart(self, *services: str) -> ProcessResult:
        logger.info("compose.restart", services=list(services))
        return self.compose("restart", *services)

    def down(self, *, volumes: bool = False, remove_orphans: bool = False) -> ProcessResult:
        args = ["down"]
        if volumes:
            args.append("--volumes")
        if remove_orphans:
            args.append("--remove-orphans")
        logger.info("compose.down", volumes=volumes)
        return self.compose(*args)

    # ------------------------------------------------------------------
    # Status, logs, exec
    # ------------------------------------------------------------------

    def ps(self, *services: str) -> list[UnitStatus]:
        """List unit statuses (all services if none are named)."""
        result = self.compose("ps", "--all", "--format", "json", *services, timeout=30)
        if not result.ok:
            raise CommandError(
                f"compose ps failed (exit {result.exit_code}): {result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return parse_ps_output(result.stdout)

    def unit_status(self, service: str) -> UnitStatus:
        """Status of a single unit; ``not_found`` if compose does not list it."""
        for unit in self.ps(service):
            if unit.service == service:
                return unit
        return UnitStatus(service=service)

    def logs(self, service: str | None = None, tail: int = 50) -> str:
        args = ["logs", "--no-color", f"--tail={tail}"]
        if service:
            args.append(service)
        result = self.compose(*args, timeout=60)
        self.check(result, f"compose logs {service or ''}".strip())
        return result.output

    def exec(
        self,
        service: str,
        command: Sequence[str],
        *,
        input: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        secrets: Sequence[str] = (),
    ) -> ProcessResult:
        """Run ``command`` inside ``service`` without a TTY."""
        args = ["exec", "-T"]
        for key, value in (env or {}).items():
            args.extend(["--env", f"{key}={value}"])
        args.append(service)
        args.extend(command)
        return self.compose(*args, timeout=timeout, input=input, secrets=secrets)
