"""
In-memory fakes for the docker CLI, the database unit, and time.

``FakeDocker`` stands in for :class:`stackup.deploy.process.ProcessRunner`:
it interprets the argument vectors the real ``ComposeClient`` builds
(``docker info``, ``docker compose up/ps/logs/exec ...``) and keeps track of
which units are running. ``psql`` invocations inside ``exec`` are passed to
``FakePostgres``, which keeps a tiny catalog (roles with passwords,
databases, installed extensions) and interprets the provisioning SQL.

Usage::

    docker = FakeDocker(superuser_password="super-secret")
    compose = ComposeClient(docker)
    docker.never_healthy.add("app")
    docker.postgres.unavailable_extensions.add("postgis_tiger_geocoder")
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field

from stackup.core.errors import ProcessSpawnError
from stackup.deploy import provisioning as sql
from stackup.deploy.process import ProcessResult


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now_value = 0.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.now_value

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_value += seconds


def ok(stdout: str = "") -> ProcessResult:
    return ProcessResult(exit_code=0, stdout=stdout)


def error(stderr: str, exit_code: int = 1) -> ProcessResult:
    return ProcessResult(exit_code=exit_code, stderr=stderr)


@dataclass
class FakePostgres:
    """Catalog state of the database unit."""

    superuser: str = "postgres"
    superuser_password: str = "super-secret"
    roles: dict[str, str] = field(default_factory=dict)
    databases: dict[str, str] = field(default_factory=dict)
    extensions: dict[str, set[str]] = field(default_factory=dict)
    unavailable_extensions: set[str] = field(default_factory=set)
    broken_extensions: set[str] = field(default_factory=set)
    grants: list[tuple[str, dict[str, str]]] = field(default_factory=list)
    statements: list[tuple[str, dict[str, str]]] = field(default_factory=list)
    reachable: bool = True

    def __post_init__(self) -> None:
        self.roles.setdefault(self.superuser, self.superuser_password)
        self.databases.setdefault("postgres", self.superuser)

    def execute(
        self,
        *,
        user: str,
        password: str | None,
        host: str | None,
        database: str,
        variables: dict[str, str],
        text: str,
    ) -> ProcessResult:
        if not self.reachable:
            return error("psql: error: connection to server failed", exit_code=2)
        if user not in self.roles:
            return error(f'psql: error: FATAL:  role "{user}" does not exist', exit_code=2)
        if host and self.roles[user] != password:
            return error(f'psql: error: FATAL:  password authentication failed for user "{user}"', exit_code=2)
        if database not in self.databases:
            return error(f'psql: error: FATAL:  database "{database}" does not exist', exit_code=2)

        self.statements.append((text, dict(variables)))
        role = variables.get("role", "")
        name = variables.get("database", "")
        extension = variables.get("extension", "")
        installed = self.extensions.setdefault(database, set())

        if text == sql.SELECT_ONE:
            return ok("1\n")
        if text == sql.ROLE_EXISTS:
            return ok("1\n" if role in self.roles else "")
        if text == sql.CREATE_ROLE:
            if role in self.roles:
                return error(f'ERROR:  role "{role}" already exists')
            self.roles[role] = variables["password"]
            return ok()
        if text == sql.ALTER_ROLE_PASSWORD:
            self.roles[role] = variables["password"]
            return ok()
        if text == sql.DATABASE_EXISTS:
            return ok("1\n" if name in self.databases else "")
        if text == sql.CREATE_DATABASE:
            self.databases[name] = role
            return ok()
        if text == sql.ALTER_DATABASE_OWNER:
            self.databases[name] = role
            return ok()
        if text == sql.EXTENSION_EXISTS:
            return ok("1\n" if extension in installed else "")
        if text == sql.CREATE_EXTENSION:
            if extension in self.unavailable_extensions:
                return error(f'ERROR:  extension "{extension}" is not available', exit_code=3)
            installed.add(extension)
            return ok()
        if text == sql.TRGM_SIMILARITY:
            if "pg_trgm" not in installed or "pg_trgm" in self.broken_extensions:
                return error("ERROR:  operator does not exist: unknown % unknown")
            return ok("t\n")
        if text == sql.LIST_EXTENSIONS:
            return ok("".join(f"{ext}\n" for ext in sorted(installed | {"plpgsql"})))
        if text in (sql.GRANT_PRIVILEGES, sql.GRANT_MONITORING):
            self.grants.append((text, dict(variables)))
            return ok()
        return error(f"unrecognised statement: {text!r}")


class FakeDocker:
    """Scripted stand-in for ``ProcessRunner`` driving ``docker``.

    Attributes
    ----------
    available
        ``docker info`` succeeds.
    installed
        The docker binary exists (``False`` raises ProcessSpawnError).
    never_healthy
        Units that run but never report healthy.
    fail_up
        Units whose ``compose up`` exits non-zero.
    health_delay
        Number of ``ps`` observations before a unit reports healthy.
    """

    def __init__(self, superuser_password: str = "super-secret") -> None:
        self.calls: list[list[str]] = []
        self.available = True
        self.installed = True
        self.running: dict[str, int] = {}
        self.never_healthy: set[str] = set()
        self.fail_up: set[str] = set()
        self.health_delay: dict[str, int] = {}
        self.log_text = "starting\nERROR: could not connect to database\nretrying\n"
        self.postgres = FakePostgres(superuser_password=superuser_password)
        self.database_service = "database"

    # ------------------------------------------------------------------

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        capture_output: bool = True,
        timeout: float | None = None,
        input: str | None = None,
        env: dict[str, str] | None = None,
        cwd=None,
        secrets: Sequence[str] = (),
    ) -> ProcessResult:
        argv = [command, *args]
        self.calls.append(argv)
        if not self.installed:
            raise ProcessSpawnError(f"Could not start {command!r}")

        if not args:
            return error("usage")
        if args[0] == "info":
            return ok("Server Version: 27.0") if self.available else error("Cannot connect to the Docker daemon")
        if args[0] in ("network", "volume"):
            return ok()
        if args[0] == "compose":
            return self._compose(self._strip_base(list(args[1:])), input=input)
        return error(f"unknown command {args[0]}")

    def compose_calls(self, subcommand: str) -> list[list[str]]:
        """Compose invocations of ``subcommand`` (base args stripped)."""
        found = []
        for argv in self.calls:
            if len(argv) > 1 and argv[1] == "compose":
                rest = self._strip_base(argv[2:])
                if rest and rest[0] == subcommand:
                    found.append(rest)
        return found

    def started_units(self) -> list[str]:
        """Units passed to ``compose up``, in call order."""
        units = []
        for rest in self.compose_calls("up"):
            units.extend(a for a in rest[1:] if not a.startswith("-"))
        return units

    # ------------------------------------------------------------------

    @staticmethod
    def _strip_base(args: list[str]) -> list[str]:
        while args and args[0] in ("-f", "--project-name"):
            args = args[2:]
        return args

    def _compose(self, args: list[str], *, input: str | None) -> ProcessResult:
        sub, rest = args[0], args[1:]
        services = [a for a in rest if not a.startswith("-")]

        if sub == "up":
            for service in services:
                if service in self.fail_up:
                    return error(f"Error response from daemon: failed to start {service}")
            for service in services or list(self.running):
                self.running[service] = 0
            return ok()
        if sub in ("stop", "rm"):
            for service in services:
                self.running.pop(service, None)
            return ok()
        if sub == "restart":
            return ok()
        if sub == "down":
            self.running.clear()
            return ok()
        if sub == "ps":
            services = [a for a in rest if not a.startswith("-") and a != "json"]
            return ok(self._ps(services))
        if sub == "logs":
            return ok(self.log_text)
        if sub == "exec":
            return self._exec(rest, input=input)
        return error(f"unknown compose command {sub}")

    def _ps(self, services: list[str]) -> str:
        rows = []
        for service in services or list(self.running):
            if service not in self.running:
                continue
            self.running[service] += 1
            healthy = service not in self.never_healthy and self.running[service] > self.health_delay.get(service, 0)
            health = "healthy" if healthy else "starting"
            rows.append(
                json.dumps(
                    {
                        "Service": service,
                        "Name": f"stack-{service}-1",
                        "State": "running",
                        "Health": health,
                        "Status": f"Up 1 minute ({health})",
                    }
                )
            )
        return "\n".join(rows)

    def _exec(self, rest: list[str], *, input: str | None) -> ProcessResult:
        env: dict[str, str] = {}
        i = 0
        while i < len(rest) and rest[i].startswith("-"):
            if rest[i] == "--env":
                key, value = rest[i + 1].split("=", 1)
                env[key] = value
                i += 2
            else:
                i += 1
        service, command = rest[i], rest[i + 1:]

        if service not in self.running:
            return error(f"service {service!r} is not running")
        if command[0] == "pg_isready":
            return ok("/var/run/postgresql:5432 - accepting connections") if self.postgres.reachable else error(
                "no response", exit_code=2
            )
        if command[0] == "psql":
            return self._psql(command[1:], env, input or "")
        return error(f"unknown exec command {command[0]}")

    def _psql(self, args: list[str], env: dict[str, str], text: str) -> ProcessResult:
        user, database, host = "", "", None
        variables: dict[str, str] = {}
        i = 0
        while i < len(args):
            flag = args[i]
            if flag in ("-X", "-q", "-t", "-A"):
                i += 1
                continue
            value = args[i + 1]
            if flag == "-U":
                user = value
            elif flag == "-d":
                database = value
            elif flag == "-h":
                host = value
            elif flag == "-v":
                name, val = value.split("=", 1)
                if name != "ON_ERROR_STOP":
                    variables[name] = val
            i += 2
        return self.postgres.execute(
            user=user,
            password=env.get("PGPASSWORD"),
            host=host,
            database=database,
            variables=variables,
            text=text,
        )
