"""SQL execution inside the database unit.

There is no direct network path from the operator host to the data store,
so SQL is run with ``psql`` through ``docker compose exec -T``. Statements
are sent on stdin and every identifier or literal that comes from
configuration is bound as a psql variable::

    psql -v ON_ERROR_STOP=1 -v role=dhis -v password=... -f -
    CREATE ROLE :"role" WITH LOGIN PASSWORD :'password';

psql quotes ``:"name"`` as an identifier and ``:'name'`` as a literal, so a
credential is never spliced into SQL text. Variable values travel as
separate argv entries and are masked in logs.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from pydantic import SecretStr

from stackup.core.errors import CommandError
from stackup.core.settings import StackSettings
from stackup.deploy.compose import ComposeClient
from stackup.deploy.process import ProcessResult


@dataclass(frozen=True)
class SqlBatch:
    """SQL text plus the psql variables it references."""

    sql: str
    variables: Mapping[str, str] = field(default_factory=dict)
    database: str = "postgres"


class PsqlClient:
    """Runs SQL batches as a given role inside the database unit."""

    def __init__(
        self,
        compose: ComposeClient,
        service: str,
        superuser: str,
        superuser_password: SecretStr,
        timeout: float = 120,
    ) -> None:
        self.compose = compose
        self.service = service
        self.superuser = superuser
        self.superuser_password = superuser_password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: StackSettings, compose: ComposeClient) -> PsqlClient:
        return cls(
            compose,
            service=settings.database_service,
            superuser=settings.postgres_superuser,
            superuser_password=settings.postgres_password,
        )

    def run(
        self,
        batch: SqlBatch,
        *,
        user: str | None = None,
        password: SecretStr | None = None,
        host: str | None = None,
        secret_variables: tuple[str, ...] = (),
    ) -> ProcessResult:
        """Execute ``batch``; runs as the superuser unless ``user`` is given.

        ``host`` forces a TCP connection (password authentication) instead
        of the unit-local socket.
        """
        user = user or self.superuser
        password = password if password is not None else self.superuser_password
        secret = password.get_secret_value()

        args = ["psql", "-X", "-q", "-t", "-A", "-v", "ON_ERROR_STOP=1", "-U", user, "-d", batch.database]
        if host:
            args.extend(["-h", host])
        for name, value in batch.variables.items():
            args.extend(["-v", f"{name}={value}"])
        args.extend(["-f", "-"])

        secrets = [secret, *(batch.variables[name] for name in secret_variables)]
        return self.compose.exec(
            self.service,
            args,
            input=batch.sql,
            env={"PGPASSWORD": secret},
            timeout=self.timeout,
            secrets=secrets,
        )

    def query(self, batch: SqlBatch, **kwargs) -> list[str]:
        """Run a query and return the first column of each row.

        Raises
        ------
        CommandError
            If psql exits non-zero.
        """
        result = self.run(batch, **kwargs)
        if not result.ok:
            raise CommandError(
                f"Query failed: {result.stderr.strip() or result.stdout.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return [line.split("|", 1)[0].strip() for line in result.stdout.splitlines() if line.strip()]

    def exists(self, batch: SqlBatch, **kwargs) -> bool:
        """True if the query returns at least one row."""
        return bool(self.query(batch, **kwargs))

    def is_ready(self) -> bool:
        """``pg_isready`` inside the unit."""
        result = self.compose.exec(self.service, ["pg_isready", "-U", self.superuser], timeout=30)
        return result.ok
