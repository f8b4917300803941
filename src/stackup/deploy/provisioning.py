"""Idempotent database provisioning for stackup.

Brings a fresh or partially initialised PostgreSQL data store to the
configured end state. Provisioning may run against a store that already has
objects from an earlier (possibly interrupted) run, so every step is either
"create if missing" or "converge to the configured value"; nothing is
dropped.

Why This Matters:
    The application refuses to start when its role cannot log in or when a
    required extension is missing, and it starts but misbehaves when the
    schema's default privileges are wrong. Running each step independently,
    recording its outcome and deciding "already satisfied" from the catalog
    (not from error text) makes a re-run after a partial failure safe and
    makes the outcome auditable.

Key Concepts:
    ProvisioningEngine.provision(): Ordered steps, each producing a
        ``StepResult`` with outcome APPLIED, SATISFIED, FAILED or SKIPPED.
    ProvisioningEngine.verify(): Re-reads the catalog and authenticates as
        the primary role over TCP. Returns a ``VerificationResult`` whose
        ``reason`` separates an unreachable store, missing extensions, a
        pg_trgm whose similarity operator fails, and a credential mismatch.
    CredentialPolicy: ``reset`` re-applies the configured password to an
        existing role on every run; ``preserve`` leaves it untouched.

Step order::

    connection → primary_role → database → privileges
        → extension:<name> (each independent) → metrics_role

Related Modules:
    - :mod:`stackup.deploy.psql` — Executes the SQL batches
    - :mod:`stackup.deploy.orchestrator` — Runs provision/verify as stages

Tags:
    provisioning, postgres, idempotent, roles, extensions, privileges
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field, SecretStr

from stackup.core.errors import CommandError, StackError
from stackup.core.logging import get_logger
from stackup.core.settings import CredentialPolicy, StackSettings
from stackup.deploy.psql import PsqlClient, SqlBatch

logger = get_logger(__name__)

EXTENSION_PREFIX = "extension:"

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

SELECT_ONE = "SELECT 1;"

ROLE_EXISTS = "SELECT 1 FROM pg_roles WHERE rolname = :'role';"
CREATE_ROLE = "CREATE ROLE :\"role\" WITH LOGIN PASSWORD :'password';"
ALTER_ROLE_PASSWORD = "ALTER ROLE :\"role\" WITH LOGIN PASSWORD :'password';"

DATABASE_EXISTS = "SELECT 1 FROM pg_database WHERE datname = :'database';"
CREATE_DATABASE = 'CREATE DATABASE :"database" OWNER :"role";'
ALTER_DATABASE_OWNER = 'ALTER DATABASE :"database" OWNER TO :"role";'

GRANT_PRIVILEGES = """\
GRANT ALL PRIVILEGES ON DATABASE :"database" TO :"role";
GRANT CREATE ON DATABASE :"database" TO :"role";
ALTER SCHEMA public OWNER TO :"role";
GRANT ALL PRIVILEGES ON SCHEMA public TO :"role";
ALTER DEFAULT PRIVILEGES FOR ROLE :"role" IN SCHEMA public GRANT ALL ON TABLES TO :"role";
ALTER DEFAULT PRIVILEGES FOR ROLE :"role" IN SCHEMA public GRANT ALL ON SEQUENCES TO :"role";
ALTER DEFAULT PRIVILEGES FOR ROLE :"role" IN SCHEMA public GRANT ALL ON FUNCTIONS TO :"role";
ALTER DEFAULT PRIVILEGES FOR ROLE :"role" IN SCHEMA public GRANT ALL ON TYPES TO :"role";
ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TABLES TO :"role";
ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON SEQUENCES TO :"role";
ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON FUNCTIONS TO :"role";
ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TYPES TO :"role";
ALTER ROLE :"role" SET search_path TO public;
"""

EXTENSION_EXISTS = "SELECT 1 FROM pg_extension WHERE extname = :'extension';"
CREATE_EXTENSION = 'CREATE EXTENSION IF NOT EXISTS :"extension";'
LIST_EXTENSIONS = "SELECT extname FROM pg_extension ORDER BY extname;"
TRGM_SIMILARITY = "SELECT 'test' % 'test';"

GRANT_MONITORING = """\
GRANT pg_monitor TO :"role";
GRANT CONNECT ON DATABASE :"database" TO :"role";
"""


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class StepOutcome(str, Enum):
    APPLIED = "APPLIED"  # Change made
    SATISFIED = "SATISFIED"  # Already in the desired state
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # Prerequisite step failed


class StepResult(BaseModel):
    name: str
    outcome: StepOutcome
    message: str = ""
    error: str | None = None


class ProvisioningResult(BaseModel):
    """Outcome of :meth:`ProvisioningEngine.provision`."""

    steps: list[StepResult] = Field(default_factory=list)

    @property
    def failed_steps(self) -> list[str]:
        return [s.name for s in self.steps if s.outcome == StepOutcome.FAILED]

    @property
    def extension_failures(self) -> list[str]:
        return [
            name.removeprefix(EXTENSION_PREFIX) for name in self.failed_steps if name.startswith(EXTENSION_PREFIX)
        ]

    @property
    def fatal_failures(self) -> list[str]:
        """Failed steps other than extension installs."""
        return [name for name in self.failed_steps if not name.startswith(EXTENSION_PREFIX)]

    @property
    def success(self) -> bool:
        return not self.failed_steps

    def step(self, name: str) -> StepResult | None:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    def warnings(self) -> list[str]:
        return [
            f"extension {s.name.removeprefix(EXTENSION_PREFIX)} not installed: {s.error}"
            for s in self.steps
            if s.outcome == StepOutcome.FAILED and s.name.startswith(EXTENSION_PREFIX)
        ]


class VerificationReason(str, Enum):
    OK = "OK"
    UNREACHABLE = "UNREACHABLE"
    MISSING_EXTENSIONS = "MISSING_EXTENSIONS"
    EXTENSION_NOT_FUNCTIONAL = "EXTENSION_NOT_FUNCTIONAL"
    CREDENTIAL_MISMATCH = "CREDENTIAL_MISMATCH"


REMEDIATION_HINTS = {
    VerificationReason.UNREACHABLE: (
        "The database unit did not answer queries. Check `stackup fix logs database` "
        "and restart it with `stackup fix restart database`."
    ),
    VerificationReason.MISSING_EXTENSIONS: (
        "Required extensions are missing. Check that the database image ships them "
        "(postgis images for PostGIS) and re-run `stackup fix provision`."
    ),
    VerificationReason.EXTENSION_NOT_FUNCTIONAL: (
        "pg_trgm is installed but its similarity operator does not work. Drop and re-create "
        "the extension in the application database, then re-run `stackup fix provision`."
    ),
    VerificationReason.CREDENTIAL_MISMATCH: (
        "The primary role cannot log in with the configured password. Check that "
        "POSTGRES_DB_PASSWORD in the configuration matches the stored role credential "
        "(CREDENTIAL_POLICY=reset re-applies it on the next provisioning run)."
    ),
}


class VerificationResult(BaseModel):
    """Outcome of :meth:`ProvisioningEngine.verify`."""

    reason: VerificationReason
    message: str = ""
    installed_extensions: list[str] = Field(default_factory=list)
    missing_extensions: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.reason == VerificationReason.OK

    @property
    def remediation(self) -> str:
        return REMEDIATION_HINTS.get(self.reason, "")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ProvisioningEngine:
    """Applies the ordered, idempotent provisioning steps.

    Parameters
    ----------
    settings
        Deployment settings (database, roles, extensions, credential policy).
    psql
        SQL executor bound to the database unit.
    """

    def __init__(self, settings: StackSettings, psql: PsqlClient) -> None:
        self.settings = settings
        self.psql = psql

    @property
    def database(self) -> str:
        return self.settings.postgres_db

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision(self) -> ProvisioningResult:
        """Run every provisioning step in order."""
        result = ProvisioningResult()

        connection = self._step("connection", self._check_connection)
        result.steps.append(connection)
        if connection.outcome == StepOutcome.FAILED:
            return result

        result.steps.append(self._step("primary_role", self._ensure_primary_role))

        database = self._step("database", self._ensure_database)
        result.steps.append(database)
        database_ok = database.outcome != StepOutcome.FAILED

        if database_ok:
            result.steps.append(self._step("privileges", self._grant_privileges))
        else:
            result.steps.append(self._skipped("privileges"))

        for extension in self.settings.extensions:
            name = f"{EXTENSION_PREFIX}{extension}"
            if database_ok:
                result.steps.append(self._step(name, lambda ext=extension: self._install_extension(ext)))
            else:
                result.steps.append(self._skipped(name))

        result.steps.append(self._step("metrics_role", self._ensure_metrics_role))

        logger.info(
            "provision.finished",
            success=result.success,
            failed_steps=result.failed_steps,
        )
        return result

    def _step(self, name: str, action: Callable[[], tuple[StepOutcome, str]]) -> StepResult:
        try:
            outcome, message = action()
        except StackError as exc:
            logger.error("provision.step", step=name, outcome=StepOutcome.FAILED.value, error=exc.message)
            return StepResult(name=name, outcome=StepOutcome.FAILED, error=exc.message)
        logger.info("provision.step", step=name, outcome=outcome.value, detail=message)
        return StepResult(name=name, outcome=outcome, message=message)

    @staticmethod
    def _skipped(name: str) -> StepResult:
        logger.warning("provision.step", step=name, outcome=StepOutcome.SKIPPED.value)
        return StepResult(name=name, outcome=StepOutcome.SKIPPED, message="database step failed")

    def _apply(
        self,
        sql: str,
        *,
        target: str = "postgres",
        secret_variables: tuple[str, ...] = (),
        **variables: str,
    ) -> None:
        batch = SqlBatch(sql, variables, target)
        result = self.psql.run(batch, secret_variables=secret_variables)
        if not result.ok:
            raise CommandError(
                result.stderr.strip() or result.stdout.strip() or f"psql exited {result.exit_code}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

    def _exists(self, sql: str, *, target: str = "postgres", **variables: str) -> bool:
        return self.psql.exists(SqlBatch(sql, variables, target))

    def _check_connection(self) -> tuple[StepOutcome, str]:
        self.psql.query(SqlBatch(SELECT_ONE))
        return StepOutcome.SATISFIED, "data store reachable"

    def _ensure_login_role(self, role: str, password: SecretStr) -> tuple[StepOutcome, str]:
        secret = password.get_secret_value()
        if not self._exists(ROLE_EXISTS, role=role):
            self._apply(CREATE_ROLE, role=role, password=secret, secret_variables=("password",))
            return StepOutcome.APPLIED, f"role {role} created"

        if self.settings.credential_policy == CredentialPolicy.PRESERVE:
            return StepOutcome.SATISFIED, f"role {role} exists, credential preserved"

        self._apply(ALTER_ROLE_PASSWORD, role=role, password=secret, secret_variables=("password",))
        return StepOutcome.APPLIED, f"role {role} exists, credential reset to configured value"

    def _ensure_primary_role(self) -> tuple[StepOutcome, str]:
        return self._ensure_login_role(self.settings.postgres_db_username, self.settings.postgres_db_password)

    def _ensure_database(self) -> tuple[StepOutcome, str]:
        role = self.settings.postgres_db_username
        if not self._exists(DATABASE_EXISTS, database=self.database):
            self._apply(CREATE_DATABASE, database=self.database, role=role)
            return StepOutcome.APPLIED, f"database {self.database} created"
        self._apply(ALTER_DATABASE_OWNER, database=self.database, role=role)
        return StepOutcome.SATISFIED, f"database {self.database} exists, owner {role}"

    def _grant_privileges(self) -> tuple[StepOutcome, str]:
        role = self.settings.postgres_db_username
        self._apply(GRANT_PRIVILEGES, target=self.database, database=self.database, role=role)
        return StepOutcome.APPLIED, f"privileges granted to {role}"

    def _install_extension(self, extension: str) -> tuple[StepOutcome, str]:
        if self._exists(EXTENSION_EXISTS, target=self.database, extension=extension):
            return StepOutcome.SATISFIED, f"extension {extension} already installed"
        self._apply(CREATE_EXTENSION, target=self.database, extension=extension)
        return StepOutcome.APPLIED, f"extension {extension} installed"

    def _ensure_metrics_role(self) -> tuple[StepOutcome, str]:
        role = self.settings.postgres_metrics_username
        outcome, message = self._ensure_login_role(role, self.settings.postgres_metrics_password)
        self._apply(GRANT_MONITORING, database=self.database, role=role)
        return outcome, f"{message}; monitoring privileges granted"

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def installed_extensions(self) -> list[str]:
        return self.psql.query(SqlBatch(LIST_EXTENSIONS, database=self.database))

    def trigram_works(self) -> bool:
        """``'test' % 'test'`` is true when pg_trgm's operator is usable."""
        try:
            rows = self.psql.query(SqlBatch(TRGM_SIMILARITY, database=self.database))
        except StackError as exc:
            logger.warning("verify.trigram_failed", error=exc.message)
            return False
        return rows == ["t"]

    def verify(self) -> VerificationResult:
        """Confirm the end state: reachable, required extensions present and
        usable, primary role can log in."""
        try:
            self.psql.query(SqlBatch(SELECT_ONE, database=self.database))
            installed = self.installed_extensions()
        except StackError as exc:
            logger.error("verify.unreachable", error=exc.message)
            return VerificationResult(reason=VerificationReason.UNREACHABLE, message=exc.message)

        missing = [ext for ext in self.settings.required_extensions if ext not in installed]
        if missing:
            logger.error("verify.missing_extensions", missing=missing)
            return VerificationResult(
                reason=VerificationReason.MISSING_EXTENSIONS,
                message=f"missing extensions: {', '.join(missing)}",
                installed_extensions=installed,
                missing_extensions=missing,
            )

        if "pg_trgm" in self.settings.required_extensions and not self.trigram_works():
            logger.error("verify.extension_not_functional", extension="pg_trgm")
            return VerificationResult(
                reason=VerificationReason.EXTENSION_NOT_FUNCTIONAL,
                message="pg_trgm is installed but the similarity operator failed",
                installed_extensions=installed,
            )

        role = self.settings.postgres_db_username
        auth = self.psql.run(
            SqlBatch(SELECT_ONE, database=self.database),
            user=role,
            password=self.settings.postgres_db_password,
            host="127.0.0.1",
        )
        if not auth.ok or auth.stdout.strip() != "1":
            logger.error("verify.credential_mismatch", role=role, exit_code=auth.exit_code)
            return VerificationResult(
                reason=VerificationReason.CREDENTIAL_MISMATCH,
                message=f"role {role} cannot authenticate: {auth.stderr.strip() or auth.stdout.strip()}",
                installed_extensions=installed,
            )

        logger.info("verify.ok", role=role, extensions=len(installed))
        return VerificationResult(
            reason=VerificationReason.OK,
            message=f"role {role} authenticated, {len(installed)} extensions installed",
            installed_extensions=installed,
        )
