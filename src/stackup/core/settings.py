"""Deployment settings for stackup.

``StackSettings`` is the single explicit configuration object for a run. It is
built once from the deployment's ``.env`` file (process environment variables
override file values) and passed to every component that needs it; nothing
else in the package reads the environment.

Manifesto:
    Configuration should be explicit, validated, and file-driven.
    - **Pydantic validation:** Type-checked at start-up, before any unit is touched
    - **Required credentials:** The primary-role and superuser passwords have no defaults
    - **Secrets stay secret:** Credentials are ``SecretStr`` and only surface masked

Recognized keys (case-insensitive):
    APP_HOSTNAME, POSTGRES_DB, POSTGRES_DB_USERNAME, POSTGRES_DB_PASSWORD,
    POSTGRES_PASSWORD, POSTGRES_VERSION, DHIS2_VERSION, DHIS2_ADMIN_USERNAME,
    DHIS2_ADMIN_PASSWORD, DHIS2_MONITOR_USERNAME, DHIS2_MONITOR_PASSWORD,
    POSTGRES_METRICS_USERNAME, POSTGRES_METRICS_PASSWORD,
    GRAFANA_ADMIN_PASSWORD, plus the orchestration knobs below. List values
    accept comma-separated strings (``EXTENSIONS=postgis,pg_trgm``).

Tags:
    settings, configuration, pydantic, dotenv, stackup
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from stackup.core.errors import ConfigError

REQUIRED_SECRETS = ("postgres_db_password", "postgres_password")

DEFAULT_EXTENSIONS = [
    "postgis",
    "pg_trgm",
    "btree_gin",
    "postgis_topology",
    "postgis_raster",
    "fuzzystrmatch",
    "postgis_tiger_geocoder",
]

StrList = Annotated[list[str], NoDecode]


class CredentialPolicy(str, Enum):
    """What provisioning does when a login role already exists."""

    RESET = "reset"  # Always set the configured password (configuration wins)
    PRESERVE = "preserve"  # Leave the stored password untouched


def mask_secret(secret: SecretStr | str | None, visible: int = 2) -> str:
    """Mask a credential for display, keeping the first ``visible`` characters."""
    if secret is None:
        return "(not set)"
    value = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
    if not value:
        return "(empty)"
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)


class StackSettings(BaseSettings):
    """Settings for one deployment of the stack."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Deployment identity ──────────────────────────────────────
    app_hostname: str = "dhis.example.org"
    postgres_version: str = "16-master"
    dhis2_version: str = "42"

    # ── Database ─────────────────────────────────────────────────
    postgres_db: str = "dhis"
    postgres_db_username: str = "dhis"
    postgres_db_password: SecretStr
    postgres_superuser: str = "postgres"
    postgres_password: SecretStr
    postgres_metrics_username: str = "metrics"
    postgres_metrics_password: SecretStr = SecretStr("metrics")
    database_port: int = 5432

    # ── Application / dashboards ─────────────────────────────────
    dhis2_admin_username: str = "admin"
    dhis2_admin_password: SecretStr | None = None
    dhis2_monitor_username: str = "monitor"
    dhis2_monitor_password: SecretStr | None = None
    grafana_admin_username: str = "admin"
    grafana_admin_password: SecretStr = SecretStr("admin")
    app_api_url: str = "http://localhost:8080/api/system/info"
    proxy_api_url: str = "http://127.0.0.1:8080"

    # ── Compose project ──────────────────────────────────────────
    project_dir: Path = Path(".")
    compose_files: StrList = Field(default_factory=list)
    compose_project_name: str | None = None
    database_service: str = "database"
    app_service: str = "app"
    proxy_init_service: str | None = "traefik-init"
    proxy_service: str = "traefik"
    monitoring_setup_services: StrList = Field(
        default_factory=lambda: ["update-admin-password", "create-monitoring-user"],
    )
    monitoring_services: StrList = Field(
        default_factory=lambda: ["grafana", "prometheus", "postgres-exporter", "node-exporter", "cadvisor"],
    )
    teardown_volumes: StrList = Field(
        default_factory=lambda: ["dhis2-docker-deployment_postgres", "dhis2-docker-deployment_dhis2"],
    )

    # ── Timing (seconds) ─────────────────────────────────────────
    database_health_timeout: float = 120
    app_health_timeout: float = 300
    health_interval: float = 5
    command_timeout: float = 300
    proxy_pause: float = 3
    monitoring_settle_pause: float = 10
    monitoring_setup_pause: float = 15
    monitoring_pause: float = 2
    log_tail_lines: int = 50

    # ── Provisioning ─────────────────────────────────────────────
    extensions: StrList = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    required_extensions: StrList = Field(default_factory=lambda: ["postgis", "pg_trgm", "btree_gin"])
    credential_policy: CredentialPolicy = CredentialPolicy.RESET
    init_scripts_dir: Path = Path("init-scripts")

    # ── Output ───────────────────────────────────────────────────
    output_dir: Path = Path("deploy-results")

    @field_validator(
        "compose_files",
        "monitoring_setup_services",
        "monitoring_services",
        "teardown_volumes",
        "extensions",
        "required_extensions",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator(*REQUIRED_SECRETS)
    @classmethod
    def _require_non_empty(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("proxy_init_service", "compose_project_name", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def all_units(self) -> list[str]:
        """Every unit the deployment manages, in bring-up order."""
        units = [self.database_service]
        if self.proxy_init_service:
            units.append(self.proxy_init_service)
        units.extend([self.proxy_service, self.app_service])
        units.extend(self.monitoring_setup_services)
        units.extend(self.monitoring_services)
        return units

    def endpoints(self) -> dict[str, str]:
        """Operator-facing access endpoints."""
        host = self.app_hostname
        return {
            "application": f"https://{host}",
            "grafana": f"https://grafana.{host}",
            "proxy_dashboard": f"https://traefik.{host}",
            "proxy_api": self.proxy_api_url,
            "database": f"localhost:{self.database_port}/{self.postgres_db}",
        }

    def credential_summary(self) -> list[dict[str, str]]:
        """Usernames with masked secrets for the final report."""
        return [
            {
                "label": "application admin",
                "username": self.dhis2_admin_username,
                "secret": mask_secret(self.dhis2_admin_password),
            },
            {
                "label": "application monitor",
                "username": self.dhis2_monitor_username,
                "secret": mask_secret(self.dhis2_monitor_password),
            },
            {
                "label": "grafana admin",
                "username": self.grafana_admin_username,
                "secret": mask_secret(self.grafana_admin_password),
            },
            {
                "label": "database primary",
                "username": self.postgres_db_username,
                "secret": mask_secret(self.postgres_db_password),
            },
            {
                "label": "database monitoring",
                "username": self.postgres_metrics_username,
                "secret": mask_secret(self.postgres_metrics_password),
            },
            {
                "label": "database superuser",
                "username": self.postgres_superuser,
                "secret": mask_secret(self.postgres_password),
            },
        ]


def load_settings(env_file: str | Path = ".env", **overrides: Any) -> StackSettings:
    """Load settings from ``env_file``.

    Raises
    ------
    ConfigError
        If the file does not exist or a required value is missing or invalid.
        ``ConfigError.missing`` names the offending keys.
    """
    path = Path(env_file)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        return StackSettings(_env_file=path, **overrides)
    except ValidationError as exc:
        keys = []
        details = []
        for err in exc.errors():
            key = ".".join(str(part) for part in err["loc"]).upper()
            keys.append(key)
            details.append(f"{key}: {err['msg']}")
        raise ConfigError(
            "Invalid configuration in " + str(path) + ": " + "; ".join(details),
            missing=keys,
            cause=exc,
        ) from exc
