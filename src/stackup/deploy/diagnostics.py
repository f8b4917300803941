"""Read-only health report for a running stack.

Backs ``stackup health``. Nothing here changes state: unit statuses come
from ``compose ps``, database checks from ``pg_isready`` and a ``SELECT 1``
as the primary role, and the application check is one HTTP GET.

Check names::

    unit:<service>      PASS healthy/running, WARN starting/unhealthy, FAIL otherwise
    database:ready      pg_isready inside the database unit
    database:auth       primary role authenticates over TCP
    application:api     GET on APP_API_URL returns 2xx
"""

from __future__ import annotations

import httpx

from stackup.core.errors import StackError
from stackup.core.logging import get_logger
from stackup.core.settings import StackSettings
from stackup.deploy.compose import ComposeClient
from stackup.deploy.provisioning import SELECT_ONE
from stackup.deploy.psql import PsqlClient, SqlBatch
from stackup.deploy.results import CheckStatus, HealthReport

logger = get_logger(__name__)

UNIT_STATUS = {
    "healthy": CheckStatus.PASS,
    "running": CheckStatus.PASS,
    "starting": CheckStatus.WARN,
    "unhealthy": CheckStatus.WARN,
}


def check_http(url: str, timeout: float = 10.0) -> tuple[bool, str]:
    """GET ``url``; returns (reachable with 2xx, detail)."""
    try:
        resp = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as exc:
        return False, f"{type(exc).__name__}: {exc}"
    if resp.is_success:
        return True, f"HTTP {resp.status_code}"
    return False, f"HTTP {resp.status_code}"


class Diagnostics:
    """Runs the read-only checks behind ``stackup health``."""

    def __init__(self, settings: StackSettings, compose: ComposeClient, psql: PsqlClient | None = None) -> None:
        self.settings = settings
        self.compose = compose
        self.psql = psql or PsqlClient.from_settings(settings, compose)

    @property
    def units(self) -> list[str]:
        return [self.settings.database_service, self.settings.app_service, self.settings.proxy_service]

    def run(self) -> HealthReport:
        report = HealthReport()
        statuses = self.check_units(report)
        self.check_database(report)
        self.check_application(report, app_running=statuses.get(self.settings.app_service) in UNIT_STATUS)
        logger.info("health.report", status=report.status.value, checks=len(report.checks))
        return report

    def check_units(self, report: HealthReport) -> dict[str, str]:
        try:
            listed = {unit.service: unit for unit in self.compose.ps()}
        except StackError as exc:
            logger.warning("health.ps_failed", error=exc.message)
            listed = {}

        statuses = {}
        for service in self.units:
            unit = listed.get(service)
            summary = unit.summary if unit else "not_found"
            statuses[service] = summary
            detail = unit.status if unit and unit.status else summary
            report.add(f"unit:{service}", UNIT_STATUS.get(summary, CheckStatus.FAIL), detail)
        return statuses

    def check_database(self, report: HealthReport) -> None:
        if not self.psql.is_ready():
            report.add("database:ready", CheckStatus.FAIL, "not accepting connections")
            report.add("database:auth", CheckStatus.FAIL, "skipped, database not ready")
            return
        report.add("database:ready", CheckStatus.PASS, "accepting connections")

        role = self.settings.postgres_db_username
        result = self.psql.run(
            SqlBatch(SELECT_ONE, database=self.settings.postgres_db),
            user=role,
            password=self.settings.postgres_db_password,
            host="127.0.0.1",
        )
        if result.ok and result.stdout.strip() == "1":
            report.add("database:auth", CheckStatus.PASS, f"{role} can connect")
        else:
            report.add("database:auth", CheckStatus.FAIL, f"{role} cannot connect: {result.stderr.strip()}")

    def check_application(self, report: HealthReport, *, app_running: bool) -> None:
        url = self.settings.app_api_url
        ok, detail = check_http(url)
        if ok:
            report.add("application:api", CheckStatus.PASS, f"{url} {detail}")
        elif app_running:
            report.add("application:api", CheckStatus.WARN, f"running but API not ready ({detail})")
        else:
            report.add("application:api", CheckStatus.FAIL, f"application not running ({detail})")
