"""Targeted fixes behind ``stackup fix``.

Each action does one thing against the running stack and reports what
happened; none of them tears down data volumes.

    restart [UNIT]   restart one unit, or every unit
    provision        re-run provisioning, then verification
    logs [UNIT]      recent log lines
    full             ``down`` then ``up --detach`` for the whole project
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from stackup.core.logging import get_logger
from stackup.core.settings import StackSettings
from stackup.deploy.compose import ComposeClient
from stackup.deploy.health import HealthPoller
from stackup.deploy.provisioning import ProvisioningEngine
from stackup.deploy.psql import PsqlClient

logger = get_logger(__name__)


@dataclass
class FixResult:
    """Outcome of one remediation action."""

    action: str
    ok: bool
    message: str
    output: str = ""
    remediation: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class Remediator:
    """Runs remediation actions against the compose project."""

    def __init__(
        self,
        settings: StackSettings,
        compose: ComposeClient,
        *,
        engine: ProvisioningEngine | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.compose = compose
        self.engine = engine or ProvisioningEngine(settings, PsqlClient.from_settings(settings, compose))
        self.poller = HealthPoller(compose, clock=clock, sleep=sleep)

    def restart(self, unit: str | None = None) -> FixResult:
        units = [unit] if unit else []
        result = self.compose.restart(*units)
        target = unit or "all units"
        if not result.ok:
            return FixResult("restart", False, f"restart of {target} failed", output=result.output)

        if unit == self.settings.database_service:
            health = self.poller.wait_healthy(
                unit, self.settings.database_health_timeout, self.settings.health_interval
            )
            if not health.healthy:
                return FixResult(
                    "restart",
                    False,
                    f"{unit} restarted but not healthy after {self.settings.database_health_timeout:g}s",
                    output=self.compose.logs(unit, tail=self.settings.log_tail_lines),
                )
        logger.info("fix.restart", unit=target)
        return FixResult("restart", True, f"{target} restarted")

    def provision(self) -> FixResult:
        provisioning = self.engine.provision()
        details = {"steps": [step.model_dump(mode="json") for step in provisioning.steps]}
        if provisioning.fatal_failures:
            return FixResult(
                "provision",
                False,
                "provisioning failed: " + ", ".join(provisioning.fatal_failures),
                details=details,
            )

        verification = self.engine.verify()
        details["verification"] = verification.model_dump(mode="json")
        warnings = provisioning.warnings()
        if not verification.success:
            return FixResult(
                "provision",
                False,
                verification.message,
                remediation=verification.remediation,
                details=details,
            )
        message = verification.message
        if warnings:
            message += f" ({len(warnings)} warnings: " + "; ".join(warnings) + ")"
        return FixResult("provision", True, message, details=details)

    def logs(self, unit: str | None = None, tail: int = 100) -> FixResult:
        output = self.compose.logs(unit, tail=tail)
        return FixResult("logs", True, f"last {tail} lines of {unit or 'all units'}", output=output)

    def full(self) -> FixResult:
        down = self.compose.down()
        if not down.ok:
            return FixResult("full", False, "compose down failed", output=down.output)
        up = self.compose.up()
        if not up.ok:
            return FixResult("full", False, "compose up failed", output=up.output)
        logger.info("fix.full_restart")
        return FixResult("full", True, "full restart completed")
