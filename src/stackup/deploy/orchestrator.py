"""Stage orchestrator for stackup.

Runs the fixed deployment sequence as a list of declarative
:class:`~stackup.deploy.stages.Stage` values through one generic loop and
produces a :class:`~stackup.deploy.results.DeploymentReport`.

Why This Matters:
    Bringing the stack up is order-sensitive: the application refuses to
    start against a data store whose role or extensions are wrong, and the
    monitoring units need the application's admin account. A single loop
    with per-stage policy (fatal or degrade, health wait, pause) keeps that
    ordering in one place and makes the outcome of every stage visible in
    the final report, even after an abort.

Key Concepts:
    StageOrchestrator.run(): ``PENDING → RUNNING → {COMPLETE, FAILED,
        DEGRADED}`` per stage. Every exception a stage raises is caught at
        the stage boundary. A fatal stage's failure aborts the run; stages
        after it stay PENDING.
    build_deployment_stages(): The fixed stage list for one run.
    run_deployment(): Preflight (container engine reachable), build, run,
        attach endpoints, the masked credential summary and the
        end-of-run unit statuses.
    StageListener: Hook for operator-facing entry/exit lines.

Stage sequence::

    teardown → generate_init_scripts → start_database (health)
        → provision_database → verify_database → start_proxy
        → start_application (health) → monitoring:<unit> ...

Related Modules:
    - :mod:`stackup.deploy.stages` — Stage descriptor
    - :mod:`stackup.deploy.health` — Health waits
    - :mod:`stackup.deploy.provisioning` — Provisioning and verification
    - :mod:`stackup.cli.deploy` — Operator entry point

Tags:
    orchestrator, stages, deployment, compose, health, report
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from stackup.core.errors import (
    ProvisioningError,
    StackError,
    StageTimeoutError,
    VerificationError,
)
from stackup.core.logging import LogContext, get_logger
from stackup.core.settings import StackSettings
from stackup.deploy.compose import ComposeClient
from stackup.deploy.health import HealthPoller
from stackup.deploy.init_scripts import generate_init_scripts
from stackup.deploy.provisioning import ProvisioningEngine
from stackup.deploy.psql import PsqlClient
from stackup.deploy.results import (
    CredentialEntry,
    DeploymentReport,
    Layer,
    StageOutcome,
    StageStatus,
    UnitSummary,
)
from stackup.deploy.stages import Stage, StageContext, StageOutput

logger = get_logger(__name__)

MONITORING_PREFIX = "monitoring:"

ERROR_LINE = re.compile(r"error|exception|fail|fatal|cannot", re.IGNORECASE)


class StageListener(Protocol):
    """Receives stage entry and exit events."""

    def stage_started(self, stage: Stage, outcome: StageOutcome) -> None: ...

    def stage_finished(self, stage: Stage, outcome: StageOutcome) -> None: ...


class NullListener:
    def stage_started(self, stage: Stage, outcome: StageOutcome) -> None:
        pass

    def stage_finished(self, stage: Stage, outcome: StageOutcome) -> None:
        pass


def error_lines(text: str) -> list[str]:
    """Lines of a log tail that look like errors."""
    return [line for line in text.splitlines() if ERROR_LINE.search(line)]


class StageOrchestrator:
    """Runs stages in order and records an outcome for each.

    Parameters
    ----------
    poller
        Health poller used for stages with a ``health_check``.
    listener
        Receives entry and exit events (operator status lines).
    sleep
        Blocking sleep for ``pause_after``; injectable for tests.
    health_interval
        Poll interval for health waits.
    log_tail_lines
        Lines of unit log captured when a health wait times out.
    """

    def __init__(
        self,
        poller: HealthPoller,
        *,
        listener: StageListener | None = None,
        sleep: Callable[[float], None] = time.sleep,
        health_interval: float = 5.0,
        log_tail_lines: int = 50,
    ) -> None:
        self.poller = poller
        self.listener = listener or NullListener()
        self.sleep = sleep
        self.health_interval = health_interval
        self.log_tail_lines = log_tail_lines

    def run(self, stages: Sequence[Stage], report: DeploymentReport | None = None) -> DeploymentReport:
        """Execute ``stages`` in order. Never raises for a stage failure."""
        report = report or DeploymentReport()
        report.stages = [StageOutcome(name=s.name, layer=s.layer, fatal=s.fatal) for s in stages]
        ctx = StageContext(run_id=report.run_id)

        with LogContext(run_id=report.run_id):
            logger.info("run.started", stages=len(stages))
            for stage, outcome in zip(stages, report.stages):
                self._run_stage(stage, outcome, ctx)
                if outcome.status == StageStatus.FAILED:
                    logger.error("run.aborted", stage=stage.name, error=outcome.error)
                    break
                if stage.pause_after > 0:
                    self.sleep(stage.pause_after)

            report.mark_complete()
            logger.info("run.finished", status=report.status.value, summary=report.summary)
        return report

    def _run_stage(self, stage: Stage, outcome: StageOutcome, ctx: StageContext) -> None:
        outcome.start()
        self.listener.stage_started(stage, outcome)

        with LogContext(stage=stage.name):
            logger.info("stage.started", layer=stage.layer.value, fatal=stage.fatal)
            try:
                output = stage.action(ctx)
                if output is not None:
                    outcome.message = output.message
                    outcome.warnings.extend(output.warnings)
                    outcome.details.update(output.details)
                if stage.health_check:
                    self._await_healthy(stage, outcome)
            except StageTimeoutError as exc:
                outcome.error = exc.message
                outcome.log_tail = exc.log_tail
                outcome.details["error_lines"] = error_lines(exc.log_tail)
            except VerificationError as exc:
                outcome.error = exc.message
                outcome.remediation = exc.remediation or None
                outcome.details["reason"] = exc.reason
            except StackError as exc:
                outcome.error = exc.message
                outcome.details["error"] = exc.to_dict()
            except Exception as exc:
                logger.exception("stage.crashed")
                outcome.error = f"{type(exc).__name__}: {exc}"

            if outcome.error is None:
                outcome.finish(StageStatus.COMPLETE)
                logger.info(
                    "stage.complete",
                    duration=round(outcome.duration_seconds, 1),
                    warnings=len(outcome.warnings),
                )
            elif stage.fatal:
                outcome.finish(StageStatus.FAILED)
                logger.error("stage.failed", error=outcome.error)
            else:
                outcome.finish(StageStatus.DEGRADED)
                logger.warning("stage.degraded", error=outcome.error)

        self.listener.stage_finished(stage, outcome)

    def _await_healthy(self, stage: Stage, outcome: StageOutcome) -> None:
        unit = stage.health_check
        result = self.poller.wait_healthy(unit, stage.timeout, self.health_interval)
        outcome.details["health"] = {
            "unit": unit,
            "state": result.state.value,
            "elapsed_seconds": round(result.elapsed_seconds, 1),
            "checks": result.checks,
        }
        if not result.healthy:
            raise StageTimeoutError(
                f"{unit} did not become healthy within {stage.timeout:g}s (last status: {result.last_status or 'none'})",
                unit=unit,
                timeout=stage.timeout,
                log_tail=self._log_tail(unit),
            )
        outcome.message = outcome.message or f"{unit} healthy after {result.elapsed_seconds:.0f}s"

    def _log_tail(self, unit: str) -> str:
        try:
            return self.poller.compose.logs(unit, tail=self.log_tail_lines)
        except StackError as exc:
            logger.warning("stage.log_tail_unavailable", unit=unit, error=exc.message)
            return f"(logs unavailable: {exc.message})"


# ---------------------------------------------------------------------------
# The deployment sequence
# ---------------------------------------------------------------------------


def build_deployment_stages(
    settings: StackSettings,
    compose: ComposeClient,
    engine: ProvisioningEngine,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[Stage, ...]:
    """Build the fixed stage list for one run from ``settings``."""

    def teardown(ctx: StageContext) -> StageOutput:
        compose.check(compose.down(volumes=True, remove_orphans=True), "compose down")
        warnings = []
        pruned = compose.prune_networks()
        if not pruned.ok:
            warnings.append(f"network prune failed: {pruned.stderr.strip()}")
        removed = compose.remove_volumes(*settings.teardown_volumes)
        if not removed.ok:
            warnings.append(f"volume removal failed: {removed.stderr.strip()}")
        return StageOutput(message="previous deployment removed", warnings=warnings)

    def write_init_scripts(ctx: StageContext) -> StageOutput:
        paths = generate_init_scripts(settings)
        return StageOutput(
            message=f"{len(paths)} init scripts written",
            details={"scripts": [str(p) for p in paths]},
        )

    def start_database(ctx: StageContext) -> StageOutput:
        compose.check(compose.up(settings.database_service), f"start {settings.database_service}")
        return StageOutput()

    def provision_database(ctx: StageContext) -> StageOutput:
        result = engine.provision()
        ctx.data["provisioning"] = result
        details = {"steps": [step.model_dump(mode="json") for step in result.steps]}
        if result.fatal_failures:
            raise ProvisioningError(
                "provisioning failed: " + ", ".join(result.fatal_failures),
                failed_steps=result.fatal_failures,
            )
        return StageOutput(
            message=f"{len(result.steps)} steps, {len(result.extension_failures)} extension failures",
            warnings=result.warnings(),
            details=details,
        )

    def verify_database(ctx: StageContext) -> StageOutput:
        result = engine.verify()
        if not result.success:
            raise VerificationError(result.message, reason=result.reason.value, remediation=result.remediation)
        return StageOutput(message=result.message, details={"extensions": result.installed_extensions})

    def start_proxy(ctx: StageContext) -> StageOutput:
        if settings.proxy_init_service:
            compose.check(compose.up(settings.proxy_init_service), f"start {settings.proxy_init_service}")
            sleep(settings.proxy_pause)
        compose.check(compose.up(settings.proxy_service), f"start {settings.proxy_service}")
        return StageOutput(message=f"{settings.proxy_service} started")

    def start_application(ctx: StageContext) -> StageOutput:
        app = settings.app_service
        compose.stop(app)
        compose.rm(app)
        compose.check(compose.up(app), f"start {app}")
        return StageOutput()

    def start_unit(unit: str) -> Callable[[StageContext], StageOutput]:
        def action(ctx: StageContext) -> StageOutput:
            compose.check(compose.up(unit), f"start {unit}")
            return StageOutput(message=f"{unit} started")

        return action

    stages = [
        Stage("teardown", teardown, Layer.DATA, fatal=False,
              description="Remove containers, networks and volumes from earlier runs"),
        Stage("generate_init_scripts", write_init_scripts, Layer.DATA,
              description="Regenerate first-boot database scripts"),
        Stage("start_database", start_database, Layer.DATA,
              health_check=settings.database_service, timeout=settings.database_health_timeout,
              description="Start the database unit"),
        Stage("provision_database", provision_database, Layer.DATA,
              description="Create roles, database, privileges and extensions"),
        Stage("verify_database", verify_database, Layer.DATA,
              description="Verify extensions and primary role authentication"),
        Stage("start_proxy", start_proxy, Layer.EDGE, fatal=False,
              description="Start the reverse proxy"),
        Stage("start_application", start_application, Layer.APPLICATION, fatal=False,
              health_check=settings.app_service, timeout=settings.app_health_timeout,
              pause_after=settings.monitoring_settle_pause,
              description="Recreate and start the application"),
    ]
    for unit in settings.monitoring_setup_services:
        stages.append(Stage(f"{MONITORING_PREFIX}{unit}", start_unit(unit), Layer.MONITORING, fatal=False,
                            pause_after=settings.monitoring_setup_pause))
    for unit in settings.monitoring_services:
        stages.append(Stage(f"{MONITORING_PREFIX}{unit}", start_unit(unit), Layer.MONITORING, fatal=False,
                            pause_after=settings.monitoring_pause))
    return tuple(stages)


def unit_summaries(compose: ComposeClient) -> list[UnitSummary]:
    """Status of every unit compose knows about; empty if ``ps`` fails."""
    try:
        units = compose.ps()
    except StackError as exc:
        logger.warning("report.ps_failed", error=exc.message)
        return []
    return [UnitSummary(service=u.service, state=u.summary, status=u.status) for u in units]


def preflight(compose: ComposeClient) -> None:
    """Fail fast if the container engine is unreachable.

    Raises
    ------
    RuntimeUnavailableError
        If ``docker info`` cannot run or fails.
    """
    compose.ensure_available()
    logger.info("preflight.ok")


def run_deployment(
    settings: StackSettings,
    *,
    compose: ComposeClient | None = None,
    listener: StageListener | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    run_id: str | None = None,
) -> DeploymentReport:
    """Run the full deployment and return its report.

    Raises
    ------
    RuntimeUnavailableError
        Before any stage runs, if the container engine is unreachable.
    """
    compose = compose or ComposeClient.from_settings(settings)
    preflight(compose)

    psql = PsqlClient.from_settings(settings, compose)
    engine = ProvisioningEngine(settings, psql)
    poller = HealthPoller(compose, clock=clock, sleep=sleep)
    stages = build_deployment_stages(settings, compose, engine, sleep=sleep)

    report = DeploymentReport(run_id=run_id) if run_id else DeploymentReport()
    report.endpoints = settings.endpoints()
    report.credentials = [CredentialEntry(**entry) for entry in settings.credential_summary()]

    orchestrator = StageOrchestrator(
        poller,
        listener=listener,
        sleep=sleep,
        health_interval=settings.health_interval,
        log_tail_lines=settings.log_tail_lines,
    )
    orchestrator.run(stages, report)
    report.units = unit_summaries(compose)
    return report


__all__ = [
    "MONITORING_PREFIX",
    "NullListener",
    "StageListener",
    "StageOrchestrator",
    "build_deployment_stages",
    "error_lines",
    "preflight",
    "run_deployment",
    "unit_summaries",
]
