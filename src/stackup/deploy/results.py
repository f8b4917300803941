"""Result models for stackup.

Pydantic v2 models that capture the structured outcome of a deployment run
and of a read-only health check. A run is a list of per-stage outcomes that
roll up into one run status and one process exit code.

Why This Matters:
    The operator, a CI job and the run artifact directory all need the same
    facts in different shapes: a rendered table, an exit status, and a JSON
    file. These models support all three via ``mark_complete()``,
    ``exit_code`` and ``model_dump_json()``.

Key Concepts:
    StageStatus: ``PENDING → RUNNING → {COMPLETE, FAILED, DEGRADED}``.
    RunStatus: COMPLETE (exit 0), DEGRADED (exit 2), FAILED (exit 1).
    DeploymentReport: Per-stage outcomes plus end-of-run unit statuses,
        access endpoints, credential summary (masked) and collected warnings.
    HealthReport: PASS/WARN/FAIL per checked unit or service.

Architecture Decisions:
    - ``mark_complete()`` pattern: the caller invokes it when done; it
      computes duration from ISO timestamps and derives the run status.
    - A stage that was never attempted stays PENDING in the report, so the
      report always lists the full sequence.

Related Modules:
    - :mod:`stackup.deploy.orchestrator` — Produces DeploymentReport
    - :mod:`stackup.deploy.diagnostics` — Produces HealthReport
    - :mod:`stackup.deploy.log_collector` — Serialises them

Tags:
    results, models, pydantic, deployment, status, reporting
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_DEGRADED = 2


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _elapsed(started_at: str, completed_at: str) -> float:
    start = datetime.fromisoformat(started_at)
    end = datetime.fromisoformat(completed_at)
    return (end - start).total_seconds()


# ---------------------------------------------------------------------------
# Shared enums
# ---------------------------------------------------------------------------


class Layer(str, Enum):
    """Architectural layer a stage belongs to."""

    DATA = "data"
    EDGE = "edge"
    APPLICATION = "application"
    MONITORING = "monitoring"


class StageStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    DEGRADED = "DEGRADED"


class RunStatus(str, Enum):
    """Overall status of a deployment run."""

    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    DEGRADED = "DEGRADED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------


class StageOutcome(BaseModel):
    """Outcome of one stage of a deployment run."""

    name: str
    layer: Layer
    status: StageStatus = StageStatus.PENDING
    fatal: bool = True
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float = 0.0
    message: str = ""
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    log_tail: str | None = None
    remediation: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    def start(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = _now()

    def finish(self, status: StageStatus) -> None:
        self.status = status
        self.completed_at = _now()
        if self.started_at:
            self.duration_seconds = _elapsed(self.started_at, self.completed_at)


class CredentialEntry(BaseModel):
    """A username with its masked secret, as shown in the final report."""

    label: str
    username: str
    secret: str


class UnitSummary(BaseModel):
    """Container status of one unit at the end of a run."""

    service: str
    state: str
    status: str = ""


class DeploymentReport(BaseModel):
    """Result of one full deployment run."""

    run_id: str = Field(default_factory=new_run_id)
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    stages: list[StageOutcome] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    endpoints: dict[str, str] = Field(default_factory=dict)
    credentials: list[CredentialEntry] = Field(default_factory=list)
    units: list[UnitSummary] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None

    def stage(self, name: str) -> StageOutcome | None:
        for outcome in self.stages:
            if outcome.name == name:
                return outcome
        return None

    def by_status(self, status: StageStatus) -> list[str]:
        return [s.name for s in self.stages if s.status == status]

    @property
    def completed(self) -> list[str]:
        return self.by_status(StageStatus.COMPLETE)

    @property
    def degraded(self) -> list[str]:
        return self.by_status(StageStatus.DEGRADED)

    @property
    def failed(self) -> list[str]:
        return self.by_status(StageStatus.FAILED)

    def mark_complete(self, status: RunStatus | None = None) -> None:
        """Finalise timestamps and derive the run status from stage outcomes.

        Any FAILED stage makes the run FAILED (only fatal stages end FAILED);
        otherwise any DEGRADED stage makes it DEGRADED. Warnings on COMPLETE
        stages do not change the run status.
        """
        self.completed_at = _now()
        self.duration_seconds = _elapsed(self.started_at, self.completed_at)

        if status:
            self.status = status
        elif self.error or self.failed:
            self.status = RunStatus.FAILED
        elif self.degraded:
            self.status = RunStatus.DEGRADED
        else:
            self.status = RunStatus.COMPLETE

        collected = [w for s in self.stages for w in s.warnings]
        self.warnings = list(dict.fromkeys([*self.warnings, *collected]))

    @property
    def exit_code(self) -> int:
        if self.status == RunStatus.COMPLETE:
            return EXIT_SUCCESS
        if self.status == RunStatus.DEGRADED:
            return EXIT_DEGRADED
        return EXIT_FATAL

    @property
    def summary(self) -> str:
        return (
            f"{len(self.completed)}/{len(self.stages)} stages complete, "
            f"{len(self.degraded)} degraded, {len(self.failed)} failed"
        )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class CheckResult(BaseModel):
    """One read-only check of the health report."""

    name: str
    status: CheckStatus
    detail: str = ""


class HealthReport(BaseModel):
    """Result of ``stackup health``."""

    started_at: str = Field(default_factory=_now)
    checks: list[CheckResult] = Field(default_factory=list)

    def add(self, name: str, status: CheckStatus, detail: str = "") -> CheckResult:
        check = CheckResult(name=name, status=status, detail=detail)
        self.checks.append(check)
        return check

    @property
    def status(self) -> CheckStatus:
        if any(c.status == CheckStatus.FAIL for c in self.checks):
            return CheckStatus.FAIL
        if any(c.status == CheckStatus.WARN for c in self.checks):
            return CheckStatus.WARN
        return CheckStatus.PASS

    @property
    def exit_code(self) -> int:
        return EXIT_FATAL if self.status == CheckStatus.FAIL else EXIT_SUCCESS
