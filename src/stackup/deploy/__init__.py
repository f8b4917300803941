"""
Deployment engine for stackup.

Runs the stack's bring-up sequence through the ``docker compose`` CLI:
process execution, unit health polling, idempotent database provisioning,
and the stage orchestrator that ties them together.

Modules:
    process        ProcessRunner / ProcessResult
    compose        ComposeClient / UnitStatus
    health         HealthPoller
    psql           PsqlClient / SqlBatch
    provisioning   ProvisioningEngine
    init_scripts   First-boot database scripts
    stages         Stage descriptor
    orchestrator   StageOrchestrator / run_deployment
    results        DeploymentReport / HealthReport
    diagnostics    ``stackup health`` checks
    remediation    ``stackup fix`` actions
    log_collector  Run artifacts
"""

from stackup.deploy.compose import ComposeClient, UnitStatus
from stackup.deploy.health import HealthPoller, HealthResult, HealthState
from stackup.deploy.orchestrator import StageOrchestrator, build_deployment_stages, run_deployment
from stackup.deploy.process import ProcessResult, ProcessRunner
from stackup.deploy.provisioning import ProvisioningEngine, ProvisioningResult, VerificationResult
from stackup.deploy.results import DeploymentReport, HealthReport, RunStatus, StageOutcome, StageStatus
from stackup.deploy.stages import Layer, Stage, StageContext, StageOutput

__all__ = [
    "ComposeClient",
    "DeploymentReport",
    "HealthPoller",
    "HealthReport",
    "HealthResult",
    "HealthState",
    "Layer",
    "ProcessResult",
    "ProcessRunner",
    "ProvisioningEngine",
    "ProvisioningResult",
    "RunStatus",
    "Stage",
    "StageContext",
    "StageOrchestrator",
    "StageOutcome",
    "StageOutput",
    "StageStatus",
    "UnitStatus",
    "VerificationResult",
    "build_deployment_stages",
    "run_deployment",
]
