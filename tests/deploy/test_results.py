"""Tests for stackup.deploy.results — status roll-up and exit codes."""

from __future__ import annotations

import json

from stackup.deploy.results import (
    CheckStatus,
    DeploymentReport,
    HealthReport,
    Layer,
    RunStatus,
    StageOutcome,
    StageStatus,
)


def _report(*statuses: StageStatus) -> DeploymentReport:
    stages = [StageOutcome(name=f"s{i}", layer=Layer.DATA, status=s) for i, s in enumerate(statuses)]
    return DeploymentReport(stages=stages)


class TestDeploymentReport:
    def test_run_id_generated(self):
        assert len(DeploymentReport().run_id) == 12
        assert DeploymentReport().run_id != DeploymentReport().run_id

    def test_complete(self):
        report = _report(StageStatus.COMPLETE, StageStatus.COMPLETE)
        report.mark_complete()
        assert report.status == RunStatus.COMPLETE
        assert report.exit_code == 0
        assert report.completed_at is not None

    def test_degraded(self):
        report = _report(StageStatus.COMPLETE, StageStatus.DEGRADED)
        report.mark_complete()
        assert report.status == RunStatus.DEGRADED
        assert report.exit_code == 2

    def test_failed_wins_over_degraded(self):
        report = _report(StageStatus.DEGRADED, StageStatus.FAILED, StageStatus.PENDING)
        report.mark_complete()
        assert report.status == RunStatus.FAILED
        assert report.exit_code == 1

    def test_warnings_collected_once(self):
        report = _report(StageStatus.COMPLETE, StageStatus.COMPLETE)
        report.stages[0].warnings = ["w1", "w2"]
        report.stages[1].warnings = ["w1"]
        report.mark_complete()
        assert report.warnings == ["w1", "w2"]
        assert report.status == RunStatus.COMPLETE

    def test_summary(self):
        report = _report(StageStatus.COMPLETE, StageStatus.DEGRADED, StageStatus.FAILED)
        assert report.summary == "1/3 stages complete, 1 degraded, 1 failed"

    def test_json_round_trip(self):
        report = _report(StageStatus.COMPLETE)
        report.mark_complete()
        data = json.loads(report.model_dump_json())
        assert data["status"] == "COMPLETE"
        assert DeploymentReport.model_validate(data).stages[0].name == "s0"


class TestStageOutcome:
    def test_lifecycle(self):
        outcome = StageOutcome(name="a", layer=Layer.EDGE)
        assert outcome.status == StageStatus.PENDING
        outcome.start()
        assert outcome.status == StageStatus.RUNNING
        outcome.finish(StageStatus.COMPLETE)
        assert outcome.status == StageStatus.COMPLETE
        assert outcome.duration_seconds >= 0


class TestHealthReport:
    def test_status_roll_up(self):
        report = HealthReport()
        report.add("unit:database", CheckStatus.PASS)
        assert report.status == CheckStatus.PASS
        report.add("application:api", CheckStatus.WARN)
        assert report.status == CheckStatus.WARN
        assert report.exit_code == 0
        report.add("database:auth", CheckStatus.FAIL)
        assert report.status == CheckStatus.FAIL
        assert report.exit_code == 1
