"""Tests for stackup.deploy.orchestrator — the generic stage loop."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from stackup.core.errors import CommandError, VerificationError
from stackup.deploy.health import HealthPoller
from stackup.deploy.orchestrator import StageOrchestrator, error_lines
from stackup.deploy.results import Layer, RunStatus, StageStatus
from stackup.deploy.stages import Stage, StageOutput


@pytest.fixture
def orchestrator(compose, clock) -> StageOrchestrator:
    poller = HealthPoller(compose, clock=clock.now, sleep=clock.sleep)
    return StageOrchestrator(poller, sleep=clock.sleep, health_interval=5, log_tail_lines=50)


def _stage(name, action=None, **kwargs) -> Stage:
    return Stage(name, action or (lambda ctx: None), kwargs.pop("layer", Layer.DATA), **kwargs)


def _fail(message="boom"):
    def action(ctx):
        raise CommandError(message)

    return action


class TestOrdering:
    def test_runs_in_order_and_completes(self, orchestrator):
        seen = []
        stages = [_stage(n, lambda ctx, n=n: seen.append(n)) for n in ("a", "b", "c")]
        report = orchestrator.run(stages)
        assert seen == ["a", "b", "c"]
        assert [s.status for s in report.stages] == [StageStatus.COMPLETE] * 3
        assert report.status == RunStatus.COMPLETE
        assert report.exit_code == 0

    def test_listener_sees_entry_and_exit(self, compose, clock):
        listener = MagicMock()
        poller = HealthPoller(compose, clock=clock.now, sleep=clock.sleep)
        StageOrchestrator(poller, listener=listener, sleep=clock.sleep).run([_stage("a"), _stage("b")])
        calls = [(c[0], c.args[0].name) for c in listener.method_calls]
        assert calls == [
            ("stage_started", "a"),
            ("stage_finished", "a"),
            ("stage_started", "b"),
            ("stage_finished", "b"),
        ]

    def test_stage_output_recorded(self, orchestrator):
        stage = _stage("a", lambda ctx: StageOutput(message="done", warnings=["careful"], details={"n": 1}))
        report = orchestrator.run([stage])
        outcome = report.stage("a")
        assert outcome.message == "done"
        assert outcome.details == {"n": 1}
        assert report.warnings == ["careful"]
        assert report.status == RunStatus.COMPLETE

    def test_context_shared_between_stages(self, orchestrator):
        def first(ctx):
            ctx.data["value"] = 42

        seen = []
        report = orchestrator.run([_stage("a", first), _stage("b", lambda ctx: seen.append((ctx.run_id, ctx.data)))])
        assert seen == [(report.run_id, {"value": 42})]


class TestFailurePolicy:
    def test_fatal_failure_aborts_and_leaves_rest_pending(self, orchestrator):
        later = MagicMock()
        report = orchestrator.run([_stage("a"), _stage("b", _fail()), _stage("c", later)])
        later.assert_not_called()
        assert report.stage("b").status == StageStatus.FAILED
        assert report.stage("b").error == "boom"
        assert report.stage("c").status == StageStatus.PENDING
        assert report.status == RunStatus.FAILED
        assert report.exit_code == 1

    def test_non_fatal_failure_degrades_and_continues(self, orchestrator):
        later = MagicMock(return_value=None)
        report = orchestrator.run([_stage("a", _fail(), fatal=False), _stage("b", later)])
        later.assert_called_once()
        assert report.stage("a").status == StageStatus.DEGRADED
        assert report.stage("b").status == StageStatus.COMPLETE
        assert report.status == RunStatus.DEGRADED
        assert report.exit_code == 2

    def test_unexpected_exception_is_contained(self, orchestrator):
        def crash(ctx):
            raise ValueError("bad state")

        report = orchestrator.run([_stage("a", crash)])
        assert report.stage("a").status == StageStatus.FAILED
        assert report.stage("a").error == "ValueError: bad state"

    def test_verification_error_records_remediation(self, orchestrator):
        def verify(ctx):
            raise VerificationError("no login", reason="CREDENTIAL_MISMATCH", remediation="check the password")

        outcome = orchestrator.run([_stage("verify", verify)]).stage("verify")
        assert outcome.remediation == "check the password"
        assert outcome.details["reason"] == "CREDENTIAL_MISMATCH"


def _up(compose, unit):
    """Stage action that starts ``unit`` and reports nothing (actions return StageOutput | None)."""
    def action(ctx):
        compose.up(unit)
    return action


class TestHealthChecks:
    def test_healthy_unit_completes(self, orchestrator, compose):
        stage = _stage("db", _up(compose, "database"), health_check="database", timeout=120)
        outcome = orchestrator.run([stage]).stage("db")
        assert outcome.status == StageStatus.COMPLETE
        assert outcome.details["health"]["state"] == "HEALTHY"

    def test_fatal_timeout_fails_with_log_tail(self, orchestrator, compose, docker):
        docker.never_healthy.add("database")
        stages = [
            _stage("db", _up(compose, "database"), health_check="database", timeout=120),
            _stage("next"),
        ]
        report = orchestrator.run(stages)
        outcome = report.stage("db")
        assert outcome.status == StageStatus.FAILED
        assert "within 120s" in outcome.error
        assert "could not connect" in outcome.log_tail
        assert report.stage("next").status == StageStatus.PENDING

    def test_non_fatal_timeout_degrades(self, orchestrator, compose, docker, clock):
        docker.never_healthy.add("app")
        stages = [
            _stage("app", _up(compose, "app"), layer=Layer.APPLICATION, fatal=False,
                   health_check="app", timeout=300),
            _stage("monitoring", layer=Layer.MONITORING),
        ]
        report = orchestrator.run(stages)
        outcome = report.stage("app")
        assert outcome.status == StageStatus.DEGRADED
        assert outcome.details["error_lines"] == ["ERROR: could not connect to database"]
        assert report.stage("monitoring").status == StageStatus.COMPLETE
        assert report.exit_code == 2
        assert clock.now() == pytest.approx(300)


class TestPauses:
    def test_pause_after_each_stage(self, orchestrator, clock):
        orchestrator.run([_stage("a", pause_after=15), _stage("b"), _stage("c", pause_after=2)])
        assert clock.sleeps == [15, 2]

    def test_no_pause_after_abort(self, orchestrator, clock):
        orchestrator.run([_stage("a", _fail(), pause_after=15)])
        assert clock.sleeps == []


def test_error_lines():
    text = "ok\nException in thread main\nFATAL: cannot start\nfine\n"
    assert error_lines(text) == ["Exception in thread main", "FATAL: cannot start"]
