"""Tests for stackup.deploy.remediation — the ``fix`` actions."""

from __future__ import annotations

import pytest

from stackup.core.settings import CredentialPolicy
from stackup.deploy.remediation import Remediator


@pytest.fixture
def remediator(settings, compose, clock) -> Remediator:
    compose.up("database", "app")
    return Remediator(settings, compose, sleep=clock.sleep, clock=clock.now)


class TestRestart:
    def test_single_unit(self, remediator, docker):
        result = remediator.restart("app")
        assert result.ok
        assert docker.compose_calls("restart") == [["restart", "app"]]

    def test_all_units(self, remediator, docker):
        assert remediator.restart().ok
        assert docker.compose_calls("restart") == [["restart"]]

    def test_database_waits_for_health(self, remediator, docker):
        docker.never_healthy.add("database")
        result = remediator.restart("database")
        assert not result.ok
        assert "not healthy" in result.message
        assert "could not connect" in result.output


class TestProvision:
    def test_provision_and_verify(self, remediator, docker):
        result = remediator.provision()
        assert result.ok
        assert docker.postgres.roles["dhis"] == "dhis-secret"
        assert result.details["verification"]["reason"] == "OK"

    def test_extension_warning_reported(self, remediator, docker):
        docker.postgres.unavailable_extensions.add("postgis_raster")
        result = remediator.provision()
        assert result.ok
        assert "postgis_raster" in result.message

    def test_verification_failure_carries_hint(self, settings, compose, docker, clock):
        compose.up("database")
        preserving = settings.model_copy(update={"credential_policy": CredentialPolicy.PRESERVE})
        docker.postgres.roles["dhis"] = "old"
        result = Remediator(preserving, compose, sleep=clock.sleep, clock=clock.now).provision()
        assert not result.ok
        assert result.remediation


class TestLogsAndFull:
    def test_logs(self, remediator, docker):
        result = remediator.logs("app", tail=20)
        assert result.ok
        assert "could not connect" in result.output
        assert docker.compose_calls("logs") == [["logs", "--no-color", "--tail=20", "app"]]

    def test_full_restart(self, remediator, docker):
        assert remediator.full().ok
        assert docker.compose_calls("down") == [["down"]]
        assert docker.compose_calls("up")[-1] == ["up", "--detach"]
