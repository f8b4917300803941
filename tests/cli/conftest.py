"""Fixtures for CLI tests: the docker CLI is replaced by ``FakeDocker``."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from stackup.deploy import orchestrator
from stackup.deploy.compose import ComposeClient


@pytest.fixture
def stack(docker):
    """Route every ``ComposeClient.from_settings`` through the fake runner."""
    with patch("stackup.deploy.compose.ProcessRunner", return_value=docker):
        yield docker


@pytest.fixture
def fake_deploy(docker, clock):
    """``run_deployment`` against the fake runner with simulated time."""

    def _run(settings, *, listener=None):
        return orchestrator.run_deployment(
            settings,
            compose=ComposeClient(docker),
            listener=listener,
            sleep=clock.sleep,
            clock=clock.now,
        )

    with patch("stackup.cli.deploy.run_deployment", side_effect=_run) as mock:
        yield mock


@pytest.fixture
def cli_args(env_file, tmp_path):
    """Root options pointing at a temporary project."""
    return ["--env-file", str(env_file), "--project-dir", str(tmp_path)]
