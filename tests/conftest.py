"""
Shared pytest fixtures for stackup tests.

Every test runs without Docker: ``docker`` is the in-memory ``FakeDocker``
from ``tests._support.fakes`` and time only advances through ``FakeClock``.
The process environment is scrubbed of configuration keys so settings come
only from what a test passes in.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from stackup.core.settings import StackSettings
from stackup.deploy.compose import ComposeClient
from tests._support.fakes import FakeClock, FakeDocker

ENV_TEMPLATE = """\
APP_HOSTNAME=dhis.example.org
POSTGRES_DB=dhis
POSTGRES_DB_USERNAME=dhis
POSTGRES_DB_PASSWORD=dhis-secret
POSTGRES_PASSWORD=super-secret
POSTGRES_METRICS_USERNAME=metrics
POSTGRES_METRICS_PASSWORD=metrics-secret
DHIS2_ADMIN_USERNAME=admin
DHIS2_ADMIN_PASSWORD=district-admin
GRAFANA_ADMIN_PASSWORD=grafana-secret
"""


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in StackSettings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings(tmp_path: Path) -> StackSettings:
    return StackSettings(
        _env_file=None,
        postgres_db_password="dhis-secret",
        postgres_password="super-secret",
        postgres_metrics_password="metrics-secret",
        dhis2_admin_password="district-admin",
        project_dir=tmp_path,
    )


@pytest.fixture
def docker() -> FakeDocker:
    return FakeDocker(superuser_password="super-secret")


@pytest.fixture
def compose(docker: FakeDocker) -> ComposeClient:
    return ComposeClient(docker)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def env_file(tmp_path: Path) -> Path:
    path = tmp_path / ".env"
    path.write_text(ENV_TEMPLATE, encoding="utf-8")
    return path
