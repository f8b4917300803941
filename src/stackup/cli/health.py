"""
CLI: ``stackup health`` — read-only status report.
"""

from __future__ import annotations

import json

import typer

from stackup.cli.utils import console, fail, load_cli_settings, render_health
from stackup.core.errors import RuntimeUnavailableError
from stackup.deploy.compose import ComposeClient
from stackup.deploy.diagnostics import Diagnostics


def health(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output checks as JSON."),
) -> None:
    """Check units, database connectivity and the application API.

    Exits 1 if any check fails.
    """
    settings = load_cli_settings(ctx)
    compose = ComposeClient.from_settings(settings)
    try:
        compose.ensure_available()
    except RuntimeUnavailableError as exc:
        raise fail(exc) from exc

    report = Diagnostics(settings, compose).run()
    if json_out:
        payload = report.model_dump(mode="json")
        payload["status"] = report.status.value
        console.print_json(json.dumps(payload))
    else:
        render_health(report)
    raise typer.Exit(code=report.exit_code)
