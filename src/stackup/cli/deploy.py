"""
CLI: ``stackup deploy`` — full deployment.

Usage::

    stackup deploy                  # run every stage, print the report
    stackup deploy --json           # report as JSON on stdout

Exit codes: 0 complete, 1 fatal (configuration, runtime, fatal stage),
2 degraded.
"""

from __future__ import annotations

import typer

from stackup.cli.utils import (
    RichStageListener,
    console,
    err_console,
    fail,
    load_cli_settings,
    render_report,
    under_project,
)
from stackup.core.errors import RuntimeUnavailableError
from stackup.core.logging import get_logger
from stackup.deploy.log_collector import LogCollector
from stackup.deploy.orchestrator import run_deployment

logger = get_logger(__name__)


def deploy(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output the report as JSON."),
) -> None:
    """Run the full deployment sequence.

    Tears down the previous deployment, starts and provisions the database,
    then brings up the proxy, application and monitoring units.
    """
    settings = load_cli_settings(ctx)
    listener = None if json_out else RichStageListener(console)

    try:
        report = run_deployment(settings, listener=listener)
    except RuntimeUnavailableError as exc:
        raise fail(exc) from exc

    try:
        path = LogCollector(under_project(settings, settings.output_dir), report.run_id).collect(report)
        logger.info("deploy.artifacts", path=str(path))
    except OSError as exc:
        err_console.print(f"[yellow]Could not write run artifacts:[/yellow] {exc}")

    if json_out:
        console.print_json(report.model_dump_json())
    else:
        render_report(report)
    raise typer.Exit(code=report.exit_code)
