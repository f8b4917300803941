"""
CLI: ``stackup fix`` — targeted remediation actions.

Usage::

    stackup fix restart [UNIT]      # restart one unit, or all
    stackup fix provision           # re-run provisioning and verification
    stackup fix logs [UNIT] -n 200  # recent log lines
    stackup fix full                # down, then up
"""

from __future__ import annotations

import typer

from stackup.cli.utils import fail, load_cli_settings, render_fix
from stackup.core.errors import StackError
from stackup.deploy.compose import ComposeClient
from stackup.deploy.remediation import FixResult, Remediator

app = typer.Typer(no_args_is_help=True)


def _remediator(ctx: typer.Context) -> Remediator:
    settings = load_cli_settings(ctx)
    compose = ComposeClient.from_settings(settings)
    try:
        compose.ensure_available()
    except StackError as exc:
        raise fail(exc) from exc
    return Remediator(settings, compose)


def _finish(result: FixResult) -> None:
    render_fix(result)
    raise typer.Exit(code=0 if result.ok else 1)


@app.command()
def restart(
    ctx: typer.Context,
    unit: str | None = typer.Argument(None, help="Unit to restart (default: all)."),
) -> None:
    """Restart one unit, or every unit."""
    remediator = _remediator(ctx)
    try:
        result = remediator.restart(unit)
    except StackError as exc:
        raise fail(exc) from exc
    _finish(result)


@app.command()
def provision(ctx: typer.Context) -> None:
    """Re-run database provisioning, then verify."""
    remediator = _remediator(ctx)
    _finish(remediator.provision())


@app.command()
def logs(
    ctx: typer.Context,
    unit: str | None = typer.Argument(None, help="Unit to show (default: all)."),
    tail: int = typer.Option(100, "--tail", "-n", help="Number of lines."),
) -> None:
    """Show recent log lines."""
    remediator = _remediator(ctx)
    try:
        result = remediator.logs(unit, tail=tail)
    except StackError as exc:
        raise fail(exc) from exc
    _finish(result)


@app.command()
def full(ctx: typer.Context) -> None:
    """Full restart: ``down`` then ``up``. Volumes are kept."""
    remediator = _remediator(ctx)
    _finish(remediator.full())
