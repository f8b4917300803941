"""
CLI utility helpers: settings loading, stage status lines, report rendering.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stackup.core.errors import ConfigError, StackError
from stackup.core.settings import StackSettings, load_settings
from stackup.deploy.remediation import FixResult
from stackup.deploy.results import (
    CheckStatus,
    DeploymentReport,
    HealthReport,
    RunStatus,
    StageOutcome,
    StageStatus,
)
from stackup.deploy.stages import Stage

console = Console()
err_console = Console(stderr=True)

STAGE_STYLE = {
    StageStatus.PENDING: "dim",
    StageStatus.RUNNING: "cyan",
    StageStatus.COMPLETE: "green",
    StageStatus.DEGRADED: "yellow",
    StageStatus.FAILED: "bold red",
}

CHECK_STYLE = {
    CheckStatus.PASS: "green",
    CheckStatus.WARN: "yellow",
    CheckStatus.FAIL: "bold red",
}

UNIT_STYLE = {
    "healthy": "green",
    "running": "green",
    "starting": "yellow",
    "unhealthy": "yellow",
}

RUN_STYLE = {
    RunStatus.COMPLETE: "bold green",
    RunStatus.DEGRADED: "bold yellow",
    RunStatus.FAILED: "bold red",
    RunStatus.RUNNING: "cyan",
}


@dataclass
class CliState:
    """Global options from the root callback."""

    env_file: Path | None = None
    project_dir: Path | None = None
    log_level: str = "WARNING"


# ── Settings ─────────────────────────────────────────────────────────────


def load_cli_settings(ctx: typer.Context) -> StackSettings:
    """Load settings from the root options; exit 1 on a configuration error."""
    state: CliState = ctx.obj or CliState()
    project_dir = state.project_dir or Path(".")
    env_file = state.env_file or project_dir / ".env"
    overrides = {"project_dir": state.project_dir} if state.project_dir else {}
    try:
        return load_settings(env_file, **overrides)
    except ConfigError as exc:
        err_console.print(f"[bold red]Configuration error[/bold red]: {escape(exc.message)}")
        if exc.missing:
            err_console.print("  Missing or invalid: " + ", ".join(exc.missing))
        raise typer.Exit(code=1) from exc


def under_project(settings: StackSettings, path: Path) -> Path:
    return path if path.is_absolute() else settings.project_dir / path


def fail(exc: StackError) -> typer.Exit:
    """Print a fatal error and return the exit to raise."""
    err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {escape(exc.message)}")
    return typer.Exit(code=1)


# ── Stage status lines ───────────────────────────────────────────────────


class RichStageListener:
    """Prints one line when a stage starts and one when it ends."""

    def __init__(self, out: Console | None = None) -> None:
        self.out = out or console

    def stage_started(self, stage: Stage, outcome: StageOutcome) -> None:
        label = stage.description or stage.name
        self.out.print(f"[cyan]→[/cyan] [bold]{stage.name}[/bold] [dim]{label}[/dim]")

    def stage_finished(self, stage: Stage, outcome: StageOutcome) -> None:
        style = STAGE_STYLE[outcome.status]
        line = f"  [{style}]{outcome.status.value}[/{style}] {outcome.name} ({outcome.duration_seconds:.1f}s)"
        if outcome.message:
            line += f" {escape(outcome.message)}"
        self.out.print(line)
        for warning in outcome.warnings:
            self.out.print(f"    [yellow]warning[/yellow] {escape(warning)}")
        if outcome.error:
            self.out.print(f"    [red]error[/red] {escape(outcome.error)}")
        for err_line in outcome.details.get("error_lines", [])[:10]:
            self.out.print(f"    [dim]{escape(err_line)}[/dim]")
        if outcome.remediation:
            self.out.print(f"    [cyan]hint[/cyan] {escape(outcome.remediation)}")


# ── Reports ──────────────────────────────────────────────────────────────


def render_report(report: DeploymentReport) -> None:
    """Render the final deployment report."""
    table = Table(title=f"Deployment {report.run_id}", show_lines=False, pad_edge=False)
    table.add_column("Stage")
    table.add_column("Layer")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")
    for outcome in report.stages:
        style = STAGE_STYLE[outcome.status]
        table.add_row(
            outcome.name,
            outcome.layer.value,
            f"[{style}]{outcome.status.value}[/{style}]",
            f"{outcome.duration_seconds:.1f}s",
            escape(outcome.error or outcome.message),
        )
    console.print(table)

    if report.units:
        console.print("\n[bold]Units[/bold]")
        for unit in report.units:
            style = UNIT_STYLE.get(unit.state, "bold red")
            line = f"  {unit.service}: [{style}]{unit.state}[/{style}]"
            if unit.status:
                line += f" [dim]{escape(unit.status)}[/dim]"
            console.print(line)

    if report.endpoints:
        console.print("\n[bold]Access endpoints[/bold]")
        for name, url in report.endpoints.items():
            console.print(f"  [cyan]{name}[/cyan]: {url}")

    if report.credentials:
        console.print("\n[bold]Credentials[/bold]")
        for entry in report.credentials:
            console.print(f"  [cyan]{entry.label}[/cyan]: {entry.username} / {entry.secret}")

    if report.warnings:
        console.print("\n[bold yellow]Warnings[/bold yellow]")
        for warning in report.warnings:
            console.print(f"  - {escape(warning)}")

    style = RUN_STYLE[report.status]
    console.print(
        f"\n[{style}]{report.status.value}[/{style}] {report.summary} "
        f"in {report.duration_seconds:.0f}s (exit {report.exit_code})"
    )


def render_health(report: HealthReport) -> None:
    table = Table(title="Health", show_lines=False, pad_edge=False)
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for check in report.checks:
        style = CHECK_STYLE[check.status]
        table.add_row(check.name, f"[{style}]{check.status.value}[/{style}]", escape(check.detail))
    console.print(table)
    style = CHECK_STYLE[report.status]
    console.print(f"[{style}]{report.status.value}[/{style}]")


def render_fix(result: FixResult) -> None:
    if result.output:
        console.print(result.output, markup=False, highlight=False)
    if result.ok:
        console.print(f"[green]✓[/green] {escape(result.message)}")
    else:
        err_console.print(f"[bold red]✗[/bold red] {escape(result.message)}")
        if result.remediation:
            err_console.print(f"  [cyan]hint[/cyan] {escape(result.remediation)}")
