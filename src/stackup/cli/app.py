"""
Root Typer application for the stackup CLI.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from stackup.cli.utils import CliState
from stackup.core.logging import LogLevel, configure_logging

app = Typer(
    name="stackup",
    help="stackup — bring up the containerized application stack in order.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("stackup")
        except PackageNotFoundError:
            from stackup import __version__ as v
        typer.echo(f"stackup {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    env_file: Path | None = typer.Option(
        None, "--env-file", "-e", help="Configuration file (default: <project-dir>/.env).",
    ),
    project_dir: Path | None = typer.Option(
        None, "--project-dir", "-C", help="Directory holding the compose project.",
    ),
    log_level: LogLevel = typer.Option(
        LogLevel.WARNING, "--log-level", case_sensitive=False, help="Structured log level (stderr).",
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """stackup CLI — deploy, check and repair the stack."""
    configure_logging(level=log_level)
    ctx.obj = CliState(env_file=env_file, project_dir=project_dir, log_level=log_level.value)


# ── Sub-command registration ─────────────────────────────────────────────

from stackup.cli.deploy import deploy  # noqa: E402
from stackup.cli.fix import app as fix_app  # noqa: E402
from stackup.cli.health import health  # noqa: E402

app.command("deploy")(deploy)
app.command("health")(health)
app.add_typer(fix_app, name="fix", help="Targeted remediation actions.")
