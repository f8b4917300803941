"""
CLI layer for stackup.

Provides a Typer application whose commands delegate to ``stackup.deploy``.
This package handles only terminal transport: argument parsing, coloured
status lines, and report rendering.

Entry point::

    stackup --help
"""

from stackup.cli.app import app

__all__ = ["app"]
