"""
CLI layer for tempstash.

Provides a Typer application that wraps the :class:`~tempstash.stash.Stash`
facade. This package handles only terminal transport: argument parsing,
coloured output and table formatting.

Entry point::

    tempstash --help
"""

from tempstash.cli.app import app

__all__ = ["app"]
