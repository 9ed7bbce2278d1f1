"""
Shared CLI output helpers for fatal error reporting.
"""
from __future__ import annotations

from rich.console import Console
from rich.traceback import Traceback

_stderr = Console(stderr=True)


def print_critical_error(title: str, error: Exception, *, include_traceback: bool = True) -> None:
    """Print a fatal error banner to stderr; the caller decides the exit code."""
    _stderr.rule(f"[bold red]CRITICAL ERROR - {title}")
    _stderr.print(f"Error: {error}", markup=False, highlight=False)
    _stderr.print(f"Type: {type(error).__name__}", markup=False, highlight=False)
    if include_traceback and error.__traceback__ is not None:
        _stderr.print(Traceback.from_exception(type(error), error, error.__traceback__))
    _stderr.rule(style="red")
