"""Operator confirmation for paranoid mode."""

from __future__ import annotations

from collections.abc import Callable

from rich.console import Console
from rich.prompt import Confirm

from gitland.core.console import console as default_console

Confirmer = Callable[[str], bool]


def make_confirmer(console: Console | None = None) -> Confirmer:
    """Return a prompt function that answers False unless the operator says yes."""
    target = console or default_console

    def _ask(question: str) -> bool:
        try:
            return Confirm.ask(question, default=False, console=target)
        except EOFError:
            # No operator input available: decline.
            return False

    return _ask


def always(answer: bool) -> Confirmer:
    """Fixed-answer confirmer, for non-interactive callers."""

    def _fixed(question: str) -> bool:
        return answer

    return _fixed


__all__ = ["Confirmer", "always", "make_confirmer"]
