"""Confirmation before destructive steps.

The sync engine asks a ``Confirmer`` instead of prompting directly, so the
same code runs from an interactive terminal or a script.
"""

from typing import Protocol

import click


class Confirmer(Protocol):
    def confirm(self, message: str, default: bool = False) -> bool:
        """Return True to go ahead."""
        ...


class AutoConfirm:
    """Answers every question with a fixed reply (``--yes`` or dry runs)."""

    def __init__(self, answer: bool = True):
        self.answer = answer

    def confirm(self, message: str, default: bool = False) -> bool:
        return self.answer


class ClickConfirm:
    """Asks on the terminal through ``click.confirm``."""

    def confirm(self, message: str, default: bool = False) -> bool:
        return click.confirm(message, default=default)
