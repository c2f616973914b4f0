"""Console output helpers built on rich."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormatter:
    """Formats user-facing messages for the terminal.

    Info and success messages are dropped in quiet mode. Warnings and
    errors always go to stderr. Warning, error and table text is printed
    literally; info messages are rich markup, so callers escape any user
    text (paths, descriptions) they put in them.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def print(self, message: str = "") -> None:
        if self.quiet or self.json_output:
            return
        self.console.print(message)

    def info(self, message: str) -> None:
        if self.quiet or self.json_output:
            return
        self.console.print(message)

    def success(self, message: str) -> None:
        if self.quiet or self.json_output:
            return
        self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]{escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[bold red]{escape(message)}[/bold red]")

    def output_json(self, data: Any) -> None:
        """Write ``data`` as JSON to stdout regardless of quiet mode."""
        self.console.print_json(json.dumps(data, default=str))

    def output_table(
        self,
        columns: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        if self.quiet or self.json_output:
            return
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(escape(cell) for cell in row))
        self.console.print(table)
