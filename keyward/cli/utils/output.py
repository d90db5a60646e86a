"""Output formatting utilities for CLI."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormat(Enum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


def _plain(value: Any) -> Any:
    """Make a value safe for JSON and YAML dumping."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class OutputFormatter:
    """Handle output formatting for different formats."""

    def __init__(self, format_type: str = "table", console: Optional[Console] = None):
        """
        Initialize output formatter.

        Args:
            format_type: Output format (table, json, yaml)
            console: Console to print to
        """
        self.console = console or Console()
        try:
            self.format = OutputFormat(format_type.lower())
        except ValueError:
            self.format = OutputFormat.TABLE

    def _dump(self, data: Any) -> None:
        if self.format == OutputFormat.JSON:
            text = json.dumps(_plain(data), indent=2)
        else:
            text = yaml.safe_dump(_plain(data), default_flow_style=False, sort_keys=False)
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return "[dim]-[/dim]"
        if isinstance(value, bool):
            return "[green]✓[/green]" if value else "[red]✗[/red]"
        if isinstance(value, datetime):
            return value.strftime("%Y-%m-%d %H:%M")
        return escape(str(value))

    def print_list(
        self,
        items: List[Dict[str, Any]],
        columns: Optional[List[str]] = None,
        title: Optional[str] = None,
        no_headers: bool = False,
    ):
        """
        Print a list of items.

        Args:
            items: List of items to print
            columns: Column names to display (for table format)
            title: Table title (for table format)
            no_headers: Whether to hide headers (for table format)
        """
        if self.format != OutputFormat.TABLE:
            self._dump(items)
            return

        if not items:
            self.console.print("[dim]No items found[/dim]")
            return

        columns = columns or list(items[0].keys())
        table = Table(title=title, show_header=not no_headers)
        for col in columns:
            table.add_column(col.replace("_", " ").title())

        for item in items:
            table.add_row(*(self._cell(item.get(col)) for col in columns))

        self.console.print(table)

    def print_detail(self, item: Dict[str, Any], title: Optional[str] = None):
        """
        Print detailed view of a single item.

        Args:
            item: Item to print
            title: Optional title
        """
        if self.format != OutputFormat.TABLE:
            self._dump(item)
            return

        if title:
            self.console.print(f"[bold]{escape(title)}[/bold]\n")

        for key, value in item.items():
            formatted_key = key.replace("_", " ").title()
            self.console.print(
                f"[cyan]{formatted_key}:[/cyan] {self._cell(value)}", soft_wrap=True
            )

    def _print_status(self, status: str, symbol: str, message: str):
        if self.format != OutputFormat.TABLE:
            self._dump({"status": status, "message": message})
        else:
            self.console.print(f"{symbol} {escape(message)}", soft_wrap=True)

    def print_success(self, message: str):
        """Print success message."""
        self._print_status("success", "[green]✓[/green]", message)

    def print_error(self, message: str):
        """Print error message."""
        self._print_status("error", "[red]✗[/red]", message)

    def print_warning(self, message: str):
        """Print warning message."""
        self._print_status("warning", "[yellow]⚠[/yellow]", message)
