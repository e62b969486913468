from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Log lines are never wrapped, so they stay greppable.
console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)


def log_info(message: str) -> None:
    console.print(f"[cyan]ℹ️  {escape(message)}[/]")


def log_success(message: str) -> None:
    console.print(f"[bold green]✅  {escape(message)}[/]")


def log_warning(message: str) -> None:
    console.print(f"[bold yellow]⚠️  WARNING: {escape(message)}[/]")


def log_error(message: str) -> None:
    err_console.print(f"[bold red]❌  ERROR: {escape(message)}[/]")


def print_section(title: str) -> None:
    border = "=" * 60
    console.print(f"\n[bold blue]{border}[/]")
    console.print(f"[bold blue]{escape(title.center(60))}[/]")
    console.print(f"[bold blue]{border}[/]\n")


def outcome_table(title: str, rows: list[tuple[str, str, str]]) -> Table:
    """Build a (resource, result, detail) table."""
    table = Table(title=title, title_style="bold blue")
    table.add_column("Resource", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for resource, result, detail in rows:
        style = "red" if result in {"failed", "FAIL"} else "yellow" if result == "WARN" else "green"
        table.add_row(escape(resource), f"[{style}]{escape(result)}[/]", escape(detail))
    return table
