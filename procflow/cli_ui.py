"""Shared CLI UI primitives for procflow.

Wraps Rich to provide a consistent visual identity.
All CLI code should import from here, never from rich directly.
"""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

# ---------------------------------------------------------------------------
# Theme & singletons
# ---------------------------------------------------------------------------

THEME = Theme(
    {
        "info": "dim",
        "warning": "yellow",
        "error": "bold red",
        "success": "green",
        "accent": "cyan",
        "heading": "bold",
        "state": "bold cyan",
        "key": "bold",
        "dim": "dim",
    }
)

console = Console(theme=THEME, highlight=False)

# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

_MAX_WIDTH = 100


def _panel_width() -> int:
    return min(console.width, _MAX_WIDTH)


def title(name: str, version: str) -> None:
    """Print a bold name followed by a dim version."""
    console.print(
        Text.assemble(
            (name, "bold"),
            (f"  v{version}", "dim"),
        )
    )


def heading(text: str) -> None:
    console.print()
    console.print(f"[bold]{text}[/]")


def success(msg: str) -> None:
    """Green checkmark + message."""
    console.print(f"  [green]✓[/] {msg}")


def error(msg: str, hint: Optional[str] = None) -> None:
    """Red X + message, optional dim hint. The message is printed verbatim."""
    console.print(f"  [red]✗[/] {escape(msg)}", style="bold red")
    if hint:
        console.print(f"    [dim]{hint}[/]")


def warning(msg: str) -> None:
    """Yellow warning prefix + message, printed verbatim."""
    console.print(f"  [yellow]![/] {escape(msg)}")


def dim(msg: str) -> None:
    console.print(f"  [dim]{msg}[/]")


def key_value(key: str, value: str, indent: int = 2) -> None:
    """Print 'key: value' with bold key."""
    pad = " " * indent
    console.print(f"{pad}[bold]{key}:[/] {value}")


def source_preview(content: str, lexer: str = "text", title: str = "") -> None:
    """Panel with syntax-highlighted source, truncated to 30 lines."""
    lines = content.splitlines()
    preview = "\n".join(lines[:30])
    if len(lines) > 30:
        preview += "\n# ... truncated"

    syntax = Syntax(preview, lexer, theme="ansi_dark", line_numbers=False)
    console.print()
    console.print(
        Panel(
            syntax,
            title=title or lexer.upper(),
            title_align="left",
            border_style="dim",
            width=_panel_width(),
            padding=(0, 1),
        )
    )


def config_panel(title: str, items: dict[str, str]) -> None:
    """Panel showing a key-value summary."""
    body = "\n".join(f"[bold]{k}:[/] {v}" for k, v in items.items())

    console.print()
    console.print(
        Panel(
            body,
            title=title,
            title_align="left",
            border_style="dim",
            width=_panel_width(),
            padding=(0, 1),
        )
    )


def make_table(title: str, columns: list[str], rows: list[list[str]]) -> None:
    """Build and print a Rich table."""
    table = Table(
        title=title,
        title_style="bold",
        show_header=True,
        header_style="bold dim",
        border_style="dim",
        width=_panel_width(),
        show_lines=False,
        padding=(0, 1),
    )
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*row)
    console.print()
    console.print(table)
