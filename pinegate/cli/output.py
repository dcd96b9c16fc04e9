"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
output (--json flag). All formatting goes through these functions so the
CLI commands stay clean.
"""

import json

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

# Status color map for grant and connection statuses
STATUS_COLORS = {
    "pending": "yellow",
    "assigned": "green",
    "failed": "red",
    "expired": "dim",
    "active": "green",
    "error": "red",
    "disconnected": "dim",
}


def _colored(status: str | None) -> str:
    if status is None:
        return "—"
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_result(result: dict, title: str, as_json: bool = False) -> str:
    """Format an operation result (assign, revoke, verify) as a panel or JSON."""
    if as_json:
        return json.dumps(result, indent=2, default=str)

    lines = []
    for key, value in result.items():
        if key == "status":
            value = _colored(value)
        elif isinstance(value, dict):
            value = json.dumps(value, default=str)
        elif value is None:
            value = "—"
        lines.append(f"[bold]{key}:[/bold] {value}")

    border = "green" if result.get("success", True) else "red"
    return _render(Panel("\n".join(lines), title=title, border_style=border))


def format_summary(summary: dict, title: str, as_json: bool = False) -> str:
    """Format a job summary (health check, trial cleanup) as a two-column table."""
    if as_json:
        return json.dumps(summary, indent=2, default=str)

    table = Table(title=title, show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")
    for key, value in summary.items():
        if isinstance(value, list):
            value = len(value)
        table.add_row(key, str(value))
    return _render(table)


def format_catalog(result: dict, as_json: bool = False) -> str:
    """Format a catalog sync result as a Rich table or JSON."""
    if as_json:
        return json.dumps(result, indent=2, default=str)

    scripts = result.get("scripts", [])
    if not scripts:
        return f"No published scripts found for seller {result.get('seller_id')}."

    table = Table(title=f"Catalog ({result.get('count', len(scripts))} scripts)", show_lines=True)
    table.add_column("Script ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Pine ID")
    table.add_column("Likes", justify="right")
    table.add_column("Reviews", justify="right")
    for script in scripts:
        table.add_row(
            script.get("script_id") or "—",
            script.get("title") or "—",
            script.get("pine_id") or "—",
            str(script.get("likes", 0)),
            str(script.get("reviews_count", 0)),
        )
    return _render(table)
