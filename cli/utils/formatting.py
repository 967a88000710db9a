"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Scheduled For", justify="left")
    table.add_column("Last Error", justify="left", style="red")

    for job in jobs:
        error = job.get("last_error") or "—"
        table.add_row(
            job.get("id", "")[:8],  # Short ID
            job.get("type", ""),
            format_status(job.get("status", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            job.get("scheduled_for", "—"),
            error[:40] + "..." if len(error) > 40 else error,
        )

    return table


def create_stats_table(stats: dict[str, Any]) -> Table:
    """Create a formatted table for job counts by status"""
    table = Table(title="Job Stats", box=box.ROUNDED)

    table.add_column("Status", justify="left")
    table.add_column("Count", justify="right", style="cyan")

    for status, count in stats.get("by_status", {}).items():
        table.add_row(format_status(status), str(count))

    table.add_section()
    table.add_row("[bold]queue depth[/bold]", str(stats.get("queue_depth", 0)))
    table.add_row("[bold]total[/bold]", str(stats.get("total", 0)))

    return table


def create_pass_panel(run: dict[str, Any]) -> Panel:
    """Create formatted panel for a processing pass summary"""
    processed = run.get("processed", {})
    content = f"""
⚙️ [bold blue]Processing Pass[/bold blue]

• Claimed: [cyan]{processed.get("claimed", 0)}[/cyan]
• Completed: [green]{processed.get("processed", 0)}[/green]
• Failed: [red]{processed.get("failed", 0)}[/red] (retried {processed.get("retried", 0)}, dead {processed.get("dead", 0)})
• Reclaimed stale: [yellow]{processed.get("reclaimed", 0)}[/yellow]
• Dropped (job changed meanwhile): [yellow]{processed.get("dropped", 0)}[/yellow]
• Cleaned up: [purple]{run.get("cleaned", 0)}[/purple]
• Duration: [blue]{run.get("duration_ms", 0)}ms[/blue]
"""

    return Panel(content, title="Pass Complete", border_style="green")


def display_job(job: dict[str, Any], show_payload: bool = True):
    """Display one job in detail"""
    lines = [
        f"• ID: [cyan]{job.get('id')}[/cyan]",
        f"• Type: [magenta]{job.get('type')}[/magenta]",
        f"• Status: {format_status(job.get('status', ''))}",
        f"• Attempts: [yellow]{job.get('attempts', 0)}/{job.get('max_attempts', 0)}[/yellow]",
        f"• Scheduled for: {job.get('scheduled_for')}",
        f"• Created: {job.get('created_at')}",
        f"• Updated: {job.get('updated_at')}",
    ]
    if job.get("completed_at"):
        lines.append(f"• Completed: {job['completed_at']}")
    if job.get("claimed_by"):
        lines.append(f"• Claimed by: {job['claimed_by']} at {job.get('claimed_at')}")
    if job.get("last_error"):
        lines.append(f"• Last error: [red]{job['last_error']}[/red] ({job.get('error_code')})")

    console.print(Panel("\n".join(lines), title="Job", border_style="blue"))

    if show_payload:
        console.print(
            Panel(json.dumps(job.get("payload"), indent=2), title="Payload", border_style="dim")
        )
    if job.get("result") is not None:
        console.print(
            Panel(json.dumps(job["result"], indent=2), title="Result", border_style="green")
        )
