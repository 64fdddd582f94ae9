from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from rich import box
from rich.console import Console
from rich.table import Table

from tollgate.models.request import AccessRequest, ConditionStatus, ConditionType, format_timestamp
from tollgate.ui import __version__


# ---------- Helpers ----------

def _iso_utc_now_seconds() -> str:
    """UTC ISO 8601, second precision, with Z suffix."""
    return format_timestamp(datetime.now(timezone.utc))


def _status_style(status: ConditionStatus) -> str:
    if status == ConditionStatus.TRUE:
        return "bold green"
    if status == ConditionStatus.FALSE:
        return "bold red"
    return "bold yellow"


def _phase_style(phase: str) -> str:
    if phase == "Ready":
        return "bold green"
    if phase in ("Invalid", "Expired"):
        return "bold red"
    return "bold yellow"


def _divider(console: Console, title: Optional[str] = None) -> None:
    """
    Subtle section divider that adapts to terminal width.
    Example:
      ─────── CONDITIONS ─────────────────────────────
    """
    width = console.size.width if console.is_terminal else 80
    width = max(40, width)

    if title:
        label = f" {title.strip().upper()} "
        left = "─" * 6
        remaining = max(0, width - len(left) - len(label))
        console.print(f"[dim]{left}{label}{'─' * remaining}[/dim]")
    else:
        console.print(f"[dim]{'─' * width}[/dim]")


# ---------- UI ----------

def print_banner(console: Console) -> None:
    console.print(f"TOLLGATE [dim]v{__version__}[/dim]", style="bold green")
    console.print("short-lived, narrowly-scoped cluster access", style="bold cyan")
    console.print("")


def print_step(console: Console, message: str) -> None:
    """Prints a step label without a newline; pair with print_ok()."""
    console.print(f"{message}... ", end="")


def print_ok(console: Console, message: str = "valid!") -> None:
    console.print(f"[green]{message}[/green]")


def print_conditions(console: Console, request: AccessRequest) -> None:
    """Renders every condition in its fixed type order."""
    _divider(console, "CONDITIONS")
    table = Table(
        box=box.SIMPLE_HEAD if console.is_terminal else box.SIMPLE,
        show_header=True,
        header_style="bold white",
        border_style="dim",
        expand=True,
    )
    table.add_column("CONDITION", no_wrap=True)
    table.add_column("STATE", justify="center", no_wrap=True)
    table.add_column("REASON", no_wrap=True)
    table.add_column("MESSAGE", ratio=4)
    table.add_column("SINCE", no_wrap=True, style="dim")

    for ctype in ConditionType:
        cond = request.status.get_condition(ctype)
        if cond is None:
            table.add_row(ctype.value, "[dim]-[/dim]", "-", "[dim]not reported yet[/dim]", "-")
            continue
        style = _status_style(cond.status)
        table.add_row(
            ctype.value,
            f"[{style}]{cond.status.value}[/{style}]",
            cond.reason,
            cond.message,
            format_timestamp(cond.last_transition_time),
        )

    console.print(table)


def print_request_summary(console: Console, request: AccessRequest) -> None:
    _divider(console, "REQUEST")
    console.print(f" • Kind:       [yellow]{request.kind.value}[/yellow]")
    console.print(f" • Name:       [yellow]{request.ref}[/yellow]")
    console.print(f" • Template:   [yellow]{request.template_name}[/yellow]")
    console.print(f" • Created At: [dim]{format_timestamp(request.creation_timestamp)}[/dim]")
    console.print(f" • Checked At: [dim]{_iso_utc_now_seconds()}[/dim]")
    if request.status.pod_name:
        console.print(f" • Target Pod: [yellow]{request.status.pod_name}[/yellow]")
    style = _phase_style(request.phase)
    console.print(f" • Phase:      [{style}]{request.phase}[/{style}]\n")


def print_access_ready(console: Console, request: AccessRequest) -> None:
    console.print("\n[bold green]Success, your access request is ready![/bold green]")
    print_request_summary(console, request)
    if request.status.access_message:
        _divider(console, "ACCESS")
        console.print(f"[cyan]{request.status.access_message}[/cyan]\n")
