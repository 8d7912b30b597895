"""Rich-based terminal display layer for gate and discovery output.

Everything printed here lands in the CI build log, so the gate banners
are plain text (markup and highlighting off): the discovery log detector
matches them verbatim.  A module-level :class:`~rich.console.Console`
singleton keeps output consistent across the session.
"""

from __future__ import annotations

from typing import Any, Iterable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.shared.constants import BANNER_START, BANNER_STATUS, VERSION

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()


def _log_line(message: str) -> None:
    _console.print(message, markup=False, highlight=False, soft_wrap=True)


# ---------------------------------------------------------------------------
# Gate build-log lines
# ---------------------------------------------------------------------------


def print_gate_start() -> None:
    _log_line(BANNER_START)


def print_gate_status(status: str) -> None:
    _log_line(BANNER_STATUS)
    _log_line(f"Status: {status}")


def print_hold(retry_delay: float) -> None:
    _log_line(f"[INFO] SLA is on HOLD. Sleeping {retry_delay:g}s...")
    _log_line(
        f"[INFO] Sleeping {retry_delay:g} seconds before trying again. "
        "You can temporarily release the build from ArmorCode console"
    )


def print_hold_exhausted(attempts: int) -> None:
    _log_line(
        f"[ERROR] ArmorCode check did not pass after {attempts} "
        "attempts (last status was HOLD)."
    )


def print_passed() -> None:
    _log_line("[INFO] ArmorCode check passed! Proceeding...")


def print_failure_details(message: str) -> None:
    for line in message.splitlines():
        _log_line(line)


def print_blocked() -> None:
    _log_line("[BLOCK] SLA check FAILED => Terminating build with failure.")


def print_warned() -> None:
    _log_line(
        "[WARN] SLA check FAILED but 'warn' mode is active => "
        "Marking build as UNSTABLE and continuing..."
    )


def print_request_error(error: Exception, retry_delay: float | None) -> None:
    _log_line(f"[ERROR] ArmorCode request failed: {error}")
    if retry_delay is not None:
        _log_line(f"Waiting {retry_delay:g}s before retry...")


# ---------------------------------------------------------------------------
# Operator output (CLI)
# ---------------------------------------------------------------------------


def print_error(title: str, message: str) -> None:
    """Print an error panel."""
    _console.print(
        Panel(
            Text(message),
            title=f"[bold red]{title}[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_version() -> None:
    _console.print(f"release-gate {VERSION}")


def print_jobs_table(records: Iterable[Any]) -> None:
    """Print discovered jobs as a table.

    Parameters
    ----------
    records:
        ``JobRecord`` instances (or duck-typed objects with ``name``,
        ``last_build_number``, ``job_url`` and ``mapped``).
    """
    table = Table(title="Discovered Jobs", show_lines=False)
    table.add_column("Job", style="cyan")
    table.add_column("Last Build", justify="right")
    table.add_column("URL", style="dim")
    table.add_column("Gate", justify="center")

    count = 0
    mapped = 0
    for record in records:
        count += 1
        if record.mapped:
            mapped += 1
        table.add_row(
            record.name,
            record.last_build_number,
            record.job_url or "-",
            "[green]yes[/green]" if record.mapped else "[dim]no[/dim]",
        )

    _console.print(table)
    _console.print(f"{mapped} of {count} job(s) use the release gate")


def print_batch_summary(result: Any) -> None:
    """Print the outcome of a discovery upload."""
    style = "green" if result.success else "yellow"
    _console.print(
        f"[{style}]Sent {result.succeeded_records} of {result.total_records} "
        f"job record(s) ({result.batches_failed} failed batch(es))[/{style}]"
    )
