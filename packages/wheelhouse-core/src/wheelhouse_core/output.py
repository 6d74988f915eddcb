"""Pipeline result output formatters.

Rich table and JSON output for pipeline runs and build matrices.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from wheelhouse_core.emulation import normalize_arch
from wheelhouse_core.models import (
    BuildJob,
    CellResult,
    CellStatus,
    PipelineResult,
    PipelineStatus,
)


def _status_icon(status: CellStatus | PipelineStatus) -> str:
    """Get icon for a cell or run status."""
    icons = {
        "succeeded": "✅",
        "emulation_failed": "💥",
        "build_failed": "❌",
        "verification_failed": "❌",
        "failed": "❌",
        "cancelled": "⏹️",
    }
    return icons.get(status.value, "❓")


def _status_color(status: CellStatus | PipelineStatus) -> str:
    """Get color for a cell or run status."""
    if status.value == "succeeded":
        return "green"
    if status.value == "cancelled":
        return "yellow"
    return "red"


def format_result_table(result: PipelineResult, console: Console | None = None) -> None:
    """Format a pipeline result as a Rich table.

    Args:
        result: PipelineResult to display
        console: Optional Rich console (creates one if not provided)
    """
    if console is None:
        console = Console()

    color = _status_color(result.status)
    header_text = Text()
    header_text.append("WHEELHOUSE RUN REPORT\n\n", style="bold")
    header_text.append(f"Status: {_status_icon(result.status)} ", style=color)
    header_text.append(result.status.value.upper(), style=f"bold {color}")
    header_text.append(f"\nRun: {result.run_id}")
    header_text.append(f"\nTrigger: {result.event.trigger_ref or '-'}")
    header_text.append(
        f"\nCells: {result.succeeded_count} succeeded, {result.failed_count} failed"
    )
    if result.total_duration_ms > 0:
        header_text.append(f"\nDuration: {result.total_duration_ms}ms")

    console.print(Panel(header_text, title="[bold]Pipeline Results[/bold]"))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Status", width=3, justify="center")
    table.add_column("Cell", min_width=20)
    table.add_column("Emulation", min_width=10)
    table.add_column("Artifacts", justify="right")
    table.add_column("Message", min_width=30)
    table.add_column("Duration", justify="right", width=10)

    for cell in result.cells:
        table.add_row(
            _status_icon(cell.status),
            Text(cell.job.cell_id, style=_status_color(cell.status)),
            cell.emulation.value if cell.emulation else "-",
            str(len(cell.artifacts)),
            Text(cell.message or "-", style="dim" if not cell.message else ""),
            f"{cell.duration_ms}ms" if cell.duration_ms > 0 else "-",
        )

    console.print(table)

    if result.artifact_set is not None:
        console.print(
            f"Artifact set [bold]{result.artifact_set.name}[/bold]: "
            f"{len(result.artifact_set)} artifact(s) in {result.artifact_set.directory}"
        )
    if result.unverified_set is not None and len(result.unverified_set):
        console.print(
            f"[yellow]Unverified artifacts kept for inspection in "
            f"{result.unverified_set.directory}[/yellow]"
        )
    if result.error:
        console.print(f"[bold red]Error:[/bold red] {result.error}")

    if result.gate is not None:
        gate_style = "green" if result.gate.open else "yellow"
        gate_state = "open" if result.gate.open else "closed"
        console.print(
            f"Release gate: [{gate_style}]{gate_state}[/{gate_style}] ({result.gate.reason})"
        )

    if result.publish is not None:
        console.print(
            f"Published: {result.publish.uploaded_count} uploaded, "
            f"{result.publish.skipped_count} already present"
        )
    if result.publish_error:
        console.print(f"[bold red]Publish failed:[/bold red] {result.publish_error}")

    failed_cells = [c for c in result.cells if c.failed]
    if failed_cells:
        console.print()
        console.print("[bold red]Failed Cell Details:[/bold red]")
        for cell in failed_cells:
            console.print(f"  [red]• {cell.job.cell_id}[/red]: {cell.message}")
            for key, value in cell.details.items():
                console.print(f"    {key}: {value}", style="dim")


def format_result_json(result: PipelineResult, pretty: bool = True) -> str:
    """Format a pipeline result as JSON."""
    data = _result_to_dict(result)
    if pretty:
        return json.dumps(data, indent=2, default=str)
    return json.dumps(data, default=str)


def _result_to_dict(result: PipelineResult) -> dict[str, Any]:
    """Convert PipelineResult to dictionary for JSON serialization."""
    return {
        "run_id": result.run_id,
        "status": result.status.value,
        "passed": result.passed,
        "trigger_ref": result.event.trigger_ref,
        "is_tag": result.event.is_tag,
        "summary": {
            "total": len(result.cells),
            "succeeded": result.succeeded_count,
            "failed": result.failed_count,
        },
        "duration_ms": result.total_duration_ms,
        "started_at": result.started_at.isoformat() if result.started_at else None,
        "finished_at": result.finished_at.isoformat() if result.finished_at else None,
        "cells": [_cell_to_dict(cell) for cell in result.cells],
        "artifact_set": (
            {
                "name": result.artifact_set.name,
                "directory": str(result.artifact_set.directory),
                "artifacts": result.artifact_set.filenames,
                "conflicts": result.artifact_set.conflicts,
            }
            if result.artifact_set is not None
            else None
        ),
        "gate": result.gate.model_dump() if result.gate is not None else None,
        "publish": (
            {
                "uploaded": result.publish.uploaded_count,
                "skipped": result.publish.skipped_count,
                "records": [r.model_dump(mode="json") for r in result.publish.records],
            }
            if result.publish is not None
            else None
        ),
        "publish_error": result.publish_error,
        "error": result.error,
    }


def _cell_to_dict(cell: CellResult) -> dict[str, Any]:
    """Convert CellResult to dictionary for JSON serialization."""
    return {
        "cell": cell.job.cell_id,
        "runtime_version": cell.job.runtime_version,
        "target_platform": cell.job.target_platform,
        "status": cell.status.value,
        "emulation": cell.emulation.value if cell.emulation else None,
        "artifacts": [a.filename for a in cell.artifacts],
        "message": cell.message,
        "details": cell.details,
        "duration_ms": cell.duration_ms,
    }


def print_result(
    result: PipelineResult,
    output_format: str = "table",
    console: Console | None = None,
) -> None:
    """Print a pipeline result in the specified format.

    Args:
        result: PipelineResult to display
        output_format: Output format ("table" or "json")
        console: Optional Rich console
    """
    if console is None:
        console = Console()

    if output_format == "json":
        _write_raw(format_result_json(result, pretty=True), console)
    else:
        format_result_table(result, console)


def print_matrix(
    jobs: list[BuildJob],
    host_arch: str,
    output_format: str = "table",
    console: Console | None = None,
) -> None:
    """Print expanded build jobs and whether each needs emulation on this host."""
    if console is None:
        console = Console()

    rows = [
        {
            "cell": job.cell_id,
            "runtime_version": job.runtime_version,
            "target_platform": job.target_platform,
            "target_arch": job.target_arch,
            "emulation_required": normalize_arch(job.target_arch) != normalize_arch(host_arch),
        }
        for job in jobs
    ]

    if output_format == "json":
        _write_raw(json.dumps({"host_arch": host_arch, "jobs": rows}, indent=2), console)
        return

    table = Table(show_header=True, header_style="bold", title=f"Build matrix (host: {host_arch})")
    table.add_column("Cell", min_width=20)
    table.add_column("Runtime")
    table.add_column("Target")
    table.add_column("Arch")
    table.add_column("Emulation")
    for row in rows:
        table.add_row(
            row["cell"],
            row["runtime_version"],
            row["target_platform"],
            row["target_arch"],
            "[yellow]required[/yellow]" if row["emulation_required"] else "[dim]native[/dim]",
        )
    console.print(table)


def _write_raw(text: str, console: Console) -> None:
    # Raw JSON keeps machine-readable output free of Rich formatting
    if console.file is not None:
        console.file.write(text + "\n")
    else:
        print(text)
