"""wheelhouse schema command - Export JSON Schema."""

from __future__ import annotations

import click

from wheelhouse_cli.output import error, success


@click.group()
def schema() -> None:
    """Manage JSON Schema for IDE support.

    **Commands:**

    - `wheelhouse schema export` - Export the wheelhouse.yaml JSON Schema
    """
    pass


@schema.command("export")
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(),
    default="./schemas/wheelhouse.schema.json",
    help="Output path [default: ./schemas/wheelhouse.schema.json]",
)
def export_schema(output_path: str) -> None:
    """Export the wheelhouse.yaml JSON Schema.

    Examples:

        wheelhouse schema export

        wheelhouse schema export --output custom/path/schema.json
    """
    try:
        # Import here to avoid heavy imports at CLI startup
        from wheelhouse_core.export import export_pipeline_config_schema

        export_pipeline_config_schema(output_path)
        success(f"Schema exported to {output_path}")

    except PermissionError:
        error(f"Cannot write to: {output_path}")
        raise SystemExit(2) from None
