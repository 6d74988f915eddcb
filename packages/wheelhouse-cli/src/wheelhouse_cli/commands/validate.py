"""wheelhouse validate command - Validate wheelhouse.yaml configuration."""

from __future__ import annotations

import click

from wheelhouse_cli.errors import load_pipeline_config
from wheelhouse_cli.output import info, success


@click.command()
@click.option(
    "-f",
    "--file",
    "file_path",
    type=click.Path(exists=False),
    default="./wheelhouse.yaml",
    help="Path to wheelhouse.yaml [default: ./wheelhouse.yaml]",
)
def validate(file_path: str) -> None:
    """Validate wheelhouse.yaml configuration.

    Validates the configuration file against the PipelineConfig schema and
    reports errors with field paths.

    Examples:

        wheelhouse validate

        wheelhouse validate --file path/to/wheelhouse.yaml
    """
    config = load_pipeline_config(file_path)
    cells = len(config.matrix.runtime_versions) * len(config.matrix.platforms)
    success("Configuration valid")
    info(
        f"  {config.name}: {len(config.matrix.runtime_versions)} runtime version(s) x "
        f"{len(config.matrix.platforms)} platform(s) = {cells} cell(s)"
    )
