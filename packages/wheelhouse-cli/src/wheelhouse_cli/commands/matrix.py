"""wheelhouse matrix command - Show the expanded build matrix."""

from __future__ import annotations

import click

from wheelhouse_cli.errors import load_pipeline_config
from wheelhouse_cli.output import get_console


@click.command()
@click.option(
    "-f",
    "--file",
    "file_path",
    type=click.Path(exists=False),
    default="./wheelhouse.yaml",
    help="Path to wheelhouse.yaml [default: ./wheelhouse.yaml]",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format [default: table]",
)
@click.option(
    "--host-arch",
    type=str,
    default=None,
    help="Architecture to compare against [default: this machine]",
)
def matrix(file_path: str, output_format: str, host_arch: str | None) -> None:
    """Show the build jobs the matrix expands to.

    Lists every (runtime version, target platform) cell and whether it needs
    emulation on the build host.

    Examples:

        wheelhouse matrix

        wheelhouse matrix --format json

        wheelhouse matrix --host-arch aarch64
    """
    config = load_pipeline_config(file_path)

    # Import here to avoid heavy imports at CLI startup
    from wheelhouse_core.emulation import host_architecture, normalize_arch
    from wheelhouse_core.matrix import expand_config
    from wheelhouse_core.output import print_matrix

    jobs = expand_config(config.matrix)
    arch = normalize_arch(host_arch) if host_arch else host_architecture()
    print_matrix(jobs, arch, output_format=output_format, console=get_console())
