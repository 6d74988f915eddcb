"""wheelhouse run command - Execute the release pipeline."""

from __future__ import annotations

import signal
from dataclasses import dataclass
from types import FrameType

import click

from wheelhouse_cli.errors import (
    EXIT_CANCELLED,
    EXIT_SUCCESS,
    EXIT_USER_ERROR,
    load_pipeline_config,
)
from wheelhouse_cli.output import get_console, warning


@dataclass
class RunOptions:
    """Options for the run command."""

    file_path: str
    ref: str | None
    tag_name: str | None
    run_id: str | None
    max_parallel: int | None
    output_format: str
    log_level: str
    json_logs: bool


def _validate_run_id(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    """Reject run ids that are not a single safe path component."""
    from wheelhouse_core.pipeline import RUN_ID_PATTERN

    if value is not None and not RUN_ID_PATTERN.fullmatch(value):
        raise click.BadParameter(
            "must start with a letter or digit and contain only letters, digits, '.', '_', '-'"
        )
    return value


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
    "--ref",
    type=str,
    default=None,
    envvar="GITHUB_REF",
    help="Triggering git ref, e.g. refs/tags/1.2.0 [default: $GITHUB_REF]",
)
@click.option(
    "--tag",
    "tag_name",
    type=str,
    default=None,
    help="Tag name for tag pushes (implies refs/tags/<tag> when --ref is not set)",
)
@click.option(
    "--run-id",
    type=str,
    default=None,
    callback=_validate_run_id,
    help="Run identifier: letters, digits, '.', '_', '-' [default: generated]",
)
@click.option(
    "--max-parallel",
    type=click.IntRange(1, 64),
    default=None,
    help="Override the number of concurrently running cells",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format [default: table]",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Log level [default: INFO]",
)
@click.option("--json-logs", is_flag=True, default=False, help="Emit logs as JSON")
def run(
    file_path: str,
    ref: str | None,
    tag_name: str | None,
    run_id: str | None,
    max_parallel: int | None,
    output_format: str,
    log_level: str,
    json_logs: bool,
) -> None:
    """Build, verify, collect and release wheels.

    Every matrix cell is built and verified independently. Verified artifacts
    are collected into one set, which is published only for a tag push in
    which every cell succeeded.

    Exit codes: 0 success, 1 failed cell or publish failure, 130 cancelled.

    Examples:

        wheelhouse run

        wheelhouse run --ref refs/tags/1.2.0

        wheelhouse run --max-parallel 2 --format json
    """
    options = RunOptions(
        file_path=file_path,
        ref=ref,
        tag_name=tag_name,
        run_id=run_id,
        max_parallel=max_parallel,
        output_format=output_format,
        log_level=log_level,
        json_logs=json_logs,
    )
    raise SystemExit(_run_pipeline(options))


def _run_pipeline(options: RunOptions) -> int:
    """Execute the pipeline and return the exit code."""
    config = load_pipeline_config(options.file_path)

    # Import here to avoid heavy imports at CLI startup
    from wheelhouse_core.models import PipelineStatus, ReleaseEvent
    from wheelhouse_core.observability import configure_logging
    from wheelhouse_core.output import print_result
    from wheelhouse_core.pipeline import PipelineRunner

    configure_logging(log_level=options.log_level.upper(), json_format=options.json_logs)

    if options.max_parallel is not None:
        config = config.model_copy(update={"max_parallel": options.max_parallel})

    event = ReleaseEvent.from_ref(options.ref, tag_name=options.tag_name)
    runner = PipelineRunner(config, run_id=options.run_id)

    def _cancel(signum: int, frame: FrameType | None) -> None:
        warning("Interrupted, cancelling the run...")
        runner.cancel.cancel()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        result = runner.run(event)
    finally:
        signal.signal(signal.SIGINT, previous)

    print_result(result, output_format=options.output_format, console=get_console())

    if result.status == PipelineStatus.CANCELLED:
        return EXIT_CANCELLED
    if result.status == PipelineStatus.FAILED:
        return EXIT_USER_ERROR
    return EXIT_SUCCESS
