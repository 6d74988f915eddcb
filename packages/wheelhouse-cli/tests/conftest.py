"""Shared test fixtures for wheelhouse-cli tests.

Provides CliRunner fixtures and wheelhouse.yaml helpers for testing CLI
commands.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog
from click.testing import CliRunner

# File name constants
WHEELHOUSE_YAML_FILENAME = "wheelhouse.yaml"

VALID_WHEELHOUSE_YAML = """\
name: demo
matrix:
  runtime_versions: ["3.9", "3.10"]
  platforms:
    - target: aarch64-unknown-linux-musl
      arch: aarch64
    - target: x86_64-unknown-linux-musl
      arch: x86_64
builder:
  features: [unstable-simd]
verification:
  package_name: demo
  exclusions:
    - package: numpy
      targets: ["*-linux-musl"]
      reason: no musllinux wheels available
"""


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Configure structlog to output to stdout for test capture."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,  # Important for test isolation
    )


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click test runner.

    Returns:
        CliRunner instance for testing CLI commands.
    """
    return CliRunner()


@pytest.fixture
def isolated_runner(cli_runner: CliRunner) -> Generator[CliRunner, None, None]:
    """Create a Click test runner with an isolated filesystem.

    Yields:
        CliRunner instance with isolated filesystem.
    """
    with cli_runner.isolated_filesystem():
        yield cli_runner


@pytest.fixture
def valid_wheelhouse_yaml(tmp_path: Path) -> Path:
    """Write a valid wheelhouse.yaml to tmp_path.

    Returns:
        Path to the file.
    """
    path = tmp_path / WHEELHOUSE_YAML_FILENAME
    path.write_text(VALID_WHEELHOUSE_YAML)
    return path


@pytest.fixture
def create_wheelhouse_yaml(isolated_runner: CliRunner) -> Callable[..., Path]:
    """Factory fixture to create wheelhouse.yaml files with custom content.

    Returns:
        Function that writes the given content into the isolated directory.
    """

    def _create(content: str, filename: str = WHEELHOUSE_YAML_FILENAME) -> Path:
        path = Path(filename)
        path.write_text(content)
        return path

    return _create


@pytest.fixture
def valid_wheelhouse_content() -> str:
    """Contents of a valid wheelhouse.yaml."""
    return VALID_WHEELHOUSE_YAML
