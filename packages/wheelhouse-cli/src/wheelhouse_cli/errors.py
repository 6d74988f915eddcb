"""CLI error handling for wheelhouse-cli.

Wraps wheelhouse-core exceptions into user-friendly messages with
appropriate exit codes.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from pydantic import ValidationError as PydanticValidationError

from wheelhouse_cli.output import error

if TYPE_CHECKING:
    from pydantic_core import ErrorDetails
    from wheelhouse_core.schemas import PipelineConfig


# Exit codes
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1  # Validation failure, failed run
EXIT_SYSTEM_ERROR = 2  # Missing file, permissions
EXIT_CANCELLED = 130  # Interrupted (128 + SIGINT)


class CLIError(click.ClickException):
    """CLI-specific exception with exit code support.

    Attributes:
        message: User-facing error message.
        exit_code: Exit code for the CLI (default: 1).
    """

    def __init__(self, message: str, exit_code: int = EXIT_USER_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code

    def show(self, file: object = None) -> None:
        """Display the error message using Rich formatting."""
        error(self.format_message())


def format_pydantic_error(err: PydanticValidationError) -> str:
    """Format a Pydantic validation error into a user-friendly message.

    Example:
        >>> format_pydantic_error(err)
        "Validation failed:\\n  - matrix.runtime_versions: Value error, Duplicate ..."
    """
    errors: list[ErrorDetails] = err.errors()
    lines = ["Validation failed:"]
    for e in errors:
        loc = ".".join(str(x) for x in e["loc"])
        lines.append(f"  - {loc}: {e['msg']}")
    return "\n".join(lines)


def handle_yaml_error(err: Exception, file_path: str) -> NoReturn:
    """Raise a CLIError for a YAML parsing error, with line information."""
    error_msg = str(err)
    mark = getattr(err, "problem_mark", None)
    if mark is not None:
        problem = getattr(err, "problem", None)
        line = mark.line + 1
        col = mark.column + 1
        error_msg = f"YAML syntax error at line {line}, column {col}: {problem}"

    raise CLIError(f"Invalid YAML in {file_path}: {error_msg}")


def handle_file_not_found(file_path: str) -> NoReturn:
    """Raise a CLIError for a missing configuration file."""
    raise CLIError(
        f"File not found: {file_path}\n\n"
        "Run 'wheelhouse init' to create one, or use --file to specify a path.",
        exit_code=EXIT_SYSTEM_ERROR,
    )


def load_pipeline_config(file_path: str) -> PipelineConfig:
    """Load wheelhouse.yaml, turning every failure into a CLIError.

    Raises:
        CLIError: Exit code 2 for a missing file, 1 for invalid content.
    """
    import yaml

    from wheelhouse_core.errors import ConfigurationError
    from wheelhouse_core.schemas import PipelineConfig

    if not Path(file_path).exists():
        handle_file_not_found(file_path)

    try:
        return PipelineConfig.from_yaml(file_path)
    except ConfigurationError as e:
        if isinstance(e.__cause__, yaml.YAMLError):
            handle_yaml_error(e.__cause__, file_path)
        raise CLIError(e.user_message) from None
    except PydanticValidationError as e:
        formatted = format_pydantic_error(e)
        raise CLIError(f"Invalid configuration in {file_path}:\n{formatted}") from None
