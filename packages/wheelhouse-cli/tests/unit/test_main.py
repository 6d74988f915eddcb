"""Unit tests for wheelhouse_cli.main."""

from __future__ import annotations

import sys

from click.testing import CliRunner

from wheelhouse_cli import __version__
from wheelhouse_cli.main import LAZY_COMMANDS, LazyGroup, cli


class TestCLIHelp:
    """Tests for CLI help output."""

    def test_help_shows_options(self, cli_runner: CliRunner) -> None:
        """--help lists the global options."""
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "--version" in result.output
        assert "--no-color" in result.output

    def test_help_shows_all_commands(self, cli_runner: CliRunner) -> None:
        """Every lazily registered command is listed."""
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for name in ("init", "validate", "matrix", "run", "schema"):
            assert name in result.output

    def test_help_shows_description(self, cli_runner: CliRunner) -> None:
        """--help shows the CLI description."""
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Wheelhouse" in result.output


class TestCLIVersion:
    """Tests for --version."""

    def test_version_output(self, cli_runner: CliRunner) -> None:
        """--version prints the program name and version."""
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "wheelhouse" in result.output
        assert __version__ in result.output


class TestLazyGroup:
    """Tests for lazy command loading."""

    def test_list_commands_sorted(self) -> None:
        """Commands are listed without importing them."""
        group = LazyGroup(name="test", lazy_subcommands=LAZY_COMMANDS)
        assert group.list_commands(None) == sorted(LAZY_COMMANDS)  # type: ignore[arg-type]

    def test_unknown_command(self, cli_runner: CliRunner) -> None:
        """Unknown commands fail with a usage error."""
        result = cli_runner.invoke(cli, ["deploy"])
        assert result.exit_code == 2

    def test_command_loaded_on_demand(self, cli_runner: CliRunner) -> None:
        """Invoking a command imports its module."""
        result = cli_runner.invoke(cli, ["validate", "--help"])
        assert result.exit_code == 0
        assert "wheelhouse_cli.commands.validate" in sys.modules
