"""Tests for wheelhouse validate command."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from click.testing import CliRunner

from wheelhouse_cli.commands.validate import validate


class TestValidateCommand:
    """Tests for validate command."""

    def test_validate_help(self, cli_runner: CliRunner) -> None:
        """Test validate --help shows the file option."""
        result = cli_runner.invoke(validate, ["--help"])
        assert result.exit_code == 0
        assert "--file" in result.output

    def test_validate_valid_file(self, cli_runner: CliRunner, valid_wheelhouse_yaml: Path) -> None:
        """Test validate succeeds and reports the matrix size."""
        result = cli_runner.invoke(validate, ["--file", str(valid_wheelhouse_yaml)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output
        assert "4 cell(s)" in result.output

    def test_validate_default_path(
        self,
        isolated_runner: CliRunner,
        create_wheelhouse_yaml: Callable[..., Path],
        valid_wheelhouse_content: str,
    ) -> None:
        """Test validate reads ./wheelhouse.yaml by default."""
        create_wheelhouse_yaml(valid_wheelhouse_content)
        result = isolated_runner.invoke(validate, [])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_validate_missing_file(self, isolated_runner: CliRunner) -> None:
        """Test a missing file exits with code 2."""
        result = isolated_runner.invoke(validate, [])
        assert result.exit_code == 2
        assert "File not found" in result.output

    def test_validate_invalid_yaml(
        self,
        isolated_runner: CliRunner,
        create_wheelhouse_yaml: Callable[..., Path],
    ) -> None:
        """Test broken YAML exits with code 1."""
        create_wheelhouse_yaml("name: [unclosed\n")
        result = isolated_runner.invoke(validate, [])
        assert result.exit_code == 1
        assert "Invalid YAML" in result.output

    def test_validate_duplicate_runtime_version(
        self,
        isolated_runner: CliRunner,
        create_wheelhouse_yaml: Callable[..., Path],
        valid_wheelhouse_content: str,
    ) -> None:
        """Test schema violations exit with code 1 and name the field."""
        create_wheelhouse_yaml(
            valid_wheelhouse_content.replace('["3.9", "3.10"]', '["3.9", "3.9"]')
        )
        result = isolated_runner.invoke(validate, [])
        assert result.exit_code == 1
        assert "runtime_versions" in result.output

    def test_validate_literal_token_rejected(
        self,
        isolated_runner: CliRunner,
        create_wheelhouse_yaml: Callable[..., Path],
        valid_wheelhouse_content: str,
    ) -> None:
        """Test a pasted API token is refused."""
        create_wheelhouse_yaml(
            valid_wheelhouse_content
            + "registry:\n  credential:\n    secret_ref: pypi-AgEIcHlwaS5vcmc\n"
        )
        result = isolated_runner.invoke(validate, [])
        assert result.exit_code == 1
        assert "credential" in result.output
