"""CLI entry point for wheelhouse.

This module defines the main CLI group using the LazyGroup pattern so that
``wheelhouse --help`` does not import the pipeline machinery.
"""

from __future__ import annotations

import importlib
from typing import Any

import click
import rich_click as rclick

from wheelhouse_cli import __version__
from wheelhouse_cli.output import set_no_color

# Configure rich-click for better help formatting
rclick.rich_click.TEXT_MARKUP = "markdown"
rclick.rich_click.SHOW_ARGUMENTS = True
rclick.rich_click.GROUP_ARGUMENTS_OPTIONS = True


class LazyGroup(rclick.RichGroup):
    """Click group that loads commands lazily.

    Commands are only imported when actually invoked, not at import time.

    Attributes:
        lazy_subcommands: Mapping of command names to module paths.
    """

    def __init__(
        self,
        *args: Any,
        lazy_subcommands: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize LazyGroup.

        Args:
            *args: Positional arguments for parent class.
            lazy_subcommands: Mapping of command name to module path.
                Format: {"validate": "wheelhouse_cli.commands.validate.validate"}
            **kwargs: Keyword arguments for parent class.
        """
        super().__init__(*args, **kwargs)
        self.lazy_subcommands: dict[str, str] = lazy_subcommands or {}

    def list_commands(self, ctx: click.Context) -> list[str]:
        """Return sorted command names, lazy and directly registered."""
        commands = set(super().list_commands(ctx))
        commands.update(self.lazy_subcommands.keys())
        return sorted(commands)

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        """Get a command by name, loading lazily if needed.

        Args:
            ctx: Click context.
            cmd_name: Name of the command to get.

        Returns:
            Click Command instance, or None if not found.
        """
        cmd = super().get_command(ctx, cmd_name)  # type: ignore[arg-type]
        if cmd is not None:
            return cmd

        if cmd_name not in self.lazy_subcommands:
            return None

        module_name, attr_name = self.lazy_subcommands[cmd_name].rsplit(".", 1)
        mod = importlib.import_module(module_name)
        return getattr(mod, attr_name)  # type: ignore[no-any-return]


LAZY_COMMANDS = {
    "init": "wheelhouse_cli.commands.init.init",
    "validate": "wheelhouse_cli.commands.validate.validate",
    "matrix": "wheelhouse_cli.commands.matrix.matrix",
    "run": "wheelhouse_cli.commands.run.run",
    "schema": "wheelhouse_cli.commands.schema.schema",
}


@click.command(cls=LazyGroup, lazy_subcommands=LAZY_COMMANDS)
@click.version_option(version=__version__, prog_name="wheelhouse")
@click.option(
    "--no-color",
    is_flag=True,
    default=False,
    help="Disable colored output.",
    is_eager=True,
    expose_value=False,
    callback=lambda ctx, param, value: set_no_color(value) if value else None,
)
def cli() -> None:
    """Wheelhouse - Build, verify and release wheels across platforms.

    Builds one wheel per runtime version and target platform, verifies each
    one in a clean emulated container, and publishes the set only for a tag
    push in which every cell passed.

    **Getting Started:**

    - `wheelhouse init` - Create a wheelhouse.yaml
    - `wheelhouse validate` - Validate your configuration
    - `wheelhouse matrix` - Show the expanded build matrix
    - `wheelhouse run` - Build, verify, collect and (on tags) publish
    - `wheelhouse schema export` - Export JSON Schema for IDE support
    """
    pass


if __name__ == "__main__":
    cli()
