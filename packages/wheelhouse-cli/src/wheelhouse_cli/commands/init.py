"""wheelhouse init command - Scaffold a wheelhouse.yaml."""

from __future__ import annotations

from pathlib import Path

import click

from wheelhouse_cli.output import error, success, warning

WHEELHOUSE_YAML_TEMPLATE = """\
# {{ name }} - wheelhouse release pipeline
# yaml-language-server: $schema=./schemas/wheelhouse.schema.json

name: "{{ name }}"

matrix:
  runtime_versions: [{{ versions | map("tojson") | join(", ") }}]
  platforms:
{% for arch in arches %}
    - target: {{ arch }}-unknown-linux-musl
      arch: {{ arch }}
{% endfor %}

builder:
  compatibility: musllinux_1_1
{% if features %}
  features: [{{ features | join(", ") }}]
{% endif %}

verification:
  package_name: "{{ package }}"
  requirements: test/requirements.txt
  test_dir: test
  system_packages: [tzdata]
  exclusions:
    - package: numpy
      targets: ["*-linux-musl"]
      reason: no musllinux wheels are published for numpy

registry:
  policy: skip_existing
  credential:
    secret_ref: pypi-token
"""

DEFAULT_VERSIONS = ("3.7", "3.8", "3.9", "3.10")

DEFAULT_ARCHES = ("aarch64", "x86_64")


@click.command()
@click.option(
    "-n",
    "--name",
    "name",
    type=str,
    default=None,
    help="Project name [default: current directory name]",
)
@click.option(
    "-p",
    "--package",
    "package",
    type=str,
    default=None,
    help="Distribution installed during verification [default: project name]",
)
@click.option(
    "--feature",
    "features",
    multiple=True,
    help="Cargo feature to enable (repeatable)",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Overwrite an existing wheelhouse.yaml",
)
def init(name: str | None, package: str | None, features: tuple[str, ...], force: bool) -> None:
    """Create a wheelhouse.yaml for the current project.

    The generated matrix builds musllinux wheels for CPython 3.7 to 3.10 on
    aarch64 and x86_64.

    Examples:

        wheelhouse init

        wheelhouse init --name orjson --feature unstable-simd --feature yyjson

        wheelhouse init --force
    """
    if name is None:
        name = Path.cwd().name

    if not name.replace("-", "").replace("_", "").replace(".", "").isalnum():
        error(f"Invalid project name: {name}")
        error("Project name must be alphanumeric (hyphens, dots and underscores allowed).")
        raise SystemExit(1)

    path = Path("wheelhouse.yaml")
    existed = path.exists()
    if existed and not force:
        error("wheelhouse.yaml already exists.")
        error("Use --force to overwrite.")
        raise SystemExit(1)

    # Import here to avoid heavy imports at CLI startup
    from jinja2.sandbox import SandboxedEnvironment

    env = SandboxedEnvironment(trim_blocks=True, lstrip_blocks=True)
    content = env.from_string(WHEELHOUSE_YAML_TEMPLATE).render(
        name=name,
        package=package or name,
        features=list(features),
        versions=DEFAULT_VERSIONS,
        arches=DEFAULT_ARCHES,
    )

    try:
        path.write_text(content)
    except PermissionError:
        error("Cannot write to current directory.")
        raise SystemExit(2) from None

    if existed:
        warning("Overwrote existing wheelhouse.yaml")
    success(f"Created wheelhouse.yaml for {name}")
