"""Build matrix expansion."""

from __future__ import annotations

from collections.abc import Sequence

from wheelhouse_core.models import BuildJob, PlatformDescriptor
from wheelhouse_core.schemas.pipeline_config import MatrixConfig


def expand_matrix(
    runtime_versions: Sequence[str],
    platforms: Sequence[PlatformDescriptor],
) -> list[BuildJob]:
    """Expand the declared cross-product into build jobs.

    Jobs are ordered version-major; order carries no meaning because cells
    execute independently.

    Example:
        >>> jobs = expand_matrix(
        ...     ["3.9", "3.10"],
        ...     [PlatformDescriptor(target="x86_64-unknown-linux-musl", arch="x86_64")],
        ... )
        >>> [job.cell_id for job in jobs]
        ['py3.9-x86_64-unknown-linux-musl', 'py3.10-x86_64-unknown-linux-musl']
    """
    return [
        BuildJob(
            runtime_version=version,
            target_platform=platform.target,
            target_arch=platform.arch,
        )
        for version in runtime_versions
        for platform in platforms
    ]


def expand_config(matrix: MatrixConfig) -> list[BuildJob]:
    """Expand a validated matrix configuration."""
    return expand_matrix(matrix.runtime_versions, matrix.platforms)
