"""Wheel builds through an external builder (maturin).

BuildExecutor runs one build per matrix cell into a job-local output
directory and turns the produced files into Artifacts bound to that job.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from wheelhouse_core.errors import ArtifactTagMismatchError, BuildError
from wheelhouse_core.models import WHEEL_SUFFIX, Artifact, BuildJob
from wheelhouse_core.process import CancellationToken, Runner
from wheelhouse_core.schemas.pipeline_config import BuilderConfig

logger = structlog.get_logger(__name__)


class BuildExecutor:
    """Runs the external builder for one job at a time.

    Attributes:
        config: Builder options.

    Example:
        >>> executor = BuildExecutor(BuilderConfig(), CommandRunner())
        >>> artifacts = executor.build(job, source_dir, cell_dir / "dist")
    """

    def __init__(self, config: BuilderConfig, runner: Runner) -> None:
        self.config = config
        self._runner = runner

    def command(self, job: BuildJob, output_dir: Path) -> list[str]:
        """Builder argv for a job."""
        argv = [self.config.program, "build"]
        if self.config.release:
            argv.append("--release")
        if self.config.strip:
            argv.append("--strip")
        argv += [
            "--out",
            str(output_dir),
            "--target",
            job.target_platform,
            "--compatibility",
            self.config.compatibility,
            "-i",
            self.config.interpreter.format(version=job.runtime_version),
        ]
        if self.config.features:
            argv.append("--features=" + ",".join(self.config.features))
        argv += self.config.extra_args
        return argv

    def build(
        self,
        job: BuildJob,
        source_dir: Path,
        output_dir: Path,
        cancel: CancellationToken | None = None,
    ) -> list[Artifact]:
        """Build artifacts for one job.

        Args:
            job: Matrix cell to build.
            source_dir: Source tree (the cell's private copy).
            output_dir: Job-local output directory.
            cancel: Cancellation token.

        Returns:
            Artifacts found in output_dir. An empty list is a successful
            build that produced nothing.

        Raises:
            BuildError: If the builder fails or times out.
            ArtifactTagMismatchError: If an artifact does not belong to the job.
            PipelineCancelledError: If the run is cancelled.
        """
        log = logger.bind(cell=job.cell_id)
        output_dir.mkdir(parents=True, exist_ok=True)

        argv = self.command(job, output_dir)
        log.info("build_started", target=job.target_platform, runtime=job.runtime_version)
        result = self._runner.run(
            argv,
            cwd=source_dir,
            env=self.config.env or None,
            timeout=self.config.timeout_seconds,
            cancel=cancel,
        )

        if result.timed_out:
            raise BuildError(
                f"Build for {job.cell_id} timed out after {self.config.timeout_seconds}s",
                internal_details=result.tail(),
            )
        if not result.ok:
            raise BuildError(
                f"Build for {job.cell_id} failed with exit code {result.exit_code}",
                internal_details=result.tail(),
            )

        artifacts = self.collect_outputs(job, output_dir)
        log.info(
            "build_completed",
            artifacts=[a.filename for a in artifacts],
            duration_ms=result.duration_ms,
        )
        return artifacts

    def collect_outputs(self, job: BuildJob, output_dir: Path) -> list[Artifact]:
        """Describe every wheel in output_dir and check it belongs to job."""
        artifacts: list[Artifact] = []
        for path in sorted(output_dir.glob(f"*{WHEEL_SUFFIX}")):
            try:
                artifact = Artifact.from_wheel(path, job)
            except ValueError as e:
                raise BuildError(
                    f"Builder produced an unreadable artifact '{path.name}'",
                    internal_details=str(e),
                ) from e
            if not artifact.matches(job):
                raise ArtifactTagMismatchError(
                    artifact.filename,
                    expected=f"{job.interpreter_tag} / {job.target_arch}",
                )
            artifacts.append(artifact)
        return artifacts
