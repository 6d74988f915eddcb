"""Install-and-test verification in a clean, isolated container.

Each verification:
1. writes an adjusted test manifest into the cell workspace
2. starts a fresh container for the target architecture with only the cell
   workspace mounted
3. installs OS packages, a fresh virtualenv and the test dependencies
4. installs the package from the local output directory only
5. runs the test suite; the container exit code decides the outcome
"""

from __future__ import annotations

import fnmatch
import re
import shlex
import uuid
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from wheelhouse_core.emulation import docker_platform
from wheelhouse_core.errors import VerificationError
from wheelhouse_core.models import Artifact, BuildJob
from wheelhouse_core.process import CancellationToken, CommandResult, Runner
from wheelhouse_core.schemas.pipeline_config import ManifestExclusion, VerificationConfig

logger = structlog.get_logger(__name__)

# Mount point of the cell workspace inside the container
CONTAINER_WORKDIR = "/io"

ADJUSTED_MANIFEST_NAME = "requirements.verify.txt"

CONTAINER_NAME_PREFIX = "wheelhouse"

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


@dataclass
class VerificationReport:
    """Outcome of a successful verification.

    Attributes:
        container_name: Name of the container that ran the suite.
        excluded: Requirements dropped for this target, with reasons.
        manifest_path: Adjusted manifest written for the cell (if any).
        duration_ms: Container run time.
    """

    container_name: str
    excluded: list[dict[str, str]] = field(default_factory=list)
    manifest_path: Path | None = None
    duration_ms: int = 0


def canonical_name(name: str) -> str:
    """Normalize a distribution name for comparison."""
    return re.sub(r"[-_.]+", "-", name).lower()


def requirement_name(line: str) -> str | None:
    """Distribution name of a manifest line, or None for comments and options."""
    stripped = line.strip()
    if not stripped or stripped.startswith(("#", "-")):
        return None
    match = _REQUIREMENT_NAME.match(stripped)
    return canonical_name(match.group(1)) if match else None


def adjust_manifest(
    lines: list[str],
    target: str,
    exclusions: list[ManifestExclusion],
) -> tuple[list[str], list[ManifestExclusion]]:
    """Drop requirements excluded for a target.

    Args:
        lines: Manifest lines.
        target: Target triple of the job.
        exclusions: Configured exclusions.

    Returns:
        Kept lines and the exclusions that applied.

    Example:
        >>> kept, applied = adjust_manifest(
        ...     ["numpy\\n", "pytest\\n"],
        ...     "aarch64-unknown-linux-musl",
        ...     [ManifestExclusion(package="numpy", targets=["*-musl"], reason="no wheels")],
        ... )
        >>> kept
        ['pytest\\n']
    """
    active = {
        canonical_name(e.package): e
        for e in exclusions
        if any(fnmatch.fnmatchcase(target, pattern) for pattern in e.targets)
    }
    kept: list[str] = []
    applied: list[ManifestExclusion] = []
    for line in lines:
        name = requirement_name(line)
        if name is not None and name in active:
            applied.append(active[name])
            continue
        kept.append(line)
    return kept, applied


class InstallVerifier:
    """Verifies built artifacts by installing and testing them in isolation.

    Attributes:
        config: Verification options.
    """

    def __init__(self, config: VerificationConfig, runner: Runner, run_id: str = "") -> None:
        self.config = config
        self._runner = runner
        self.run_id = run_id

    def container_name(self, job: BuildJob) -> str:
        """Unique container name carrying the run id for later cleanup."""
        parts = [CONTAINER_NAME_PREFIX]
        if self.run_id:
            parts.append(self.run_id)
        parts += [job.cell_id.replace(".", ""), uuid.uuid4().hex[:8]]
        return "-".join(parts)

    def image_for(self, job: BuildJob) -> str:
        """Verification image for a job's architecture."""
        return self.config.image.format(arch=job.target_arch)

    def write_manifest(
        self,
        job: BuildJob,
        source_dir: Path,
        cell_dir: Path,
    ) -> tuple[Path | None, list[ManifestExclusion]]:
        """Write the target-adjusted test manifest into the cell workspace.

        The shared manifest in the source tree is never edited.

        Returns:
            Path of the adjusted manifest (None when none is configured or
            the source tree has none) and the exclusions that applied.
        """
        if self.config.requirements is None:
            return None, []
        shared = source_dir / self.config.requirements
        if not shared.is_file():
            logger.warning(
                "manifest_missing",
                cell=job.cell_id,
                requirements=self.config.requirements,
            )
            return None, []

        lines = shared.read_text().splitlines(keepends=True)
        kept, applied = adjust_manifest(lines, job.target_platform, self.config.exclusions)
        for exclusion in applied:
            logger.info(
                "artifact_excluded",
                cell=job.cell_id,
                package=exclusion.package,
                target=job.target_platform,
                reason=exclusion.reason,
            )

        adjusted = cell_dir / ADJUSTED_MANIFEST_NAME
        adjusted.write_text("".join(kept))
        return adjusted, applied

    def script(self, job: BuildJob, manifest: Path | None, dist_dir: str) -> str:
        """Shell script executed inside the verification container."""
        python = self.config.python.format(version=job.runtime_version)
        steps: list[str] = ["set -e"]
        if self.config.system_packages:
            packages = " ".join(shlex.quote(p) for p in self.config.system_packages)
            if "musllinux" in self.image_for(job):
                steps.append(f"apk add --no-cache {packages}")
            else:
                steps.append(f"yum install -y {packages}")
        steps += [
            f"{python} -m venv /tmp/venv",
            ". /tmp/venv/bin/activate",
            "pip install --upgrade pip",
        ]
        if manifest is not None:
            steps.append(f"pip install -r {shlex.quote(manifest.name)}")
        steps += [
            f"pip install {shlex.quote(self.config.package_name)} "
            f"--no-index --find-links {shlex.quote(dist_dir)} --force-reinstall",
            "python -m pytest "
            + " ".join(shlex.quote(a) for a in self.config.pytest_args)
            + f" {shlex.quote('src/' + self.config.test_dir)}",
        ]
        return " && ".join(steps)

    def command(self, job: BuildJob, cell_dir: Path, name: str, script: str) -> list[str]:
        """Container engine argv for a verification run."""
        return [
            self.config.container_engine,
            "run",
            "--rm",
            "--name",
            name,
            "--platform",
            docker_platform(job.target_arch),
            "-v",
            f"{cell_dir.resolve()}:{CONTAINER_WORKDIR}",
            "-w",
            CONTAINER_WORKDIR,
            self.image_for(job),
            "sh",
            "-c",
            script,
        ]

    def verify(
        self,
        job: BuildJob,
        artifacts: list[Artifact],
        cell_dir: Path,
        cancel: CancellationToken | None = None,
    ) -> VerificationReport:
        """Install the job's artifacts in a clean container and run the tests.

        The cell workspace is expected to hold the source copy under ``src/``
        and the built artifacts under ``dist/``.

        Raises:
            VerificationError: If there is nothing to verify or the suite fails.
            PipelineCancelledError: If the run is cancelled.
        """
        log = logger.bind(cell=job.cell_id)
        if not artifacts:
            raise VerificationError(f"Nothing to verify for {job.cell_id}: no artifacts were built")

        source_dir = cell_dir / "src"
        manifest, applied = self.write_manifest(job, source_dir, cell_dir)
        excluded = [{"package": e.package, "reason": e.reason} for e in applied]

        name = self.container_name(job)
        argv = self.command(job, cell_dir, name, self.script(job, manifest, "dist"))
        log.info("verification_started", container=name, image=self.image_for(job))
        result = self._runner.run(argv, timeout=self.config.timeout_seconds, cancel=cancel)
        if result.timed_out:
            # Killing the client leaves the named container running
            self.remove_container(name)
        self._raise_for_result(job, result)

        log.info("verification_passed", container=name, duration_ms=result.duration_ms)
        return VerificationReport(
            container_name=name,
            excluded=excluded,
            manifest_path=manifest,
            duration_ms=result.duration_ms,
        )

    def remove_container(self, name: str) -> None:
        """Force-remove a verification container by name."""
        result = self._runner.run([self.config.container_engine, "rm", "-f", name])
        if result.ok:
            logger.info("container_removed", container=name)
        else:
            logger.warning("container_removal_failed", container=name, details=result.tail())

    def _raise_for_result(self, job: BuildJob, result: CommandResult) -> None:
        if result.timed_out:
            raise VerificationError(
                f"Verification for {job.cell_id} timed out after {self.config.timeout_seconds}s",
                internal_details=result.tail(),
            )
        if not result.ok:
            raise VerificationError(
                f"Verification for {job.cell_id} failed with exit code {result.exit_code}",
                internal_details=result.tail(),
            )

