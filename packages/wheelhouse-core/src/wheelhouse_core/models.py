"""Pipeline data models.

Models for build jobs, artifacts, per-cell outcomes and the run result.

- PlatformDescriptor / BuildJob: one matrix cell's identity
- Artifact / ArtifactSet: built wheels and the aggregated, append-only set
- ReleaseEvent: what triggered the run
- CellResult / GateDecision / PublishResult / PipelineResult: outcomes
"""

from __future__ import annotations

import hashlib
import os
import re
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from wheelhouse_core.errors import ArtifactConflictError

TAG_REF_PREFIX = "refs/tags/"

WHEEL_SUFFIX = ".whl"


# =============================================================================
# Matrix
# =============================================================================


class PlatformDescriptor(BaseModel):
    """A declared build platform.

    Attributes:
        target: Compiler target triple (e.g. aarch64-unknown-linux-musl).
        arch: CPU architecture of the target (e.g. aarch64).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: str = Field(
        ...,
        min_length=1,
        pattern=r"^[A-Za-z0-9_.-]+$",
        description="Target triple",
    )
    arch: str = Field(
        ...,
        min_length=1,
        pattern=r"^[A-Za-z0-9_]+$",
        description="Target CPU architecture",
    )


class BuildJob(BaseModel):
    """One matrix cell: a runtime version built for one platform.

    Identity is (runtime_version, target_platform).

    Example:
        >>> job = BuildJob(
        ...     runtime_version="3.10",
        ...     target_platform="aarch64-unknown-linux-musl",
        ...     target_arch="aarch64",
        ... )
        >>> job.cell_id
        'py3.10-aarch64-unknown-linux-musl'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    runtime_version: str = Field(..., min_length=1, description="Runtime version")
    target_platform: str = Field(..., min_length=1, description="Target triple")
    target_arch: str = Field(..., min_length=1, description="Target CPU architecture")

    @property
    def identity(self) -> tuple[str, str]:
        """Cell identity."""
        return (self.runtime_version, self.target_platform)

    @property
    def cell_id(self) -> str:
        """Filesystem and container-name safe identifier."""
        return f"py{self.runtime_version}-{self.target_platform}"

    @property
    def interpreter_tag(self) -> str:
        """CPython interpreter tag for the runtime version (3.10 -> cp310)."""
        return "cp" + self.runtime_version.replace(".", "")


# =============================================================================
# Artifacts
# =============================================================================


class Artifact(BaseModel):
    """A built wheel bound to exactly one build job.

    Attributes:
        filename: Wheel file name (the artifact key).
        path: Location of the file.
        sha256: Content digest.
        size_bytes: File size.
        distribution: Distribution name from the file name.
        version: Distribution version from the file name.
        python_tag: Interpreter tag (e.g. cp310).
        abi_tag: ABI tag (e.g. cp310, abi3, none).
        platform_tag: Platform tag (e.g. musllinux_1_1_aarch64).
        runtime_version: Runtime version of the producing job.
        target_arch: Architecture of the producing job.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    filename: str
    path: Path
    sha256: str
    size_bytes: int = Field(ge=0)
    distribution: str
    version: str
    python_tag: str
    abi_tag: str
    platform_tag: str
    runtime_version: str
    target_arch: str

    @classmethod
    def from_wheel(cls, path: Path, job: BuildJob) -> Artifact:
        """Describe a wheel file produced for a job.

        Args:
            path: Wheel file.
            job: The job that produced it.

        Returns:
            Artifact metadata.

        Raises:
            ValueError: If the file name is not a valid wheel name.
        """
        distribution, version, python_tag, abi_tag, platform_tag = parse_wheel_filename(path.name)
        return cls(
            filename=path.name,
            path=path,
            sha256=hash_file(path),
            size_bytes=path.stat().st_size,
            distribution=distribution,
            version=version,
            python_tag=python_tag,
            abi_tag=abi_tag,
            platform_tag=platform_tag,
            runtime_version=job.runtime_version,
            target_arch=job.target_arch,
        )

    @property
    def version_independent(self) -> bool:
        """Whether one build serves several runtime versions (abi3 or no ABI)."""
        return self.abi_tag in ("abi3", "none")

    def matches(self, job: BuildJob) -> bool:
        """Whether this artifact's tags belong to the given job."""
        return self._interpreter_matches(job) and self._platform_matches(job)

    def _interpreter_matches(self, job: BuildJob) -> bool:
        python_tags = self.python_tag.split(".")
        if self.abi_tag == "none":
            accepted = ("py3", "py" + job.runtime_version.replace(".", ""), job.interpreter_tag)
            return any(tag in accepted for tag in python_tags)
        if self.abi_tag == "abi3":
            return any(_cpython_at_most(tag, job.interpreter_tag) for tag in python_tags)
        return job.interpreter_tag in python_tags and job.interpreter_tag in self.abi_tag.split(".")

    def _platform_matches(self, job: BuildJob) -> bool:
        platform_tags = self.platform_tag.split(".")
        return any(tag == "any" or tag.endswith(f"_{job.target_arch}") for tag in platform_tags)


class ArtifactSet(BaseModel):
    """Union of artifacts from all verified cells, keyed by filename.

    Append-only: ``add`` is the only mutator.

    Attributes:
        name: Artifact set name.
        directory: Where the set's files live.
        artifacts: Artifacts keyed by filename.
        conflicts: Filenames refused because another cell produced a
            different file under the same name.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    directory: Path
    artifacts: dict[str, Artifact] = Field(default_factory=dict)
    conflicts: list[str] = Field(default_factory=list)

    def add(self, artifact: Artifact) -> bool:
        """Append an artifact.

        Version-independent wheels (abi3, no ABI) built by cells for other
        runtime versions share one filename; the first copy is kept.

        Returns:
            True if added, False if the name was already present.

        Raises:
            ArtifactConflictError: If a different file has the same name and
                its tags say it should have been unique.
        """
        existing = self.artifacts.get(artifact.filename)
        if existing is not None:
            if existing.sha256 == artifact.sha256:
                return False
            if (
                artifact.version_independent
                and existing.runtime_version != artifact.runtime_version
            ):
                return False
            raise ArtifactConflictError(
                artifact.filename,
                internal_details=f"{existing.sha256} != {artifact.sha256}",
            )
        self.artifacts[artifact.filename] = artifact
        return True

    @property
    def filenames(self) -> list[str]:
        """Sorted artifact filenames."""
        return sorted(self.artifacts)

    def __len__(self) -> int:
        return len(self.artifacts)


# =============================================================================
# Trigger
# =============================================================================


class ReleaseEvent(BaseModel):
    """The event that triggered a pipeline run.

    Attributes:
        trigger_ref: Fully qualified git ref (refs/heads/main, refs/tags/3.8.0).
        is_tag: True iff trigger_ref is in the tag namespace.
        tag_name: Tag name for tag pushes.

    Example:
        >>> ReleaseEvent.from_ref("refs/tags/3.8.0").is_tag
        True
        >>> ReleaseEvent.from_ref("refs/heads/main").is_tag
        False
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    trigger_ref: str = Field(default="", description="Triggering git ref")
    is_tag: bool = Field(default=False, description="Tag push")
    tag_name: str | None = Field(default=None, description="Tag name")

    @classmethod
    def from_ref(cls, ref: str | None, *, tag_name: str | None = None) -> ReleaseEvent:
        """Derive the event from a ref and, for tag pushes, the tag name.

        A bare tag name without a ref is promoted to refs/tags/<name>.
        """
        ref = (ref or "").strip()
        if not ref and tag_name:
            ref = f"{TAG_REF_PREFIX}{tag_name}"
        is_tag = ref.startswith(TAG_REF_PREFIX) and len(ref) > len(TAG_REF_PREFIX)
        if is_tag and tag_name is None:
            tag_name = ref[len(TAG_REF_PREFIX) :]
        return cls(trigger_ref=ref, is_tag=is_tag, tag_name=tag_name if is_tag else None)

    @classmethod
    def from_environment(cls, env: dict[str, str] | None = None) -> ReleaseEvent:
        """Derive the event from GITHUB_REF."""
        env = dict(os.environ) if env is None else env
        return cls.from_ref(env.get("GITHUB_REF"))


# =============================================================================
# Outcomes
# =============================================================================


class EmulationState(str, Enum):
    """Lifecycle of an emulator registration for one architecture.

    Attributes:
        NOT_REQUIRED: Native architecture, nothing to do
        INSTALLED: Registered by this run
        ALREADY_INSTALLED: Registered earlier (this run or the host)
        FAILED: Registration failed
    """

    NOT_REQUIRED = "not_required"
    INSTALLED = "installed"
    ALREADY_INSTALLED = "already_installed"
    FAILED = "failed"


class CellStatus(str, Enum):
    """Terminal status of a matrix cell."""

    SUCCEEDED = "succeeded"
    EMULATION_FAILED = "emulation_failed"
    BUILD_FAILED = "build_failed"
    VERIFICATION_FAILED = "verification_failed"
    CANCELLED = "cancelled"


class CellResult(BaseModel):
    """Outcome of one matrix cell.

    Attributes:
        job: The cell's build job.
        status: Terminal status.
        artifacts: Artifacts built by the cell (present even when verification failed).
        emulation: Emulation state the cell ran with.
        message: Human-readable result message.
        details: Additional details (exit codes, excluded dependencies, ...).
        duration_ms: Cell duration in milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    job: BuildJob
    status: CellStatus
    artifacts: list[Artifact] = Field(default_factory=list)
    emulation: EmulationState | None = None
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = Field(default=0, ge=0)

    @property
    def succeeded(self) -> bool:
        """Cell reached successful verification."""
        return self.status == CellStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        """Cell did not reach successful verification."""
        return not self.succeeded


class GateDecision(BaseModel):
    """Release gate outcome. A closed gate is a recorded skip, not an error."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    open: bool
    reason: str
    failed_cells: list[str] = Field(default_factory=list)


class PublishOutcome(str, Enum):
    """Per-artifact publish outcome."""

    UPLOADED = "uploaded"
    SKIPPED_EXISTING = "skipped_existing"


class UploadRecord(BaseModel):
    """Result of publishing one artifact."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    filename: str
    outcome: PublishOutcome
    attempts: int = Field(default=1, ge=1)


class PublishResult(BaseModel):
    """Result of publishing an artifact set."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    artifact_set: str
    records: list[UploadRecord] = Field(default_factory=list)

    @property
    def uploaded_count(self) -> int:
        """Artifacts uploaded by this run."""
        return sum(1 for r in self.records if r.outcome == PublishOutcome.UPLOADED)

    @property
    def skipped_count(self) -> int:
        """Artifacts the registry already had."""
        return sum(1 for r in self.records if r.outcome == PublishOutcome.SKIPPED_EXISTING)


class PipelineStatus(str, Enum):
    """Overall run status."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineResult(BaseModel):
    """Aggregated result of a pipeline run.

    Attributes:
        run_id: Run identifier.
        event: Triggering event.
        cells: One result per matrix cell.
        artifact_set: Collected artifact set (None if collection never ran).
        unverified_set: Inspection set of unverified artifacts (if enabled).
        gate: Release gate decision (None if the gate never ran).
        publish: Publish result (None unless the gate opened and upload succeeded).
        publish_error: Operator-facing publish failure message.
        error: Run-level failure outside any cell (e.g. an artifact conflict).
        status: Overall status.
        started_at: When the run started.
        finished_at: When the run finished.
        total_duration_ms: Total duration in milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    run_id: str
    event: ReleaseEvent
    cells: list[CellResult] = Field(default_factory=list)
    artifact_set: ArtifactSet | None = None
    unverified_set: ArtifactSet | None = None
    gate: GateDecision | None = None
    publish: PublishResult | None = None
    publish_error: str | None = None
    error: str | None = None
    status: PipelineStatus = PipelineStatus.SUCCEEDED
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    total_duration_ms: int = Field(default=0, ge=0)

    @property
    def passed(self) -> bool:
        """Run succeeded."""
        return self.status == PipelineStatus.SUCCEEDED

    @property
    def succeeded_count(self) -> int:
        """Cells that reached successful verification."""
        return sum(1 for c in self.cells if c.succeeded)

    @property
    def failed_count(self) -> int:
        """Cells that failed or were cancelled."""
        return sum(1 for c in self.cells if c.failed)


# =============================================================================
# Helpers
# =============================================================================

_WHEEL_NAME = re.compile(
    r"^(?P<distribution>[^-]+)-(?P<version>[^-]+)(-(?P<build>\d[^-]*))?"
    r"-(?P<python>[^-]+)-(?P<abi>[^-]+)-(?P<platform>[^-]+)\.whl$"
)


def parse_wheel_filename(filename: str) -> tuple[str, str, str, str, str]:
    """Split a wheel file name into (distribution, version, python, abi, platform).

    Raises:
        ValueError: If the name does not follow the wheel naming convention.
    """
    match = _WHEEL_NAME.match(filename)
    if match is None:
        msg = f"Not a wheel file name: {filename}"
        raise ValueError(msg)
    return (
        match["distribution"],
        match["version"],
        match["python"],
        match["abi"],
        match["platform"],
    )


def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _cpython_at_most(tag: str, interpreter_tag: str) -> bool:
    if not (tag.startswith("cp3") and interpreter_tag.startswith("cp3")):
        return False
    try:
        return int(tag[3:]) <= int(interpreter_tag[3:])
    except ValueError:
        return False
