"""Pipeline configuration models.

This module defines the wheelhouse.yaml schema:
- MatrixConfig: Declared runtime versions and platform descriptors
- BuilderConfig: External wheel builder invocation options
- EmulationConfig: Foreign-architecture emulator registration
- VerificationConfig: Isolated install-and-test environment
- CollectConfig: Named artifact set
- RegistryConfig: Upload policy, credential reference and retry policy
- PipelineConfig: Root model with YAML loading

Example wheelhouse.yaml:
    name: orjson
    matrix:
      runtime_versions: ["3.9", "3.10"]
      platforms:
        - {target: aarch64-unknown-linux-musl, arch: aarch64}
        - {target: x86_64-unknown-linux-musl, arch: x86_64}
    verification:
      package_name: orjson
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Self

from wheelhouse_core.errors import ConfigurationError
from wheelhouse_core.models import PlatformDescriptor
from wheelhouse_core.schemas.credential_config import SecretReference

# Module constants for Pydantic field descriptions
TIMEOUT_DESCRIPTION = "Timeout in seconds"
"""Description for timeout fields across all step configs."""

RUNTIME_VERSION_PATTERN = r"^\d+\.\d+$"

DEFAULT_CONFIG_FILENAME = "wheelhouse.yaml"


class MatrixConfig(BaseModel):
    """Declared build matrix.

    Attributes:
        runtime_versions: Interpreter versions, e.g. ["3.9", "3.10"].
        platforms: Platform descriptors ({target, arch}).

    Example:
        >>> MatrixConfig(
        ...     runtime_versions=["3.10"],
        ...     platforms=[PlatformDescriptor(target="x86_64-unknown-linux-musl", arch="x86_64")],
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    runtime_versions: list[str] = Field(
        ...,
        min_length=1,
        description="Runtime (interpreter) versions to build for",
    )
    platforms: list[PlatformDescriptor] = Field(
        ...,
        min_length=1,
        description="Platform descriptors to build for",
    )

    @field_validator("runtime_versions")
    @classmethod
    def validate_runtime_versions(cls, v: list[str]) -> list[str]:
        """Reject malformed and duplicate runtime versions."""
        seen: set[str] = set()
        for version in v:
            if not re.match(RUNTIME_VERSION_PATTERN, version):
                msg = f"Runtime version '{version}' must look like '3.10'"
                raise ValueError(msg)
            if version in seen:
                msg = f"Duplicate runtime version '{version}'"
                raise ValueError(msg)
            seen.add(version)
        return v

    @field_validator("platforms")
    @classmethod
    def validate_unique_targets(cls, v: list[PlatformDescriptor]) -> list[PlatformDescriptor]:
        """Reject platforms declared twice with the same target."""
        seen: set[str] = set()
        for platform in v:
            if platform.target in seen:
                msg = f"Duplicate platform target '{platform.target}'"
                raise ValueError(msg)
            seen.add(platform.target)
        return v


class BuilderConfig(BaseModel):
    """External builder invocation options.

    Defaults reproduce a release-optimised, stripped musllinux build.

    Attributes:
        program: Builder executable.
        release: Pass --release.
        strip: Pass --strip.
        compatibility: libc variant tag requested from the builder.
        features: Cargo features to enable.
        interpreter: Host interpreter template; {version} is substituted.
        extra_args: Additional arguments appended verbatim.
        env: Extra environment for the builder process.
        timeout_seconds: Build timeout.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    program: str = Field(default="maturin", min_length=1, description="Builder executable")
    release: bool = Field(default=True, description="Release-optimised build")
    strip: bool = Field(default=True, description="Strip symbols from the artifact")
    compatibility: str = Field(
        default="musllinux_1_1",
        min_length=1,
        description="Platform compatibility (libc variant) tag",
    )
    features: list[str] = Field(default_factory=list, description="Cargo features")
    interpreter: str = Field(
        default="python{version}",
        description="Host interpreter selection template",
    )
    extra_args: list[str] = Field(default_factory=list, description="Extra builder arguments")
    env: dict[str, str] = Field(default_factory=dict, description="Extra builder environment")
    timeout_seconds: int = Field(default=3600, ge=1, le=86400, description=TIMEOUT_DESCRIPTION)


class EmulationConfig(BaseModel):
    """Foreign-architecture emulator registration.

    Attributes:
        image: binfmt installer image.
        container_engine: Container engine executable.
        binfmt_dir: Kernel binfmt_misc directory used to detect registrations.
        keep_registered: Leave registrations in place after the run.
        timeout_seconds: Installer timeout.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    image: str = Field(
        default="tonistiigi/binfmt:qemu-v6.2.0",
        min_length=1,
        description="binfmt installer image",
    )
    container_engine: str = Field(default="docker", min_length=1, description="Container engine")
    binfmt_dir: Path = Field(
        default=Path("/proc/sys/fs/binfmt_misc"),
        description="binfmt_misc directory",
    )
    keep_registered: bool = Field(
        default=False,
        description="Keep emulators registered after the run",
    )
    timeout_seconds: int = Field(default=300, ge=1, le=3600, description=TIMEOUT_DESCRIPTION)


class ManifestExclusion(BaseModel):
    """A test dependency that has no build for some targets.

    Attributes:
        package: Requirement name as written in the manifest.
        targets: Glob patterns over target triples the exclusion applies to.
        reason: Why the dependency is excluded (logged with every exclusion).

    Example:
        >>> ManifestExclusion(
        ...     package="numpy",
        ...     targets=["*-linux-musl"],
        ...     reason="no musllinux wheels available",
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    package: str = Field(..., min_length=1, description="Requirement name")
    targets: list[str] = Field(..., min_length=1, description="Target triple glob patterns")
    reason: str = Field(..., min_length=1, description="Documented reason for the exclusion")


class VerificationConfig(BaseModel):
    """Isolated install-and-test environment.

    Attributes:
        package_name: Distribution name installed from local output.
        image: Container image template; {arch} is substituted.
        container_engine: Container engine executable.
        python: Interpreter template inside the image; {version} is substituted.
        requirements: Test dependency manifest, relative to the source tree.
        test_dir: Test suite directory, relative to the source tree.
        system_packages: OS packages the test suite needs (e.g. tzdata).
        exclusions: Manifest adjustments per target.
        pytest_args: Arguments passed to the test runner.
        timeout_seconds: Verification timeout.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    package_name: str = Field(..., min_length=1, description="Distribution to install")
    image: str = Field(
        default="quay.io/pypa/musllinux_1_1_{arch}:latest",
        min_length=1,
        description="Verification image template",
    )
    container_engine: str = Field(default="docker", min_length=1, description="Container engine")
    python: str = Field(default="python{version}", description="Interpreter template")
    requirements: str | None = Field(
        default="test/requirements.txt",
        description="Test dependency manifest path",
    )
    test_dir: str = Field(default="test", min_length=1, description="Test suite directory")
    system_packages: list[str] = Field(
        default_factory=lambda: ["tzdata"],
        description="OS packages provisioned before testing",
    )
    exclusions: list[ManifestExclusion] = Field(
        default_factory=list,
        description="Per-target manifest exclusions",
    )
    pytest_args: list[str] = Field(
        default_factory=lambda: ["-s", "-rxX", "-v"],
        description="Test runner arguments",
    )
    timeout_seconds: int = Field(default=3600, ge=1, le=86400, description=TIMEOUT_DESCRIPTION)


class CollectConfig(BaseModel):
    """Artifact collection settings.

    Attributes:
        name: Name of the aggregated artifact set.
        include_unverified: Also keep artifacts of cells that failed
            verification, in a separate inspection set.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(
        default="wheels",
        pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$",
        description="Artifact set name",
    )
    include_unverified: bool = Field(
        default=False,
        description="Collect unverified artifacts for inspection",
    )


class RetryConfig(BaseModel):
    """Retry policy for transient registry failures.

    Attributes:
        max_attempts: Maximum attempts per artifact (1-10, default 3).
        initial_wait_seconds: Initial backoff wait.
        max_wait_seconds: Maximum backoff cap.
        jitter_seconds: Random jitter range.

    Example:
        >>> config = RetryConfig(max_attempts=5, initial_wait_seconds=0.5)
        >>> config.max_attempts
        5
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10, description="Maximum attempts")
    initial_wait_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Initial backoff wait time in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Maximum backoff wait time in seconds",
    )
    jitter_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Random jitter range in seconds",
    )

    @model_validator(mode="after")
    def max_wait_must_exceed_initial(self) -> Self:
        """Validate that max_wait_seconds >= initial_wait_seconds."""
        if self.max_wait_seconds < self.initial_wait_seconds:
            msg = (
                f"max_wait_seconds ({self.max_wait_seconds}) must be >= "
                f"initial_wait_seconds ({self.initial_wait_seconds})"
            )
            raise ValueError(msg)
        return self


class RegistryPolicy(str, Enum):
    """What to do when the registry already has an artifact.

    Attributes:
        SKIP_EXISTING: Skip it and continue (idempotent re-publish).
        FAIL_ON_CONFLICT: Treat it as a fatal publish error.
    """

    SKIP_EXISTING = "skip_existing"
    FAIL_ON_CONFLICT = "fail_on_conflict"


class RegistryConfig(BaseModel):
    """Package registry upload settings.

    Attributes:
        policy: Conflict policy.
        credential: Reference to the upload token (never the token itself).
        username: Registry user name.
        repository_url: Alternate registry URL (default: the public index).
        program: Uploader executable.
        timeout_seconds: Per-upload timeout.
        retry: Retry policy for transport failures.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: RegistryPolicy = Field(
        default=RegistryPolicy.SKIP_EXISTING,
        description="Upload conflict policy",
    )
    credential: SecretReference = Field(
        default_factory=lambda: SecretReference(secret_ref="pypi-token"),
        description="Upload token secret reference",
    )
    username: str = Field(default="__token__", min_length=1, description="Registry user name")
    repository_url: str | None = Field(default=None, description="Alternate registry URL")
    program: str = Field(default="maturin", min_length=1, description="Uploader executable")
    timeout_seconds: int = Field(default=600, ge=1, le=3600, description=TIMEOUT_DESCRIPTION)
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry policy")

    @field_validator("credential")
    @classmethod
    def reject_literal_tokens(cls, v: SecretReference) -> SecretReference:
        """Refuse API tokens pasted where a secret name belongs."""
        if v.secret_ref.startswith("pypi-Ag") or len(v.secret_ref) > 64:
            msg = "credential must name a secret, not contain a token"
            raise ValueError(msg)
        return v


class PipelineConfig(BaseModel):
    """Root wheelhouse.yaml model.

    Attributes:
        name: Project name (used in logs and the run summary).
        source_dir: Source tree to build.
        work_dir: Root for per-run cell workspaces and artifact sets.
        max_parallel: Maximum concurrently executing matrix cells.
        matrix: Declared build matrix.
        builder: Builder options.
        emulation: Emulator options.
        verification: Verification environment options.
        collect: Artifact set options.
        registry: Registry upload options.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100, description="Project name")
    source_dir: Path = Field(default=Path("."), description="Source tree")
    work_dir: Path = Field(default=Path(".wheelhouse"), description="Working directory")
    max_parallel: int = Field(default=4, ge=1, le=64, description="Concurrent matrix cells")
    matrix: MatrixConfig = Field(..., description="Build matrix")
    builder: BuilderConfig = Field(default_factory=BuilderConfig, description="Builder options")
    emulation: EmulationConfig = Field(
        default_factory=EmulationConfig,
        description="Emulation options",
    )
    verification: VerificationConfig = Field(..., description="Verification options")
    collect: CollectConfig = Field(default_factory=CollectConfig, description="Collection options")
    registry: RegistryConfig = Field(
        default_factory=RegistryConfig,
        description="Registry options",
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> PipelineConfig:
        """Load and validate PipelineConfig from a YAML file.

        Relative source_dir and work_dir are resolved against the directory
        holding the file.

        Args:
            path: Path to wheelhouse.yaml.

        Returns:
            Validated PipelineConfig instance.

        Raises:
            ConfigurationError: If the file is missing or not valid YAML.
            pydantic.ValidationError: If schema validation fails.

        Example:
            >>> config = PipelineConfig.from_yaml("wheelhouse.yaml")
            >>> config.name
            'orjson'
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError("Configuration file not found", file_path=str(path))

        try:
            with path.open("r") as f:
                data: Any = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                "Configuration file is not valid YAML",
                file_path=str(path),
                internal_details=str(e),
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration file must contain a mapping",
                file_path=str(path),
            )

        config = cls.model_validate(data)
        return config.resolved(path.parent)

    def resolved(self, base_dir: Path) -> PipelineConfig:
        """Return a copy with relative paths anchored at base_dir."""
        updates: dict[str, Path] = {}
        if not self.source_dir.is_absolute():
            updates["source_dir"] = (base_dir / self.source_dir).resolve()
        if not self.work_dir.is_absolute():
            updates["work_dir"] = (base_dir / self.work_dir).resolve()
        if not updates:
            return self
        return self.model_copy(update=updates)
