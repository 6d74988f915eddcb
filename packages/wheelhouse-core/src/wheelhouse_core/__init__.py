"""wheelhouse-core: Cross-platform wheel build, verification and release pipeline.

This package provides:
- PipelineConfig: Pydantic schema for wheelhouse.yaml
- expand_matrix: runtime versions x platforms -> build jobs
- EmulationRegistry: idempotent foreign-architecture emulation
- BuildExecutor / InstallVerifier: per-cell build and isolated verification
- ArtifactCollector / ReleaseGate / Publisher: aggregation and release
- PipelineRunner: the task graph executor tying them together
"""

from __future__ import annotations

__version__ = "0.1.0"

# Pipeline stages
from wheelhouse_core.builder import BuildExecutor
from wheelhouse_core.collector import ArtifactCollector
from wheelhouse_core.emulation import (
    BinfmtInstaller,
    EmulationRegistry,
    EmulatorInstaller,
    host_architecture,
)

# Error types
from wheelhouse_core.errors import (
    ArtifactConflictError,
    ArtifactExistsError,
    ArtifactTagMismatchError,
    BuildError,
    ConfigurationError,
    EmulationSetupError,
    GraphError,
    PipelineCancelledError,
    PublishConflictError,
    PublishError,
    RegistryTransportError,
    SecretResolutionError,
    VerificationError,
    WheelhouseError,
)
from wheelhouse_core.export import export_pipeline_config_schema
from wheelhouse_core.graph import TaskGraph
from wheelhouse_core.matrix import expand_config, expand_matrix

# Data models
from wheelhouse_core.models import (
    Artifact,
    ArtifactSet,
    BuildJob,
    CellResult,
    CellStatus,
    EmulationState,
    GateDecision,
    PipelineResult,
    PipelineStatus,
    PlatformDescriptor,
    PublishOutcome,
    PublishResult,
    ReleaseEvent,
)
from wheelhouse_core.pipeline import PipelineRunner, run_pipeline
from wheelhouse_core.process import CancellationToken, CommandResult, CommandRunner
from wheelhouse_core.publisher import MaturinUploader, Publisher, Uploader
from wheelhouse_core.release import ReleaseGate

# Schema models
from wheelhouse_core.schemas import (
    PipelineConfig,
    RegistryPolicy,
    ScopedCredential,
    SecretReference,
)
from wheelhouse_core.verifier import InstallVerifier, VerificationReport

__all__ = [
    "__version__",
    # Pipeline
    "PipelineRunner",
    "run_pipeline",
    "TaskGraph",
    "expand_matrix",
    "expand_config",
    "EmulationRegistry",
    "EmulatorInstaller",
    "BinfmtInstaller",
    "host_architecture",
    "BuildExecutor",
    "InstallVerifier",
    "VerificationReport",
    "ArtifactCollector",
    "ReleaseGate",
    "Publisher",
    "Uploader",
    "MaturinUploader",
    "CancellationToken",
    "CommandRunner",
    "CommandResult",
    "export_pipeline_config_schema",
    # Models
    "Artifact",
    "ArtifactSet",
    "BuildJob",
    "CellResult",
    "CellStatus",
    "EmulationState",
    "GateDecision",
    "PipelineResult",
    "PipelineStatus",
    "PlatformDescriptor",
    "PublishOutcome",
    "PublishResult",
    "ReleaseEvent",
    # Schemas
    "PipelineConfig",
    "RegistryPolicy",
    "ScopedCredential",
    "SecretReference",
    # Errors
    "WheelhouseError",
    "ConfigurationError",
    "SecretResolutionError",
    "EmulationSetupError",
    "BuildError",
    "ArtifactTagMismatchError",
    "VerificationError",
    "ArtifactConflictError",
    "ArtifactExistsError",
    "RegistryTransportError",
    "PublishError",
    "PublishConflictError",
    "PipelineCancelledError",
    "GraphError",
]
