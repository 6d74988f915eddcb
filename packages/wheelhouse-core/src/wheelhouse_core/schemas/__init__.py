"""Configuration schemas for wheelhouse.

Pydantic models for wheelhouse.yaml and registry credentials.
"""

from __future__ import annotations

from wheelhouse_core.schemas.credential_config import ScopedCredential, SecretReference
from wheelhouse_core.schemas.pipeline_config import (
    DEFAULT_CONFIG_FILENAME,
    BuilderConfig,
    CollectConfig,
    EmulationConfig,
    ManifestExclusion,
    MatrixConfig,
    PipelineConfig,
    RegistryConfig,
    RegistryPolicy,
    RetryConfig,
    VerificationConfig,
)

__all__ = [
    "DEFAULT_CONFIG_FILENAME",
    "BuilderConfig",
    "CollectConfig",
    "EmulationConfig",
    "ManifestExclusion",
    "MatrixConfig",
    "PipelineConfig",
    "RegistryConfig",
    "RegistryPolicy",
    "RetryConfig",
    "ScopedCredential",
    "SecretReference",
    "VerificationConfig",
]
