"""Custom exception hierarchy for wheelhouse-core.

This module defines the exception classes used throughout wheelhouse:
- WheelhouseError: Base exception for all wheelhouse-related errors
- ConfigurationError: Raised when wheelhouse.yaml cannot be loaded
- Cell-scoped failures: EmulationSetupError, BuildError, VerificationError
- Release-scoped failures: PublishError and its conflict variant

Design:
- User-facing messages are safe to display (no internal details)
- Technical details logged internally via structlog
- Cell-scoped errors never cross a cell boundary; the pipeline runner turns
  them into a failed CellResult
"""

from __future__ import annotations

import structlog

logger = structlog.get_logger(__name__)


class WheelhouseError(Exception):
    """Base exception for wheelhouse.

    All wheelhouse exceptions inherit from this class. User-facing messages
    are safe to display; technical details are logged internally.

    Args:
        user_message: Safe message to display to the user. Should NOT contain
            credentials, tokens, or full command output.
        internal_details: Optional technical details for logging. This is
            logged internally but NEVER exposed to the user.

    Example:
        >>> raise WheelhouseError(
        ...     "Build failed",
        ...     internal_details="maturin exited 101: error[E0432] unresolved import",
        ... )
    """

    def __init__(
        self,
        user_message: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        """Initialize WheelhouseError with user message and optional internal details.

        Args:
            user_message: Safe message to display to the user.
            internal_details: Technical details for internal logging only.
        """
        super().__init__(user_message)
        self.user_message = user_message
        self.internal_details = internal_details

        if internal_details:
            logger.error(
                "wheelhouse_error",
                error_type=self.__class__.__name__,
                user_message=user_message,
                internal_details=internal_details,
            )


class ConfigurationError(WheelhouseError):
    """Raised when configuration file parsing or validation fails.

    Provides file path and field context for actionable error messages.

    Attributes:
        file_path: Path to the configuration file (if known).
        field_path: Dot-separated path to the invalid field (e.g., "matrix.platforms").

    Example:
        >>> raise ConfigurationError(
        ...     "Duplicate runtime version '3.9'",
        ...     file_path="wheelhouse.yaml",
        ...     field_path="matrix.runtime_versions",
        ... )
    """

    def __init__(
        self,
        user_message: str,
        *,
        file_path: str | None = None,
        field_path: str | None = None,
        internal_details: str | None = None,
    ) -> None:
        """Initialize ConfigurationError with context.

        Args:
            user_message: Safe message to display to the user.
            file_path: Path to the configuration file (optional).
            field_path: Dot-separated path to the field (optional).
            internal_details: Technical details for internal logging only.
        """
        context_parts: list[str] = []
        if file_path:
            context_parts.append(f"in {file_path}")
        if field_path:
            context_parts.append(f"field '{field_path}'")

        if context_parts:
            full_message = f"{user_message} ({', '.join(context_parts)})"
        else:
            full_message = user_message

        super().__init__(full_message, internal_details=internal_details)

        self.file_path = file_path
        self.field_path = field_path


class SecretResolutionError(WheelhouseError):
    """Raised when a secret reference cannot be resolved.

    Attributes:
        secret_ref: The secret reference that failed to resolve.
        expected_env_var: The expected environment variable name.
        expected_path: The expected secret mount path.

    Example:
        >>> raise SecretResolutionError(
        ...     secret_ref="pypi-token",
        ...     expected_env_var="PYPI_TOKEN",
        ...     expected_path="/var/run/secrets/pypi-token",
        ... )
        # User sees: "Secret 'pypi-token' not found.
        #            Expected in: PYPI_TOKEN or /var/run/secrets/pypi-token"
    """

    def __init__(
        self,
        secret_ref: str,
        expected_env_var: str,
        expected_path: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        """Initialize SecretResolutionError with expected locations.

        Args:
            secret_ref: The secret reference name.
            expected_env_var: Expected environment variable name.
            expected_path: Expected secret mount path.
            internal_details: Technical details for internal logging only.
        """
        user_message = (
            f"Secret '{secret_ref}' not found. "
            f"Expected in: {expected_env_var} or {expected_path}"
        )

        super().__init__(user_message, internal_details=internal_details)

        self.secret_ref = secret_ref
        self.expected_env_var = expected_env_var
        self.expected_path = expected_path


class EmulationSetupError(WheelhouseError):
    """Raised when an emulation layer cannot be registered for an architecture.

    Fatal to the cell that requested it; the cell never reaches the builder.

    Attributes:
        arch: Architecture that could not be emulated.
    """

    def __init__(self, arch: str, *, internal_details: str | None = None) -> None:
        super().__init__(
            f"Could not register emulation for architecture '{arch}'",
            internal_details=internal_details,
        )
        self.arch = arch


class BuildError(WheelhouseError):
    """Raised when the external builder fails for one cell.

    Use this exception when:
    - The builder exits non-zero or times out
    - A produced artifact does not belong to the job that built it
    """

    pass


class ArtifactTagMismatchError(BuildError):
    """Raised when a built wheel's tags do not match the job that produced it.

    Example:
        >>> raise ArtifactTagMismatchError(
        ...     "orjson-3.8.0-cp38-cp38-musllinux_1_1_x86_64.whl",
        ...     expected="cp39 / aarch64",
        ... )
    """

    def __init__(
        self,
        filename: str,
        *,
        expected: str,
        internal_details: str | None = None,
    ) -> None:
        super().__init__(
            f"Artifact '{filename}' does not match its build job (expected {expected})",
            internal_details=internal_details,
        )
        self.filename = filename
        self.expected = expected


class VerificationError(WheelhouseError):
    """Raised when an installed artifact fails its test suite.

    The artifact may still exist on disk but is not trusted and never reaches
    the release artifact set.
    """

    pass


class ArtifactConflictError(WheelhouseError):
    """Raised when two different files claim the same artifact filename."""

    def __init__(self, filename: str, *, internal_details: str | None = None) -> None:
        super().__init__(
            f"Conflicting artifacts share the filename '{filename}'",
            internal_details=internal_details,
        )
        self.filename = filename


class ArtifactExistsError(WheelhouseError):
    """Raised by an uploader when the registry already has the artifact.

    Recovered locally by the publisher under the skip-existing policy.
    """

    def __init__(self, filename: str, *, internal_details: str | None = None) -> None:
        super().__init__(
            f"Artifact '{filename}' already exists in the registry",
            internal_details=internal_details,
        )
        self.filename = filename


class RegistryTransportError(WheelhouseError):
    """Raised by an uploader on a transient transport failure (retryable)."""

    pass


class PublishError(WheelhouseError):
    """Raised when publishing the artifact set fails.

    Fatal to the run and surfaced to the operator.
    """

    pass


class PublishConflictError(PublishError):
    """Raised when an artifact already exists and the policy forbids skipping."""

    def __init__(self, filename: str, *, internal_details: str | None = None) -> None:
        super().__init__(
            f"Artifact '{filename}' already exists in the registry "
            "and the upload policy is fail_on_conflict",
            internal_details=internal_details,
        )
        self.filename = filename


class PipelineCancelledError(WheelhouseError):
    """Raised inside a cell when the pipeline run has been cancelled."""

    def __init__(self, user_message: str = "Pipeline run was cancelled") -> None:
        super().__init__(user_message)


class GraphError(WheelhouseError):
    """Raised when the task graph is malformed (cycle or unknown dependency)."""

    pass
