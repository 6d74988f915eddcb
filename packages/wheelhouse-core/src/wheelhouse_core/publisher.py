"""Publishing an artifact set to a package registry.

This module provides:
- Uploader protocol and the maturin-based MaturinUploader
- Publisher: validates the whole set, then uploads each artifact with
  bounded tenacity retries and the configured conflict policy

The registry token is held in a ScopedCredential for the duration of the
publish step only, and reaches the uploader process through its environment.
"""

from __future__ import annotations

from typing import Protocol

import structlog
from pydantic import SecretStr
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from wheelhouse_core.errors import (
    ArtifactExistsError,
    PublishConflictError,
    PublishError,
    RegistryTransportError,
)
from wheelhouse_core.models import (
    Artifact,
    ArtifactSet,
    PublishOutcome,
    PublishResult,
    UploadRecord,
    hash_file,
)
from wheelhouse_core.process import CancellationToken, Runner
from wheelhouse_core.schemas.credential_config import ScopedCredential
from wheelhouse_core.schemas.pipeline_config import RegistryConfig, RegistryPolicy

logger = structlog.get_logger(__name__)

# Environment variable maturin reads the upload token from
TOKEN_ENV_VAR = "MATURIN_PYPI_TOKEN"

CONFLICT_MARKERS = ("already exists", "file exists", "400 file already")

TRANSPORT_MARKERS = (
    "connection",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "502",
    "503",
    "504",
)


class Uploader(Protocol):
    """Uploads one artifact to a registry.

    Implementations raise ArtifactExistsError when the registry already has
    the file, RegistryTransportError on transient transport failures and
    PublishError on anything else.
    """

    def upload(self, artifact: Artifact, token: SecretStr) -> None: ...


class MaturinUploader:
    """Uploads wheels with ``maturin upload``.

    Attributes:
        config: Registry options.
    """

    def __init__(
        self,
        config: RegistryConfig,
        runner: Runner,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.config = config
        self._runner = runner
        self._cancel = cancel

    def command(self, artifact: Artifact) -> list[str]:
        """Uploader argv for one artifact. The token is never part of argv."""
        argv = [self.config.program, "upload"]
        if self.config.repository_url:
            argv += ["--repository-url", self.config.repository_url]
        argv += ["--username", self.config.username, str(artifact.path)]
        return argv

    def upload(self, artifact: Artifact, token: SecretStr) -> None:
        result = self._runner.run(
            self.command(artifact),
            env={TOKEN_ENV_VAR: token.get_secret_value()},
            timeout=self.config.timeout_seconds,
            cancel=self._cancel,
        )
        if result.ok:
            return

        output = result.output.lower()
        if any(marker in output for marker in CONFLICT_MARKERS):
            raise ArtifactExistsError(artifact.filename)
        if result.timed_out or any(marker in output for marker in TRANSPORT_MARKERS):
            raise RegistryTransportError(
                f"Transport failure uploading '{artifact.filename}'",
                internal_details=result.tail(),
            )
        raise PublishError(
            f"Upload of '{artifact.filename}' failed with exit code {result.exit_code}",
            internal_details=result.tail(),
        )


class Publisher:
    """Publishes a verified artifact set.

    Attributes:
        config: Registry options (policy, retry).

    Example:
        >>> publisher = Publisher(config.registry, MaturinUploader(config.registry, runner))
        >>> result = publisher.publish(artifact_set, config.registry.credential.acquire())
        >>> result.uploaded_count
        4
    """

    def __init__(self, config: RegistryConfig, uploader: Uploader) -> None:
        self.config = config
        self._uploader = uploader

    def validate(self, artifact_set: ArtifactSet) -> None:
        """Check every artifact is present and unchanged before any upload.

        Raises:
            PublishError: If the set is empty or an artifact is missing or modified.
        """
        if len(artifact_set) == 0:
            raise PublishError(f"Artifact set '{artifact_set.name}' is empty")
        for filename in artifact_set.filenames:
            artifact = artifact_set.artifacts[filename]
            if not artifact.path.is_file():
                raise PublishError(f"Artifact '{filename}' is missing from the artifact set")
            if hash_file(artifact.path) != artifact.sha256:
                raise PublishError(f"Artifact '{filename}' changed after verification")

    def publish(self, artifact_set: ArtifactSet, credential: ScopedCredential) -> PublishResult:
        """Upload every artifact in the set.

        Args:
            artifact_set: Verified artifacts.
            credential: Scoped credential; released on every exit path.

        Returns:
            PublishResult with one record per artifact.

        Raises:
            PublishConflictError: If an artifact exists and the policy is
                fail_on_conflict.
            PublishError: On validation failure, exhausted retries or a
                non-retryable upload failure.
            SecretResolutionError: If the credential cannot be resolved.
        """
        log = logger.bind(artifact_set=artifact_set.name, policy=self.config.policy.value)
        self.validate(artifact_set)

        records: list[UploadRecord] = []
        with credential as token:
            for filename in artifact_set.filenames:
                artifact = artifact_set.artifacts[filename]
                records.append(self._publish_one(artifact, token, log))

        result = PublishResult(artifact_set=artifact_set.name, records=records)
        log.info(
            "publish_completed",
            uploaded=result.uploaded_count,
            skipped=result.skipped_count,
        )
        return result

    def _publish_one(
        self,
        artifact: Artifact,
        token: SecretStr,
        log: structlog.stdlib.BoundLogger,
    ) -> UploadRecord:
        try:
            attempts = self._upload_with_retry(artifact, token, log)
        except ArtifactExistsError as e:
            if self.config.policy == RegistryPolicy.FAIL_ON_CONFLICT:
                raise PublishConflictError(artifact.filename) from e
            log.info("artifact_skipped_existing", filename=artifact.filename)
            return UploadRecord(filename=artifact.filename, outcome=PublishOutcome.SKIPPED_EXISTING)

        log.info("artifact_uploaded", filename=artifact.filename, attempts=attempts)
        return UploadRecord(
            filename=artifact.filename,
            outcome=PublishOutcome.UPLOADED,
            attempts=attempts,
        )

    def _upload_with_retry(
        self,
        artifact: Artifact,
        token: SecretStr,
        log: structlog.stdlib.BoundLogger,
    ) -> int:
        """Upload one artifact, retrying transport failures.

        Returns:
            Number of attempts used.
        """
        retry = self.config.retry
        attempt = 0
        last_exception: RegistryTransportError | None = None

        try:
            for attempt_state in Retrying(
                retry=retry_if_exception_type(RegistryTransportError),
                stop=stop_after_attempt(retry.max_attempts),
                wait=wait_exponential_jitter(
                    initial=retry.initial_wait_seconds,
                    max=retry.max_wait_seconds,
                    jitter=retry.jitter_seconds,
                ),
                reraise=False,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        self._uploader.upload(artifact, token)
                    except RegistryTransportError as exc:
                        last_exception = exc
                        if attempt < retry.max_attempts:
                            log.warning(
                                "upload_retry",
                                filename=artifact.filename,
                                attempt=attempt,
                                max_attempts=retry.max_attempts,
                                error=exc.user_message,
                            )
                        raise
        except RetryError as e:
            raise PublishError(
                f"Upload of '{artifact.filename}' failed after {attempt} attempt(s)",
                internal_details=last_exception.internal_details if last_exception else None,
            ) from e
        return attempt
