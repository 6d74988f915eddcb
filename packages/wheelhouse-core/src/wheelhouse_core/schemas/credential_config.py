"""Credential configuration models for wheelhouse.

This module defines registry credential handling:
- SecretReference: Reference to an external secret (env var or mounted file)
- ScopedCredential: Context manager holding a resolved token for one step

Secrets are never stored in wheelhouse.yaml. The configuration only names
where the secret lives; the value is resolved when the publish step starts
and dropped when it ends.
"""

from __future__ import annotations

import os
from pathlib import Path
from types import TracebackType

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from wheelhouse_core.errors import SecretResolutionError

logger = structlog.get_logger(__name__)

# Pattern for secret names (RFC 1123 DNS subdomain, also valid env var stems)
SECRET_NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9_-]{0,252}$"

DEFAULT_SECRETS_DIR = Path("/var/run/secrets")


class SecretReference(BaseModel):
    """Reference to an external secret (environment variable or mounted file).

    Resolution order:
        1. Check environment variable: {SECRET_REF_UPPER_SNAKE_CASE}
        2. Check secret mount: {secrets_dir}/{secret_ref}
        3. Fail with SecretResolutionError

    Attributes:
        secret_ref: Secret name, e.g. "pypi-token" (env var PYPI_TOKEN).

    Example:
        >>> ref = SecretReference(secret_ref="pypi-token")
        >>> ref.resolve()  # Returns SecretStr from env or mount
        SecretStr('**********')
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    secret_ref: str = Field(
        ...,
        pattern=SECRET_NAME_PATTERN,
        min_length=1,
        max_length=253,
        description="Secret name or environment variable name",
    )

    @property
    def env_var_name(self) -> str:
        """Environment variable consulted first."""
        return self.secret_ref.upper().replace("-", "_")

    def resolve(self, secrets_dir: Path = DEFAULT_SECRETS_DIR) -> SecretStr:
        """Resolve the secret at runtime.

        Args:
            secrets_dir: Directory holding mounted secret files.

        Returns:
            SecretStr containing the secret value.

        Raises:
            SecretResolutionError: If the secret is in neither location.
        """
        value = os.environ.get(self.env_var_name)
        if value:
            return SecretStr(value)

        secret_path = secrets_dir / self.secret_ref
        if secret_path.exists():
            return SecretStr(secret_path.read_text().strip())

        raise SecretResolutionError(
            secret_ref=self.secret_ref,
            expected_env_var=self.env_var_name,
            expected_path=str(secret_path),
        )

    def acquire(self, secrets_dir: Path = DEFAULT_SECRETS_DIR) -> ScopedCredential:
        """Return a context manager that holds the resolved secret.

        Example:
            >>> with SecretReference(secret_ref="pypi-token").acquire() as token:
            ...     upload(token)
        """
        return ScopedCredential(self, secrets_dir=secrets_dir)

    def __str__(self) -> str:
        """Return string representation without exposing the secret."""
        return f"SecretReference(secret_ref='{self.secret_ref}')"


class ScopedCredential:
    """A credential held only for the duration of a ``with`` block.

    The token is resolved on enter and discarded on exit, whether the block
    completes, raises, or is interrupted. After exit, ``token`` is None.

    Attributes:
        reference: The secret reference being held.
        released: True once the block has exited.
    """

    def __init__(
        self,
        reference: SecretReference,
        *,
        secrets_dir: Path = DEFAULT_SECRETS_DIR,
    ) -> None:
        self.reference = reference
        self._secrets_dir = secrets_dir
        self._token: SecretStr | None = None
        self.released = False

    @property
    def token(self) -> SecretStr | None:
        """Currently held token (None outside the block)."""
        return self._token

    def __enter__(self) -> SecretStr:
        self._token = self.reference.resolve(self._secrets_dir)
        self.released = False
        logger.debug("credential_acquired", secret_ref=self.reference.secret_ref)
        return self._token

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._token = None
        self.released = True
        logger.debug("credential_released", secret_ref=self.reference.secret_ref)
