"""Foreign-architecture emulation registration.

Emulator registration (binfmt_misc + QEMU) is host-wide state, not per job.
EmulationRegistry is the single owner of that state for a pipeline run:

- ensure_emulation_for(arch) is idempotent and thread-safe
- the native architecture never touches the installer
- release() removes only the registrations this run created

Example:
    >>> registry = EmulationRegistry(BinfmtInstaller(EmulationConfig(), CommandRunner()))
    >>> registry.ensure_emulation_for("aarch64")
    <EmulationState.INSTALLED: 'installed'>
    >>> registry.ensure_emulation_for("aarch64")
    <EmulationState.ALREADY_INSTALLED: 'already_installed'>
"""

from __future__ import annotations

import platform
import threading
from typing import Protocol

import structlog

from wheelhouse_core.errors import EmulationSetupError
from wheelhouse_core.models import EmulationState
from wheelhouse_core.process import CancellationToken, Runner
from wheelhouse_core.schemas.pipeline_config import EmulationConfig

logger = structlog.get_logger(__name__)

# Architecture -> container platform name
DOCKER_PLATFORMS: dict[str, str] = {
    "x86_64": "amd64",
    "aarch64": "arm64",
    "armv7": "arm/v7",
    "i686": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}

# Architecture -> binfmt_misc registration name
QEMU_BINARIES: dict[str, str] = {
    "x86_64": "qemu-x86_64",
    "aarch64": "qemu-aarch64",
    "armv7": "qemu-arm",
    "i686": "qemu-i386",
    "ppc64le": "qemu-ppc64le",
    "s390x": "qemu-s390x",
    "riscv64": "qemu-riscv64",
}

_MACHINE_ALIASES: dict[str, str] = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv7l": "armv7",
    "i386": "i686",
    "x86": "i686",
}


def normalize_arch(machine: str) -> str:
    """Map platform.machine() spellings onto target architecture names."""
    lowered = machine.strip().lower()
    return _MACHINE_ALIASES.get(lowered, lowered)


def host_architecture() -> str:
    """Native architecture of the build host."""
    return normalize_arch(platform.machine())


def docker_platform(arch: str) -> str:
    """Container platform string for an architecture (linux/<name>).

    Raises:
        EmulationSetupError: If the architecture is unknown.
    """
    try:
        return f"linux/{DOCKER_PLATFORMS[arch]}"
    except KeyError:
        raise EmulationSetupError(arch, internal_details="unknown architecture") from None


class EmulatorInstaller(Protocol):
    """Registers and removes host-wide emulators."""

    def is_registered(self, arch: str) -> bool: ...

    def install(self, arch: str, cancel: CancellationToken | None = None) -> None: ...

    def uninstall(self, arch: str) -> None: ...


class BinfmtInstaller:
    """Registers QEMU user-mode emulators with the tonistiigi/binfmt image.

    Attributes:
        config: Emulation configuration.
    """

    def __init__(self, config: EmulationConfig, runner: Runner) -> None:
        self.config = config
        self._runner = runner

    def is_registered(self, arch: str) -> bool:
        """Whether binfmt_misc already has an emulator for arch."""
        name = QEMU_BINARIES.get(arch)
        if name is None:
            return False
        return (self.config.binfmt_dir / name).exists()

    def install(self, arch: str, cancel: CancellationToken | None = None) -> None:
        """Register an emulator for arch.

        Raises:
            EmulationSetupError: If the installer fails or the registration
                does not appear afterwards.
        """
        container_platform = DOCKER_PLATFORMS.get(arch)
        if container_platform is None:
            raise EmulationSetupError(arch, internal_details="no emulator known for architecture")

        result = self._runner.run(
            [
                self.config.container_engine,
                "run",
                "--privileged",
                "--rm",
                self.config.image,
                "--install",
                container_platform.split("/")[0],
            ],
            timeout=self.config.timeout_seconds,
            cancel=cancel,
        )
        if not result.ok:
            raise EmulationSetupError(arch, internal_details=result.tail())

        if self.config.binfmt_dir.exists() and not self.is_registered(arch):
            raise EmulationSetupError(
                arch,
                internal_details=f"{QEMU_BINARIES[arch]} missing from {self.config.binfmt_dir}",
            )

    def uninstall(self, arch: str) -> None:
        """Remove the emulator registration for arch."""
        name = QEMU_BINARIES.get(arch)
        if name is None:
            return
        result = self._runner.run(
            [
                self.config.container_engine,
                "run",
                "--privileged",
                "--rm",
                self.config.image,
                "--uninstall",
                name,
            ],
            timeout=self.config.timeout_seconds,
        )
        if not result.ok:
            raise EmulationSetupError(arch, internal_details=result.tail())


class EmulationRegistry:
    """Host-scoped, idempotent emulation capability for one pipeline run.

    Attributes:
        host_arch: Native architecture of the build host.
    """

    def __init__(self, installer: EmulatorInstaller, host_arch: str | None = None) -> None:
        self._installer = installer
        self.host_arch = normalize_arch(host_arch) if host_arch else host_architecture()
        self._lock = threading.Lock()
        self._states: dict[str, EmulationState] = {}
        self._installed_here: list[str] = []
        self._log = logger.bind(component="emulation_registry", host_arch=self.host_arch)

    def requires_emulation(self, arch: str) -> bool:
        """Whether binaries for arch need an emulator on this host."""
        return normalize_arch(arch) != self.host_arch

    @property
    def states(self) -> dict[str, EmulationState]:
        """Lifecycle state per architecture seen so far."""
        with self._lock:
            return dict(self._states)

    def ensure_emulation_for(
        self,
        arch: str,
        cancel: CancellationToken | None = None,
    ) -> EmulationState:
        """Make sure binaries for arch can execute on this host.

        Args:
            arch: Target architecture.
            cancel: Cancellation token for the installer process.

        Returns:
            NOT_REQUIRED for the native architecture, INSTALLED for the call
            that registered the emulator, ALREADY_INSTALLED afterwards.

        Raises:
            EmulationSetupError: If registration fails. The failure is
                recorded, and a later call retries the installation.
        """
        arch = normalize_arch(arch)
        if not self.requires_emulation(arch):
            return EmulationState.NOT_REQUIRED

        with self._lock:
            state = self._states.get(arch)
            if state in (EmulationState.INSTALLED, EmulationState.ALREADY_INSTALLED):
                return EmulationState.ALREADY_INSTALLED

            if self._installer.is_registered(arch):
                self._states[arch] = EmulationState.ALREADY_INSTALLED
                self._log.info("emulation_already_registered", arch=arch)
                return EmulationState.ALREADY_INSTALLED

            self._log.info("emulation_installing", arch=arch)
            try:
                self._installer.install(arch, cancel)
            except EmulationSetupError:
                self._states[arch] = EmulationState.FAILED
                self._log.error("emulation_failed", arch=arch)
                raise

            self._states[arch] = EmulationState.INSTALLED
            self._installed_here.append(arch)
            self._log.info("emulation_installed", arch=arch)
            return EmulationState.INSTALLED

    def release(self) -> list[str]:
        """Remove the registrations this registry created.

        Registrations that existed before the run are left alone. A failed
        removal is logged and does not stop the remaining ones.

        Returns:
            Architectures whose registration was removed.
        """
        released: list[str] = []
        with self._lock:
            pending = list(self._installed_here)
            self._installed_here.clear()
            for arch in pending:
                self._states.pop(arch, None)

        for arch in pending:
            try:
                self._installer.uninstall(arch)
            except EmulationSetupError as e:
                self._log.warning("emulation_release_failed", arch=arch, error=e.user_message)
                continue
            released.append(arch)
            self._log.info("emulation_released", arch=arch)
        return released
