"""Shared pytest fixtures for wheelhouse-core tests.

External collaborators (builder, container engine, emulator installer,
registry) are replaced by in-memory fakes so the whole pipeline runs without
docker, maturin or network access.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest
import structlog
from pydantic import SecretStr

from wheelhouse_core.errors import ArtifactExistsError, EmulationSetupError, RegistryTransportError
from wheelhouse_core.models import Artifact, BuildJob
from wheelhouse_core.process import CancellationToken, CommandResult
from wheelhouse_core.schemas import PipelineConfig

PACKAGE_NAME = "demo"
PACKAGE_VERSION = "1.0.0"


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Configure structlog to output to stdout for test capture."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,  # Important for test isolation
    )


# =============================================================================
# Fakes
# =============================================================================


def wheel_name(job: BuildJob, platform_arch: str | None = None) -> str:
    """Wheel file name the fake builder produces for a job."""
    tag = job.interpreter_tag
    arch = platform_arch or job.target_arch
    return f"{PACKAGE_NAME}-{PACKAGE_VERSION}-{tag}-{tag}-musllinux_1_1_{arch}.whl"


class FakeRunner:
    """Command runner that imitates maturin and docker.

    Attributes:
        calls: Every argv received, in order.
        events: Shared ordered log of ("build", cell) / ("verify", cell) events.
        fail_build: Cell ids whose build exits non-zero.
        fail_verify: Cell ids whose verification exits non-zero.
        results: argv[0:2] -> CommandResult overrides for other commands.
        abi3_tag: When set, builds produce abi3 wheels for this minimum interpreter.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[str, ...]] = []
        self.envs: list[Mapping[str, str] | None] = []
        self.events: list[tuple[str, str]] = []
        self.fail_build: set[str] = set()
        self.fail_verify: set[str] = set()
        self.produce_nothing: set[str] = set()
        self.results: dict[tuple[str, ...], CommandResult] = {}
        self.on_build: Callable[[str], None] | None = None
        self.abi3_tag: str | None = None

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> CommandResult:
        if cancel is not None:
            cancel.raise_if_cancelled()
        argv = tuple(argv)
        with self._lock:
            self.calls.append(argv)
            self.envs.append(env)

        if argv[:2] == ("maturin", "build"):
            return self._build(argv)
        if argv[:2] == ("docker", "run") and "--platform" in argv:
            return self._verify(argv)
        return self.results.get(argv[:2], CommandResult(argv=argv, exit_code=0))

    def _build(self, argv: tuple[str, ...]) -> CommandResult:
        target = argv[argv.index("--target") + 1]
        version = argv[argv.index("-i") + 1].removeprefix("python")
        out = Path(argv[argv.index("--out") + 1])
        cell = f"py{version}-{target}"
        with self._lock:
            self.events.append(("build", cell))
        if self.on_build is not None:
            self.on_build(cell)
        if cell in self.fail_build:
            return CommandResult(argv=argv, exit_code=1, stderr="error: could not compile")
        if cell not in self.produce_nothing:
            job = BuildJob(
                runtime_version=version,
                target_platform=target,
                target_arch=target.split("-")[0],
            )
            name = wheel_name(job)
            if self.abi3_tag is not None:
                tag = job.interpreter_tag
                name = name.replace(f"-{tag}-{tag}-", f"-{self.abi3_tag}-abi3-")
            (out / name).write_bytes(f"wheel for {cell}".encode())
        return CommandResult(argv=argv, exit_code=0, stdout="Built wheel")

    def _verify(self, argv: tuple[str, ...]) -> CommandResult:
        mount = argv[argv.index("-v") + 1]
        cell = Path(mount.rsplit(":", 1)[0]).name
        with self._lock:
            self.events.append(("verify", cell))
        if cell in self.fail_verify:
            return CommandResult(argv=argv, exit_code=1, stdout="1 failed, 10 passed")
        return CommandResult(argv=argv, exit_code=0, stdout="11 passed")

    def commands(self, program: str, subcommand: str) -> list[tuple[str, ...]]:
        """Recorded argv lists for one program/subcommand."""
        return [c for c in self.calls if c[:2] == (program, subcommand)]


class FakeInstaller:
    """Emulator installer backed by an in-memory registration set."""

    def __init__(self, events: list[tuple[str, str]] | None = None) -> None:
        self._lock = threading.Lock()
        self.registered: set[str] = set()
        self.install_calls: list[str] = []
        self.uninstall_calls: list[str] = []
        self.fail: set[str] = set()
        self.events = events if events is not None else []

    def is_registered(self, arch: str) -> bool:
        return arch in self.registered

    def install(self, arch: str, cancel: CancellationToken | None = None) -> None:
        with self._lock:
            self.install_calls.append(arch)
            self.events.append(("install", arch))
        if arch in self.fail:
            raise EmulationSetupError(arch, internal_details="binfmt image exited 1")
        self.registered.add(arch)

    def uninstall(self, arch: str) -> None:
        self.uninstall_calls.append(arch)
        self.registered.discard(arch)


class FakeRegistry:
    """Uploader backed by an in-memory package index.

    Attributes:
        files: filename -> content digest of everything in the index.
        transport_failures: filename -> number of transient failures to raise.
        tokens: Token values received (to check the credential reached the upload).
    """

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.transport_failures: dict[str, int] = {}
        self.attempts: list[str] = []
        self.tokens: list[str] = []

    def upload(self, artifact: Artifact, token: SecretStr) -> None:
        self.attempts.append(artifact.filename)
        self.tokens.append(token.get_secret_value())
        remaining = self.transport_failures.get(artifact.filename, 0)
        if remaining:
            self.transport_failures[artifact.filename] = remaining - 1
            raise RegistryTransportError("Transport failure uploading", internal_details="503")
        if artifact.filename in self.files:
            raise ArtifactExistsError(artifact.filename)
        self.files[artifact.filename] = artifact.sha256

    def list_files(self) -> list[str]:
        return sorted(self.files)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Fake maturin/docker command runner."""
    return FakeRunner()


@pytest.fixture
def fake_installer(fake_runner: FakeRunner) -> FakeInstaller:
    """Fake emulator installer sharing the runner's event log."""
    return FakeInstaller(events=fake_runner.events)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    """Fake package registry."""
    return FakeRegistry()


@pytest.fixture
def make_job() -> Callable[..., BuildJob]:
    """Factory for build jobs."""

    def _make(version: str = "3.10", arch: str = "x86_64") -> BuildJob:
        return BuildJob(
            runtime_version=version,
            target_platform=f"{arch}-unknown-linux-musl",
            target_arch=arch,
        )

    return _make


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A minimal project tree with a test manifest and test suite."""
    root = tmp_path / "project"
    (root / "test").mkdir(parents=True)
    (root / "src").mkdir()
    (root / "src" / "lib.rs").write_text("// extension module\n")
    (root / "test" / "requirements.txt").write_text("arrow\nnumpy\npytest\n")
    (root / "test" / "test_demo.py").write_text("def test_ok():\n    assert True\n")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    return root


@pytest.fixture
def config_data(source_tree: Path, tmp_path: Path) -> dict[str, Any]:
    """A valid wheelhouse.yaml structure with a 2 x 2 matrix."""
    return {
        "name": "demo",
        "source_dir": str(source_tree),
        "work_dir": str(tmp_path / "work"),
        "max_parallel": 4,
        "matrix": {
            "runtime_versions": ["3.9", "3.10"],
            "platforms": [
                {"target": "aarch64-unknown-linux-musl", "arch": "aarch64"},
                {"target": "x86_64-unknown-linux-musl", "arch": "x86_64"},
            ],
        },
        "builder": {"features": ["unstable-simd", "yyjson"]},
        "emulation": {"binfmt_dir": str(tmp_path / "binfmt")},
        "verification": {
            "package_name": PACKAGE_NAME,
            "exclusions": [
                {
                    "package": "numpy",
                    "targets": ["*-linux-musl"],
                    "reason": "no musllinux wheels available",
                }
            ],
        },
        "registry": {
            "retry": {
                "max_attempts": 3,
                "initial_wait_seconds": 0.0,
                "max_wait_seconds": 0.0,
                "jitter_seconds": 0.0,
            }
        },
    }


@pytest.fixture
def pipeline_config(config_data: dict[str, Any]) -> PipelineConfig:
    """Validated PipelineConfig for the sample project."""
    return PipelineConfig.model_validate(config_data)


@pytest.fixture
def pypi_token(monkeypatch: pytest.MonkeyPatch) -> str:
    """Registry token exposed through the PYPI_TOKEN environment variable."""
    token = "pypi-test-token-value"
    monkeypatch.setenv("PYPI_TOKEN", token)
    return token
