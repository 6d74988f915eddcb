"""Pipeline runner.

Walks the task graph of a run: matrix cells in parallel, then collection,
the release gate and publishing.

Each cell runs in its own workspace ``<work_dir>/<run_id>/<cell_id>/``:

    src/                      private copy of the source tree
    dist/                     builder output
    requirements.verify.txt   target-adjusted test manifest

A failure inside one cell becomes that cell's CellResult; it never affects
sibling cells and never propagates out of the runner.
"""

from __future__ import annotations

import re
import shutil
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from wheelhouse_core.builder import BuildExecutor
from wheelhouse_core.collector import ArtifactCollector
from wheelhouse_core.emulation import BinfmtInstaller, EmulationRegistry, EmulatorInstaller
from wheelhouse_core.errors import (
    ArtifactConflictError,
    BuildError,
    ConfigurationError,
    EmulationSetupError,
    PipelineCancelledError,
    PublishError,
    SecretResolutionError,
    VerificationError,
)
from wheelhouse_core.graph import CellNode, CollectNode, GateNode, PublishNode, TaskGraph
from wheelhouse_core.matrix import expand_config
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
    PublishResult,
    ReleaseEvent,
)
from wheelhouse_core.observability import span
from wheelhouse_core.process import CancellationToken, CommandRunner, Runner
from wheelhouse_core.publisher import MaturinUploader, Publisher, Uploader
from wheelhouse_core.release import ReleaseGate
from wheelhouse_core.schemas.credential_config import DEFAULT_SECRETS_DIR
from wheelhouse_core.schemas.pipeline_config import PipelineConfig
from wheelhouse_core.verifier import CONTAINER_NAME_PREFIX, InstallVerifier

logger = structlog.get_logger(__name__)

SOURCE_DIRNAME = "src"
DIST_DIRNAME = "dist"
ARTIFACTS_DIRNAME = "artifacts"

# Never copied into a cell workspace
IGNORED_SOURCE_NAMES = frozenset({".git", "target", "__pycache__", ".venv"})

# Run ids name a directory under work_dir and a container name prefix
RUN_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")

# Cell steps, in execution order
STEP_EMULATION = "emulation"
STEP_WORKSPACE = "workspace"
STEP_BUILD = "build"
STEP_VERIFY = "verification"

# Status recorded when a step fails with an unexpected error
STEP_FAILURE_STATUS = {
    STEP_EMULATION: CellStatus.EMULATION_FAILED,
    STEP_WORKSPACE: CellStatus.BUILD_FAILED,
    STEP_BUILD: CellStatus.BUILD_FAILED,
    STEP_VERIFY: CellStatus.VERIFICATION_FAILED,
}


def new_run_id() -> str:
    """Sortable, container-name safe run identifier."""
    return f"{datetime.now(UTC):%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}"


class PipelineRunner:
    """Executes one pipeline run.

    External collaborators default to the real implementations and can be
    replaced (tests pass in-memory fakes).

    Attributes:
        config: Pipeline configuration.
        run_id: Run identifier.
        cancel: Run-wide cancellation token.

    Example:
        >>> runner = PipelineRunner(PipelineConfig.from_yaml("wheelhouse.yaml"))
        >>> result = runner.run(ReleaseEvent.from_ref("refs/tags/3.8.0"))
        >>> result.status
        <PipelineStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        runner: Runner | None = None,
        installer: EmulatorInstaller | None = None,
        uploader: Uploader | None = None,
        host_arch: str | None = None,
        run_id: str | None = None,
        cancel: CancellationToken | None = None,
        secrets_dir: Path = DEFAULT_SECRETS_DIR,
    ) -> None:
        if run_id is not None and not RUN_ID_PATTERN.fullmatch(run_id):
            raise ConfigurationError(
                f"Invalid run id '{run_id}': use letters, digits, '.', '_' and '-'",
                field_path="run_id",
            )
        self.config = config
        self.run_id = run_id or new_run_id()
        self.cancel = cancel or CancellationToken()
        self.secrets_dir = secrets_dir
        self._runner = runner or CommandRunner()

        self.emulation = EmulationRegistry(
            installer or BinfmtInstaller(config.emulation, self._runner),
            host_arch,
        )
        self.builder = BuildExecutor(config.builder, self._runner)
        self.verifier = InstallVerifier(config.verification, self._runner, run_id=self.run_id)
        self.gate = ReleaseGate()
        self.publisher = Publisher(
            config.registry,
            uploader or MaturinUploader(config.registry, self._runner, self.cancel),
        )
        self.run_dir = config.work_dir / self.run_id
        self.collector = ArtifactCollector(config.collect, self.run_dir / ARTIFACTS_DIRNAME)
        self._log = logger.bind(component="pipeline_runner", run_id=self.run_id)

    def run(self, event: ReleaseEvent) -> PipelineResult:
        """Execute the run.

        Args:
            event: Triggering event (decides whether the gate may open).

        Returns:
            PipelineResult. Cell, collection and publish failures are
            recorded in the result, never raised.
        """
        start_time = time.monotonic()
        started_at = datetime.now(UTC)

        jobs = expand_config(self.config.matrix)
        graph = TaskGraph.for_jobs(jobs)

        cells: list[CellResult] = []
        artifact_set: ArtifactSet | None = None
        gate: GateDecision | None = None
        publish: PublishResult | None = None
        publish_error: str | None = None
        error: str | None = None

        self._log.info(
            "pipeline_started",
            project=self.config.name,
            cells=len(jobs),
            trigger_ref=event.trigger_ref,
            is_tag=event.is_tag,
        )

        with span(
            "pipeline.run",
            attributes={"wheelhouse.run_id": self.run_id, "wheelhouse.cells": len(jobs)},
        ):
            try:
                for stage in graph.stages():
                    if self.cancel.cancelled:
                        break
                    cell_nodes = [n for n in stage if isinstance(n, CellNode)]
                    if cell_nodes:
                        cells = self._run_cells([n.job for n in cell_nodes if n.job is not None])
                    for node in stage:
                        if isinstance(node, CollectNode):
                            artifact_set = self.collector.collect(cells)
                            if artifact_set.conflicts:
                                error = "; ".join(
                                    ArtifactConflictError(name).user_message
                                    for name in artifact_set.conflicts
                                )
                                self._log.error("collection_failed", error=error)
                        elif isinstance(node, GateNode):
                            gate = self.gate.evaluate(event, cells)
                        elif isinstance(node, PublishNode):
                            if gate is None or not gate.open or artifact_set is None:
                                continue
                            if artifact_set.conflicts:
                                self._log.warning(
                                    "publish_blocked", conflicts=artifact_set.conflicts
                                )
                                continue
                            publish, publish_error = self._publish(artifact_set)
            finally:
                if self.cancel.cancelled:
                    self._remove_containers()
                    self.emulation.release()
                elif not self.config.emulation.keep_registered:
                    self.emulation.release()

        status = self._determine_status(cells, publish_error, error)
        finished_at = datetime.now(UTC)
        total_duration_ms = int((time.monotonic() - start_time) * 1000)

        self._log.info(
            "pipeline_completed",
            status=status.value,
            succeeded=sum(1 for c in cells if c.succeeded),
            failed=sum(1 for c in cells if c.failed),
            published=publish is not None,
            total_duration_ms=total_duration_ms,
        )

        return PipelineResult(
            run_id=self.run_id,
            event=event,
            cells=cells,
            artifact_set=artifact_set,
            unverified_set=self.collector.unverified,
            gate=gate,
            publish=publish,
            publish_error=publish_error,
            error=error,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            total_duration_ms=total_duration_ms,
        )

    # -------------------------------------------------------------------------
    # Cells
    # -------------------------------------------------------------------------

    def _run_cells(self, jobs: list[BuildJob]) -> list[CellResult]:
        """Run every cell and wait for all of them."""
        if not jobs:
            return []
        max_workers = min(self.config.max_parallel, len(jobs))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cell") as pool:
            futures: list[Future[CellResult]] = [pool.submit(self.run_cell, job) for job in jobs]
            try:
                wait(futures)
            except KeyboardInterrupt:
                self._log.warning("pipeline_interrupted")
                self.cancel.cancel()
                wait(futures)
        return [f.result() for f in futures]

    def run_cell(self, job: BuildJob) -> CellResult:
        """Run one cell: emulation gate, build, verification.

        Every exception is turned into the cell's result. Unexpected errors
        are attributed to the step that was running.
        """
        start_time = time.monotonic()
        log = self._log.bind(cell=job.cell_id)
        state: dict[str, Any] = {"emulation": None, "artifacts": [], "step": STEP_EMULATION}

        log.info("cell_started", target=job.target_platform, runtime=job.runtime_version)
        try:
            # Failures propagate through the span so it ends with an error status
            with span("pipeline.cell", attributes={"wheelhouse.cell": job.cell_id}) as cell_span:
                details = self._execute_cell(job, state)
                cell_span.set_attribute("wheelhouse.cell.status", CellStatus.SUCCEEDED.value)
            status, message = CellStatus.SUCCEEDED, "verified"
        except PipelineCancelledError as e:
            status, message, details = CellStatus.CANCELLED, e.user_message, {}
        except EmulationSetupError as e:
            state["emulation"] = EmulationState.FAILED
            status, message, details = CellStatus.EMULATION_FAILED, e.user_message, {}
        except BuildError as e:
            status, message, details = CellStatus.BUILD_FAILED, e.user_message, {}
        except VerificationError as e:
            status, message, details = CellStatus.VERIFICATION_FAILED, e.user_message, {}
        except Exception as e:
            step = state["step"]
            log.exception("cell_crashed", step=step)
            status = STEP_FAILURE_STATUS[step]
            message = f"Unexpected error during {step}"
            details = {"error_type": type(e).__name__, "step": step}

        duration_ms = int((time.monotonic() - start_time) * 1000)
        artifacts: list[Artifact] = state["artifacts"]
        if status == CellStatus.SUCCEEDED:
            log.info("cell_succeeded", artifacts=len(artifacts), duration_ms=duration_ms)
        else:
            log.warning("cell_failed", status=status.value, message=message)

        return CellResult(
            job=job,
            status=status,
            artifacts=artifacts,
            emulation=state["emulation"],
            message=message,
            details=details,
            duration_ms=duration_ms,
        )

    def _execute_cell(self, job: BuildJob, state: dict[str, Any]) -> dict[str, Any]:
        self.cancel.raise_if_cancelled()
        state["step"] = STEP_EMULATION
        state["emulation"] = self.emulation.ensure_emulation_for(job.target_arch, self.cancel)

        state["step"] = STEP_WORKSPACE
        cell_dir = self.run_dir / job.cell_id
        source_dir = self._prepare_workspace(cell_dir)

        state["step"] = STEP_BUILD
        artifacts = self.builder.build(job, source_dir, cell_dir / DIST_DIRNAME, self.cancel)
        state["artifacts"] = artifacts

        state["step"] = STEP_VERIFY
        report = self.verifier.verify(job, artifacts, cell_dir, self.cancel)
        return {"container": report.container_name, "excluded": report.excluded}

    def _prepare_workspace(self, cell_dir: Path) -> Path:
        """Create the cell workspace with a private copy of the source tree."""
        if cell_dir.exists():
            shutil.rmtree(cell_dir)
        cell_dir.mkdir(parents=True)

        source_root = self.config.source_dir.resolve()
        work_root = self.config.work_dir.resolve()

        def ignore(directory: str, names: list[str]) -> set[str]:
            ignored = {n for n in names if n in IGNORED_SOURCE_NAMES}
            ignored.update(n for n in names if (Path(directory) / n).resolve() == work_root)
            return ignored

        destination = cell_dir / SOURCE_DIRNAME
        shutil.copytree(source_root, destination, ignore=ignore, symlinks=True)
        (cell_dir / DIST_DIRNAME).mkdir()
        return destination

    # -------------------------------------------------------------------------
    # Release
    # -------------------------------------------------------------------------

    def _publish(self, artifact_set: ArtifactSet) -> tuple[PublishResult | None, str | None]:
        credential = self.config.registry.credential.acquire(self.secrets_dir)
        with span("pipeline.publish", attributes={"wheelhouse.artifact_set": artifact_set.name}):
            try:
                return self.publisher.publish(artifact_set, credential), None
            except (PublishError, SecretResolutionError) as e:
                self._log.error("publish_failed", error=e.user_message)
                return None, e.user_message
            except PipelineCancelledError as e:
                return None, e.user_message

    def _remove_containers(self) -> None:
        """Ask the container engine to remove this run's verification containers."""
        engine = self.config.verification.container_engine
        listing = self._runner.run(
            [engine, "ps", "-aq", "--filter", f"name={CONTAINER_NAME_PREFIX}-{self.run_id}-"],
        )
        container_ids = listing.stdout.split()
        if not listing.ok or not container_ids:
            return
        result = self._runner.run([engine, "rm", "-f", *container_ids])
        if result.ok:
            self._log.info("containers_removed", count=len(container_ids))
        else:
            self._log.warning("container_removal_failed", details=result.tail())

    def _determine_status(
        self,
        cells: list[CellResult],
        publish_error: str | None,
        error: str | None,
    ) -> PipelineStatus:
        """Determine overall run status.

        Cancelled beats failed; any failed cell, a collection failure or a
        publish failure fails the run. A closed gate on its own does not.
        """
        if self.cancel.cancelled:
            return PipelineStatus.CANCELLED
        if error or publish_error or any(c.failed for c in cells):
            return PipelineStatus.FAILED
        return PipelineStatus.SUCCEEDED


def run_pipeline(
    config: PipelineConfig,
    event: ReleaseEvent | None = None,
    **kwargs: Any,
) -> PipelineResult:
    """Run a pipeline for an event (default: derived from GITHUB_REF).

    Args:
        config: Pipeline configuration.
        event: Triggering event.
        **kwargs: Passed to PipelineRunner.

    Example:
        >>> result = run_pipeline(PipelineConfig.from_yaml("wheelhouse.yaml"))
        >>> result.passed
        True
    """
    runner = PipelineRunner(config, **kwargs)
    return runner.run(event or ReleaseEvent.from_environment())
