"""Artifact aggregation across matrix cells.

Collection is partial-tolerant: only verified cells contribute, and failed
cells never block it. Whether the result may be published is decided
separately, and strictly, by the release gate.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from pathlib import Path

import structlog

from wheelhouse_core.errors import ArtifactConflictError
from wheelhouse_core.models import Artifact, ArtifactSet, CellResult, CellStatus
from wheelhouse_core.schemas.pipeline_config import CollectConfig

logger = structlog.get_logger(__name__)

UNVERIFIED_SUFFIX = "-unverified"


class ArtifactCollector:
    """Copies verified artifacts into one named artifact set.

    Attributes:
        config: Collection options.
        root: Directory that holds artifact sets (one subdirectory per set).

    Example:
        >>> collector = ArtifactCollector(CollectConfig(name="wheels"), work_dir / "artifacts")
        >>> artifact_set = collector.collect(cell_results)
        >>> artifact_set.filenames
        ['orjson-3.8.0-cp310-cp310-musllinux_1_1_aarch64.whl', ...]
    """

    def __init__(self, config: CollectConfig, root: Path) -> None:
        self.config = config
        self.root = root
        self.unverified: ArtifactSet | None = None

    def collect(self, results: Iterable[CellResult]) -> ArtifactSet:
        """Aggregate artifacts of every succeeded cell.

        With include_unverified, artifacts of cells that failed verification
        are copied into a separate inspection set (``self.unverified``) that
        is never handed to the publisher.

        Two cells producing different files under a name that should be
        unique is a conflict: the later file is refused, its name is listed
        in ``conflicts`` and the remaining artifacts are still collected. A
        set with conflicts must not be published.
        """
        results = list(results)
        artifact_set = ArtifactSet(name=self.config.name, directory=self.root / self.config.name)
        artifact_set.directory.mkdir(parents=True, exist_ok=True)

        skipped: list[str] = []
        for result in results:
            if not result.succeeded:
                skipped.append(result.job.cell_id)
                continue
            for artifact in result.artifacts:
                self._add(artifact_set, artifact)

        if self.config.include_unverified:
            self.unverified = self._collect_unverified(results)

        logger.info(
            "artifacts_collected",
            artifact_set=artifact_set.name,
            count=len(artifact_set),
            skipped_cells=skipped,
            conflicts=artifact_set.conflicts,
        )
        return artifact_set

    def _collect_unverified(self, results: list[CellResult]) -> ArtifactSet:
        name = f"{self.config.name}{UNVERIFIED_SUFFIX}"
        inspection = ArtifactSet(name=name, directory=self.root / name)
        inspection.directory.mkdir(parents=True, exist_ok=True)
        for result in results:
            if result.status != CellStatus.VERIFICATION_FAILED:
                continue
            for artifact in result.artifacts:
                self._add(inspection, artifact)
        logger.info("unverified_artifacts_collected", artifact_set=name, count=len(inspection))
        return inspection

    @staticmethod
    def _add(artifact_set: ArtifactSet, artifact: Artifact) -> None:
        destination = artifact_set.directory / artifact.filename
        copied = artifact.model_copy(update={"path": destination})
        existing = artifact_set.artifacts.get(artifact.filename)
        try:
            added = artifact_set.add(copied)
        except ArtifactConflictError as e:
            if artifact.filename not in artifact_set.conflicts:
                artifact_set.conflicts.append(artifact.filename)
            logger.error(
                "artifact_conflict",
                artifact_set=artifact_set.name,
                filename=artifact.filename,
                runtime_version=artifact.runtime_version,
                details=e.internal_details,
            )
            return
        if added:
            shutil.copy2(artifact.path, destination)
        elif existing is not None and existing.sha256 != artifact.sha256:
            logger.info(
                "artifact_duplicate_skipped",
                artifact_set=artifact_set.name,
                filename=artifact.filename,
                kept_runtime_version=existing.runtime_version,
                skipped_runtime_version=artifact.runtime_version,
            )
