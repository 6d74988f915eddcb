"""Unit tests for wheelhouse_core.models."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from pydantic import ValidationError

from wheelhouse_core.errors import ArtifactConflictError
from wheelhouse_core.models import (
    Artifact,
    ArtifactSet,
    BuildJob,
    CellResult,
    CellStatus,
    PipelineResult,
    PipelineStatus,
    PlatformDescriptor,
    PublishOutcome,
    PublishResult,
    ReleaseEvent,
    UploadRecord,
    hash_file,
    parse_wheel_filename,
)


def _write_wheel(directory: Path, name: str, content: bytes = b"wheel") -> Path:
    path = directory / name
    path.write_bytes(content)
    return path


class TestBuildJob:
    """Tests for BuildJob identity."""

    def test_cell_id_and_identity(self, make_job: Callable[..., BuildJob]) -> None:
        """cell_id combines runtime version and target."""
        job = make_job("3.10", "aarch64")
        assert job.cell_id == "py3.10-aarch64-unknown-linux-musl"
        assert job.identity == ("3.10", "aarch64-unknown-linux-musl")

    def test_interpreter_tag(self, make_job: Callable[..., BuildJob]) -> None:
        """Interpreter tag drops the dot."""
        assert make_job("3.9").interpreter_tag == "cp39"
        assert make_job("3.10").interpreter_tag == "cp310"

    def test_jobs_are_hashable_and_frozen(self, make_job: Callable[..., BuildJob]) -> None:
        """Jobs can be used as set members and cannot be mutated."""
        job = make_job()
        assert len({job, make_job()}) == 1
        with pytest.raises(ValidationError):
            job.runtime_version = "3.11"  # type: ignore[misc]


class TestPlatformDescriptor:
    """Tests for PlatformDescriptor validation."""

    def test_valid(self) -> None:
        """Target triple and arch are accepted."""
        platform = PlatformDescriptor(target="aarch64-unknown-linux-musl", arch="aarch64")
        assert platform.arch == "aarch64"

    def test_rejects_spaces(self) -> None:
        """Targets with whitespace are rejected."""
        with pytest.raises(ValidationError):
            PlatformDescriptor(target="aarch64 linux", arch="aarch64")

    def test_rejects_extra_fields(self) -> None:
        """Unknown keys are rejected."""
        with pytest.raises(ValidationError):
            PlatformDescriptor(target="x86_64-unknown-linux-musl", arch="x86_64", os="linux")


class TestWheelFilename:
    """Tests for wheel file name parsing."""

    def test_parse(self) -> None:
        """All five components are extracted."""
        assert parse_wheel_filename("orjson-3.8.0-cp310-cp310-musllinux_1_1_aarch64.whl") == (
            "orjson",
            "3.8.0",
            "cp310",
            "cp310",
            "musllinux_1_1_aarch64",
        )

    def test_parse_with_build_tag(self) -> None:
        """An optional build tag is skipped."""
        parsed = parse_wheel_filename("demo-1.0-1-py3-none-any.whl")
        assert parsed == ("demo", "1.0", "py3", "none", "any")

    def test_parse_rejects_non_wheel(self) -> None:
        """Non-wheel names raise ValueError."""
        with pytest.raises(ValueError, match="Not a wheel"):
            parse_wheel_filename("demo-1.0.tar.gz")


class TestArtifact:
    """Tests for Artifact metadata and job matching."""

    def test_from_wheel(self, tmp_path: Path, make_job: Callable[..., BuildJob]) -> None:
        """Metadata comes from the file name and content."""
        job = make_job("3.10", "aarch64")
        path = _write_wheel(tmp_path, "demo-1.0.0-cp310-cp310-musllinux_1_1_aarch64.whl")

        artifact = Artifact.from_wheel(path, job)

        assert artifact.filename == path.name
        assert artifact.sha256 == hash_file(path)
        assert artifact.size_bytes == 5
        assert artifact.platform_tag == "musllinux_1_1_aarch64"
        assert artifact.runtime_version == "3.10"
        assert artifact.matches(job)

    def test_wrong_interpreter_does_not_match(
        self, tmp_path: Path, make_job: Callable[..., BuildJob]
    ) -> None:
        """A cp39 wheel does not belong to a 3.10 job."""
        job = make_job("3.10", "x86_64")
        path = _write_wheel(tmp_path, "demo-1.0.0-cp39-cp39-musllinux_1_1_x86_64.whl")
        assert not Artifact.from_wheel(path, job).matches(job)

    def test_wrong_arch_does_not_match(
        self, tmp_path: Path, make_job: Callable[..., BuildJob]
    ) -> None:
        """An x86_64 wheel does not belong to an aarch64 job."""
        job = make_job("3.10", "aarch64")
        path = _write_wheel(tmp_path, "demo-1.0.0-cp310-cp310-musllinux_1_1_x86_64.whl")
        assert not Artifact.from_wheel(path, job).matches(job)

    def test_abi3_matches_newer_interpreter(
        self, tmp_path: Path, make_job: Callable[..., BuildJob]
    ) -> None:
        """An abi3 wheel built for cp37 serves a 3.10 job."""
        job = make_job("3.10", "x86_64")
        path = _write_wheel(tmp_path, "demo-1.0.0-cp37-abi3-musllinux_1_1_x86_64.whl")
        assert Artifact.from_wheel(path, job).matches(job)

    def test_abi3_does_not_match_older_interpreter(
        self, tmp_path: Path, make_job: Callable[..., BuildJob]
    ) -> None:
        """An abi3 wheel for cp311 cannot serve a 3.10 job."""
        job = make_job("3.10", "x86_64")
        path = _write_wheel(tmp_path, "demo-1.0.0-cp311-abi3-musllinux_1_1_x86_64.whl")
        assert not Artifact.from_wheel(path, job).matches(job)

    def test_pure_python_matches(self, tmp_path: Path, make_job: Callable[..., BuildJob]) -> None:
        """py3-none-any wheels match any job."""
        job = make_job("3.9", "aarch64")
        path = _write_wheel(tmp_path, "demo-1.0.0-py3-none-any.whl")
        assert Artifact.from_wheel(path, job).matches(job)


class TestArtifactSet:
    """Tests for the append-only artifact set."""

    def _artifact(self, tmp_path: Path, job: BuildJob, content: bytes) -> Artifact:
        directory = tmp_path / content.decode()
        directory.mkdir()
        path = _write_wheel(directory, "demo-1.0.0-cp310-cp310-musllinux_1_1_x86_64.whl", content)
        return Artifact.from_wheel(path, job)

    def test_add_new(self, tmp_path: Path, make_job: Callable[..., BuildJob]) -> None:
        """New artifacts are added."""
        artifact_set = ArtifactSet(name="wheels", directory=tmp_path)
        assert artifact_set.add(self._artifact(tmp_path, make_job(), b"a")) is True
        assert len(artifact_set) == 1
        assert artifact_set.filenames == ["demo-1.0.0-cp310-cp310-musllinux_1_1_x86_64.whl"]

    def test_add_identical_is_noop(self, tmp_path: Path, make_job: Callable[..., BuildJob]) -> None:
        """Adding the same content twice keeps one entry."""
        artifact_set = ArtifactSet(name="wheels", directory=tmp_path)
        artifact = self._artifact(tmp_path, make_job(), b"a")
        artifact_set.add(artifact)
        assert artifact_set.add(artifact) is False
        assert len(artifact_set) == 1

    def test_add_conflict(self, tmp_path: Path, make_job: Callable[..., BuildJob]) -> None:
        """Different content under the same name is a conflict."""
        artifact_set = ArtifactSet(name="wheels", directory=tmp_path)
        artifact_set.add(self._artifact(tmp_path, make_job(), b"a"))
        with pytest.raises(ArtifactConflictError):
            artifact_set.add(self._artifact(tmp_path, make_job(), b"b"))

    def test_add_abi3_from_other_runtime_keeps_first(
        self, tmp_path: Path, make_job: Callable[..., BuildJob]
    ) -> None:
        """An abi3 wheel rebuilt by another runtime's cell is skipped, not a conflict."""
        name = "demo-1.0.0-cp39-abi3-musllinux_1_1_x86_64.whl"
        artifact_set = ArtifactSet(name="wheels", directory=tmp_path)
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        first = Artifact.from_wheel(_write_wheel(tmp_path / "a", name, b"a"), make_job("3.9"))
        second = Artifact.from_wheel(_write_wheel(tmp_path / "b", name, b"b"), make_job("3.10"))
        assert artifact_set.add(first) is True
        assert artifact_set.add(second) is False
        assert artifact_set.artifacts[name].sha256 == first.sha256


class TestReleaseEvent:
    """Tests for ReleaseEvent derivation."""

    def test_tag_ref(self) -> None:
        """refs/tags/* is a tag push."""
        event = ReleaseEvent.from_ref("refs/tags/3.8.0")
        assert event.is_tag is True
        assert event.tag_name == "3.8.0"

    def test_branch_ref(self) -> None:
        """Branch pushes are not tags."""
        event = ReleaseEvent.from_ref("refs/heads/main")
        assert event.is_tag is False
        assert event.tag_name is None

    def test_empty_tag_namespace_is_not_a_tag(self) -> None:
        """The bare prefix is not a tag."""
        assert ReleaseEvent.from_ref("refs/tags/").is_tag is False

    def test_no_ref(self) -> None:
        """Missing ref is not a tag."""
        event = ReleaseEvent.from_ref(None)
        assert event.is_tag is False
        assert event.trigger_ref == ""

    def test_tag_name_without_ref(self) -> None:
        """A tag name alone implies refs/tags/<name>."""
        event = ReleaseEvent.from_ref(None, tag_name="1.2.0")
        assert event.trigger_ref == "refs/tags/1.2.0"
        assert event.is_tag is True

    def test_tag_name_ignored_for_branches(self) -> None:
        """A tag name does not turn a branch push into a tag push."""
        event = ReleaseEvent.from_ref("refs/heads/main", tag_name="1.2.0")
        assert event.is_tag is False
        assert event.tag_name is None

    def test_from_environment(self) -> None:
        """GITHUB_REF drives the event."""
        event = ReleaseEvent.from_environment({"GITHUB_REF": "refs/tags/v2"})
        assert event.is_tag is True
        assert event.tag_name == "v2"


class TestResults:
    """Tests for outcome models."""

    def test_cell_result_flags(self, make_job: Callable[..., BuildJob]) -> None:
        """succeeded/failed follow status."""
        ok = CellResult(job=make_job(), status=CellStatus.SUCCEEDED)
        bad = CellResult(job=make_job(), status=CellStatus.BUILD_FAILED)
        assert ok.succeeded and not ok.failed
        assert bad.failed and not bad.succeeded

    def test_publish_result_counts(self) -> None:
        """Counts split by outcome."""
        result = PublishResult(
            artifact_set="wheels",
            records=[
                UploadRecord(filename="a.whl", outcome=PublishOutcome.UPLOADED),
                UploadRecord(filename="b.whl", outcome=PublishOutcome.SKIPPED_EXISTING),
                UploadRecord(filename="c.whl", outcome=PublishOutcome.UPLOADED, attempts=2),
            ],
        )
        assert result.uploaded_count == 2
        assert result.skipped_count == 1

    def test_pipeline_result_counts(self, make_job: Callable[..., BuildJob]) -> None:
        """Counts and passed flag follow cells and status."""
        result = PipelineResult(
            run_id="r1",
            event=ReleaseEvent.from_ref("refs/heads/main"),
            cells=[
                CellResult(job=make_job("3.9"), status=CellStatus.SUCCEEDED),
                CellResult(job=make_job("3.10"), status=CellStatus.VERIFICATION_FAILED),
            ],
            status=PipelineStatus.FAILED,
        )
        assert result.succeeded_count == 1
        assert result.failed_count == 1
        assert result.passed is False
