"""Unit tests for indexed fail-fast batches and best-effort cleanup."""

from __future__ import annotations

from io import StringIO
from pathlib import Path
import threading
import time

import pytest

from pagevoice.errors import StorageError
from pagevoice.io.storage import FilesystemArtifactStore
from pagevoice.models.datatypes import ArtifactRef
from pagevoice.pipeline.batch import BatchFailure, run_indexed
from pagevoice.pipeline.cleanup import CleanupReport, delete_artifacts
from pagevoice.telemetry.logger import RunLogger


def test_run_indexed_returns_results_in_input_order() -> None:
    """Results should follow input order even when later jobs finish first."""

    finished: list[int] = []
    lock = threading.Lock()

    def worker(index: int, item: str) -> str:
        """Sleep inversely to position, then echo the item."""

        time.sleep((5 - index) * 0.01)
        with lock:
            finished.append(index)
        return item.upper()

    results = run_indexed(["a", "b", "c", "d", "e"], worker, max_workers=5)

    assert results == ["A", "B", "C", "D", "E"]
    assert finished != sorted(finished)


def test_run_indexed_handles_empty_batches() -> None:
    """An empty batch should not start a pool and return no results."""

    assert run_indexed([], lambda index, item: item) == []


def test_run_indexed_reports_failure_index_and_completed_results() -> None:
    """A failing job should abort the batch and hand back finished results."""

    def worker(index: int, item: int) -> int:
        """Fail on the third item."""

        if index == 2:
            raise ValueError(f"bad item {item}")
        return item * 10

    with pytest.raises(BatchFailure) as exc_info:
        run_indexed([1, 2, 3, 4, 5], worker, max_workers=1)

    failure = exc_info.value
    assert failure.index == 2
    assert isinstance(failure.error, ValueError)
    assert failure.completed[0] == 10
    assert failure.completed[1] == 20
    assert 2 not in failure.completed


def test_run_indexed_cancels_pending_jobs_after_failure() -> None:
    """Jobs not yet started when a job fails should never run."""

    started: list[int] = []

    def worker(index: int, item: int) -> int:
        """Record starts, fail on the first item, and run slowly otherwise."""

        started.append(index)
        if index == 0:
            raise RuntimeError("boom")
        time.sleep(0.05)
        return item

    with pytest.raises(BatchFailure):
        run_indexed(list(range(20)), worker, max_workers=1)

    assert started[0] == 0
    assert len(started) <= 2


def test_delete_artifacts_reports_deleted_missing_and_failed(tmp_path: Path) -> None:
    """Cleanup should classify each reference once and never raise."""

    store = FilesystemArtifactStore(tmp_path)
    present = store.put("book-audio", "reader-1", "book-1", "chunk-000.wav", b"data")
    missing = ArtifactRef(bucket="book-audio", path="reader-1/book-1/gone.wav")

    class _BrokenDeleteStore:
        """Store double failing deletes for one reference."""

        def delete(self, ref: ArtifactRef) -> bool:
            """Fail for the broken reference, delegate otherwise."""

            if ref.path.endswith("broken.wav"):
                raise StorageError("permission denied")
            return store.delete(ref)

    broken = ArtifactRef(bucket="book-audio", path="reader-1/book-1/broken.wav")
    sink = StringIO()

    report = delete_artifacts(
        _BrokenDeleteStore(),  # type: ignore[arg-type]
        [present, present, missing, broken],
        run_logger=RunLogger(sink=sink),
    )

    assert report.deleted == [present]
    assert report.missing == [missing]
    assert report.failed == [broken]
    assert report.ok is False
    assert (
        "[phase] level=WARNING stage=cleanup event=cleanup_failed "
        "error_type=StorageError ref=book-audio/reader-1/book-1/broken.wav"
    ) in sink.getvalue()


def test_cleanup_report_merge_accumulates() -> None:
    """Merging reports should concatenate each outcome list."""

    first_ref = ArtifactRef(bucket="b", path="o/k/1")
    second_ref = ArtifactRef(bucket="b", path="o/k/2")
    report = CleanupReport(deleted=[first_ref]).merge(CleanupReport(missing=[second_ref]))

    assert report.deleted == [first_ref]
    assert report.missing == [second_ref]
    assert report.ok is True
