"""Integration tests for create, add-pages, and change-voice book assembly."""

from __future__ import annotations

from collections.abc import Callable
from io import StringIO
from typing import TYPE_CHECKING

import pytest

from pagevoice.audio.formats import measure_duration
from pagevoice.errors import (
    ExtractionError,
    NotFoundError,
    StorageError,
    SynthesisError,
    ValidationError,
)
from pagevoice.ledger import current_version, stale_voice_ids
from pagevoice.models.datatypes import BOOK_STATUS_COMPLETED, PageImage
from pagevoice.telemetry.logger import RunLogger

if TYPE_CHECKING:
    from tests.conftest import Workspace


def test_create_book_assembles_pages_in_order(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """Three pages narrated by V1 become one 30-second rendering in page order."""

    workspace.add_voice("V1", is_default=True)
    workspace.extractor.delay_seconds = 0.02

    book = workspace.orchestrator.create_book("reader-1", pages("p1", "p2", "p3"), "V1")

    assert book.status == BOOK_STATUS_COMPLETED
    assert book.pages == ("p1", "p2", "p3")
    assert book.title == "Book book-1"
    assert book.active_voice_id == "V1"
    assert book.progress == {}
    version = current_version(book)
    assert version is not None
    assert version.total_duration == pytest.approx(30.0)
    assert version.page_count == 3
    assert workspace.extractor.completion_order != [0, 1, 2]
    assert sorted(workspace.synthesizer.calls) == [
        ("p1", "clone-v1"),
        ("p2", "clone-v1"),
        ("p3", "clone-v1"),
    ]
    assert workspace.books.get("reader-1", book.id) == book
    assert [path.name for path in workspace.artifact_files()] == [version.audio_ref.name]
    assert measure_duration(workspace.store.get(version.audio_ref)) == pytest.approx(30.0)


def test_create_book_uses_given_title(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """An explicit title skips title detection."""

    workspace.add_voice("V1")

    book = workspace.orchestrator.create_book("reader-1", pages("p1"), "V1", "  My Diary ")

    assert book.title == "My Diary"


def test_add_pages_extends_active_rendering(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """Adding two pages yields a 50-second rendering and keeps progress."""

    workspace.add_voice("V1")
    book = workspace.orchestrator.create_book("reader-1", pages("p1", "p2", "p3"), "V1")
    original_ref = book.voice_versions[0].audio_ref
    workspace.library.record_progress("reader-1", book.id, 12.0)

    extended = workspace.orchestrator.add_pages("reader-1", book.id, pages("p4", "p5"))

    assert extended.pages == ("p1", "p2", "p3", "p4", "p5")
    version = current_version(extended)
    assert version is not None
    assert version.total_duration == pytest.approx(50.0)
    assert version.page_count == 5
    assert version.audio_ref != original_ref
    assert extended.progress == {"V1": 12}
    assert not workspace.store.exists(original_ref)
    assert [path.name for path in workspace.artifact_files()] == [version.audio_ref.name]
    assert measure_duration(workspace.store.get(version.audio_ref)) == pytest.approx(50.0)


def test_add_pages_leaves_other_voices_stale(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """Only the active rendering grows; other renderings are reported stale."""

    workspace.add_voice("V1")
    workspace.add_voice("V2")
    book = workspace.orchestrator.create_book("reader-1", pages("p1", "p2"), "V1")
    workspace.orchestrator.change_voice("reader-1", book.id, "V2")
    workspace.orchestrator.change_voice("reader-1", book.id, "V1")

    extended = workspace.orchestrator.add_pages("reader-1", book.id, pages("p3"))

    assert stale_voice_ids(extended) == ("V2",)
    v2 = extended.version_for("V2")
    assert v2 is not None and v2.total_duration == pytest.approx(20.0)
    assert workspace.store.exists(v2.audio_ref)


def test_add_pages_rejects_voice_other_than_active(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """Pages are always narrated with the active voice."""

    workspace.add_voice("V1")
    workspace.add_voice("V2")
    book = workspace.orchestrator.create_book("reader-1", pages("p1"), "V1")

    with pytest.raises(ValidationError, match="active voice") as exc_info:
        workspace.orchestrator.add_pages("reader-1", book.id, pages("p2"), "V2")

    assert exc_info.value.stage == "add-pages"
    assert workspace.books.get("reader-1", book.id) == book


def test_change_voice_seeds_progress_and_switches_back_without_synthesis(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """Switching to V2 after 30s records {V1: 30, V2: 30}; switching back is free."""

    workspace.add_voice("V1")
    workspace.add_voice("V2")
    book = workspace.orchestrator.create_book("reader-1", pages("p1", "p2", "p3", "p4"), "V1")
    workspace.library.record_progress("reader-1", book.id, 30.0)

    switched = workspace.orchestrator.change_voice("reader-1", book.id, "V2")

    assert switched.active_voice_id == "V2"
    assert switched.progress == {"V1": 30, "V2": 30}
    assert [version.voice_id for version in switched.voice_versions] == ["V1", "V2"]
    v2 = switched.version_for("V2")
    assert v2 is not None and v2.total_duration == pytest.approx(40.0)
    calls_after_render = len(workspace.synthesizer.calls)
    assert calls_after_render == 8

    workspace.library.record_progress("reader-1", book.id, 35.0)
    back = workspace.orchestrator.change_voice("reader-1", book.id, "V1")

    assert back.active_voice_id == "V1"
    assert back.progress == {"V1": 30, "V2": 35}
    assert len(workspace.synthesizer.calls) == calls_after_render
    assert workspace.orchestrator.change_voice("reader-1", book.id, "V1") == back


def test_change_voice_requires_known_voice(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """A voice without a rendering must exist for the owner."""

    workspace.add_voice("V1")
    book = workspace.orchestrator.create_book("reader-1", pages("p1"), "V1")

    with pytest.raises(NotFoundError, match="Voice `V9` not found"):
        workspace.orchestrator.change_voice("reader-1", book.id, "V9")


def test_create_book_fails_fast_and_leaves_nothing_behind(
    workspace_factory: Callable[..., Workspace], pages: Callable[..., list[PageImage]]
) -> None:
    """A failing third chunk of five aborts creation with no record and no artifacts."""

    workspace = workspace_factory(fail_marker="p3")
    workspace.add_voice("V1")
    sink = StringIO()
    workspace.orchestrator._run_logger = RunLogger(sink=sink)

    with pytest.raises(SynthesisError, match="chunk 2") as exc_info:
        workspace.orchestrator.create_book("reader-1", pages("p1", "p2", "p3", "p4", "p5"), "V1")

    assert exc_info.value.item_index == 2
    assert workspace.books.list_for_owner("reader-1") == []
    assert workspace.artifact_files() == []
    log = sink.getvalue()
    assert "[phase] level=INFO stage=upload event=complete book=book-1 items=5" in log
    assert "stage=synthesize event=failure book=book-1 error_type=SynthesisError item=2" in log
    assert "stage=persist" not in log


def test_add_pages_failure_leaves_book_and_rendering_untouched(
    workspace_factory: Callable[..., Workspace], pages: Callable[..., list[PageImage]]
) -> None:
    """A failed page addition keeps the stored book and its audio unchanged."""

    workspace = workspace_factory(fail_marker="bad")
    workspace.add_voice("V1")
    book = workspace.orchestrator.create_book("reader-1", pages("p1", "p2"), "V1")
    before = workspace.artifact_files()

    with pytest.raises(SynthesisError):
        workspace.orchestrator.add_pages("reader-1", book.id, pages("p3", "bad page"))

    assert workspace.books.get("reader-1", book.id) == book
    assert workspace.artifact_files() == before


def test_create_book_extraction_failure_leaves_nothing_behind(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """A page whose text cannot be read aborts creation before any synthesis."""

    workspace.add_voice("V1")
    workspace.extractor.fail_marker = "unreadable"
    sink = StringIO()
    workspace.orchestrator._run_logger = RunLogger(sink=sink)

    with pytest.raises(ExtractionError, match="page 2") as exc_info:
        workspace.orchestrator.create_book("reader-1", pages("p1", "unreadable", "p3"), "V1")

    assert exc_info.value.item_index == 1
    assert exc_info.value.stage == "extract"
    assert workspace.books.list_for_owner("reader-1") == []
    assert workspace.artifact_files() == []
    assert workspace.synthesizer.calls == []
    assert "stage=extract event=failure book=book-1 error_type=ExtractionError item=1" in sink.getvalue()


def test_add_pages_extraction_failure_leaves_book_untouched(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """An unreadable added page keeps the stored book, its audio, and its progress."""

    workspace.add_voice("V1")
    book = workspace.orchestrator.create_book("reader-1", pages("p1", "p2"), "V1")
    book = workspace.library.record_progress("reader-1", book.id, 12.0)
    before = workspace.artifact_files()
    calls_before = len(workspace.synthesizer.calls)
    workspace.extractor.fail_marker = "smudged"

    with pytest.raises(ExtractionError) as exc_info:
        workspace.orchestrator.add_pages("reader-1", book.id, pages("p3", "smudged page"))

    assert exc_info.value.item_index == 3
    assert workspace.books.get("reader-1", book.id) == book
    assert workspace.artifact_files() == before
    assert len(workspace.synthesizer.calls) == calls_before


def test_progress_near_bound_of_fractional_rendering_survives_voice_change(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """A position just under duration plus tolerance is stored without breaking the record."""

    workspace.add_voice("V1")
    workspace.add_voice("V2")
    workspace.synthesizer.seconds_per_chunk = 9.6
    book = workspace.orchestrator.create_book("reader-1", pages("p1"), "V1")

    stored = workspace.library.record_progress("reader-1", book.id, 14.6)
    switched = workspace.orchestrator.change_voice("reader-1", book.id, "V2")

    assert stored.progress == {"V1": 14}
    assert switched.active_voice_id == "V2"
    assert switched.progress == {"V1": 14, "V2": 14}
    assert workspace.books.get("reader-1", book.id) == switched


def test_upload_failure_names_page_and_cleans_up(
    workspace: Workspace, pages: Callable[..., list[PageImage]], monkeypatch: pytest.MonkeyPatch
) -> None:
    """A failed image upload is reported against its page and undone."""

    workspace.add_voice("V1")
    original_put = workspace.store.put

    def _flaky_put(bucket: str, owner: str, book_id: str, name: str, data: bytes):  # type: ignore[no-untyped-def]
        """Fail the upload of the second page."""

        if name.startswith("page-001"):
            raise StorageError("disk full")
        return original_put(bucket, owner, book_id, name, data)

    monkeypatch.setattr(workspace.store, "put", _flaky_put)

    with pytest.raises(StorageError, match="Failed to upload page 2") as exc_info:
        workspace.orchestrator.create_book("reader-1", pages("p1", "p2", "p3"), "V1")

    assert exc_info.value.item_index == 1
    assert workspace.artifact_files() == []
    assert workspace.synthesizer.calls == []


@pytest.mark.parametrize(
    ("images", "message"),
    [
        ([], "At least one page image"),
        ([PageImage(name=f"p{index}.jpg", data=b"x") for index in range(11)], "At most 10"),
        ([PageImage(name="blank.jpg", data=b"")], "is empty"),
    ],
)
def test_create_book_validates_images(
    workspace: Workspace, images: list[PageImage], message: str
) -> None:
    """Image batches must hold 1 to 10 non-empty images."""

    workspace.add_voice("V1")

    with pytest.raises(ValidationError, match=message):
        workspace.orchestrator.create_book("reader-1", images, "V1")


def test_create_book_rejects_foreign_voice(
    workspace: Workspace, pages: Callable[..., list[PageImage]]
) -> None:
    """Voices belong to one owner and cannot narrate another owner's book."""

    workspace.add_voice("V1", owner="reader-2")

    with pytest.raises(NotFoundError) as exc_info:
        workspace.orchestrator.create_book("reader-1", pages("p1"), "V1")

    assert "voices list" in (exc_info.value.hint or "")
