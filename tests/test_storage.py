"""Tests for photo storage and job outcome recording."""

import pytest

from trivia_ingest.core.enums import ResultStatus
from trivia_ingest.ingestion.outcomes import JobOutcomeRecorder
from trivia_ingest.ingestion.storage import (
    LocalImageStorage,
    extension_for,
    get_default_storage,
    image_path,
)


class TestLocalImageStorage:
    """Tests for LocalImageStorage."""

    def test_save_and_delete(self, storage: LocalImageStorage) -> None:
        path = image_path("pub-a", "original", 1)
        stored = storage.save_image(b"jpeg", path)

        assert stored.size_bytes == 4
        assert (storage.base_path / path).read_bytes() == b"jpeg"
        assert storage.delete_image(path) is True
        assert storage.delete_image(path) is False
        assert not storage.exists(path)

    def test_rejects_paths_outside_root(self, storage: LocalImageStorage) -> None:
        with pytest.raises(ValueError):
            storage.save_image(b"x", "../outside.jpg")

    def test_default_storage_from_env(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("PHOTO_STORAGE_PATH", str(tmp_path / "photos"))
        assert get_default_storage().base_path == (tmp_path / "photos").resolve()


class TestImagePaths:
    """Tests for image path helpers."""

    def test_image_path(self) -> None:
        assert image_path("pub-a", "thumb", 2, "png") == "google_place_images/pub-a/thumb_2.png"

    def test_extension_for(self) -> None:
        assert extension_for("image/png") == "png"
        assert extension_for("image/jpeg; charset=binary") == "jpg"
        assert extension_for(None) == "jpg"


class TestJobOutcomeRecorder:
    """Tests for outcome persistence."""

    def test_success_and_error(self, session) -> None:
        recorder = JobOutcomeRecorder(session)
        recorder.record_success("job-1", "process_venue_detail", venue_id="v1")
        row = recorder.record_error("job-1", "process_venue_detail", ValueError("bad input"))

        assert row.result_status == ResultStatus.ERROR.value
        assert row.error == "ValueError: bad input"
        assert recorder.latest("job-1").id == row.id

    def test_metadata_round_trip(self, session) -> None:
        recorder = JobOutcomeRecorder(session)
        row = recorder.record_success("job-2", "index_source", metadata={"venues": 3})
        assert row.metadata_dict == {"venues": 3}

    def test_without_job_id(self, session) -> None:
        assert JobOutcomeRecorder(session).record_success(None, "index_source") is None
        assert JobOutcomeRecorder(session).latest("missing") is None
