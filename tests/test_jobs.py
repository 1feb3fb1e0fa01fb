"""Unit tests for the processing-record store and background task runner.

WHY: The job store is the central state manager for the HTTP API and the
orchestrator's status sink. Race conditions, missing cleanup, stale
errors after a re-run, or a corrupted records file would cause broken
polling or leaked files. These tests verify every public method.

HOW: Tests are organized by class, one per JobStore method or concern:
  - TestJobCreation: create_job basics, defaults and storage directories
  - TestJobRetrieval: get_job and list_jobs
  - TestJobUpdate: status transitions, error clearing, terminal states
  - TestJobDeletion: delete and directory cleanup
  - TestTTLCleanup: expiry logic and boundary conditions
  - TestBackgroundRunner: success and failure scenarios
  - TestPersistence: records file round trip and restart recovery
  - TestThreadSafety: concurrent access doesn't corrupt state

RULES:
- Each test creates its own JobStore rooted in tmp_path
- Time-dependent tests use monkeypatch to control time.time()
"""

from __future__ import annotations

import json
import shutil
import threading
import time
from pathlib import Path

import pytest

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.ir import JobStatus, RenderMode, SubtitleFormat
from caption_pipeline.server.jobs import (
    DEFAULT_TTL_SECONDS,
    Job,
    JobStore,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_store(tmp_path: Path, **kwargs) -> JobStore:
    """Create a JobStore whose record directories live under tmp_path."""
    kwargs.setdefault("storage_dir", tmp_path / "storage")
    return JobStore(**kwargs)


# ---------------------------------------------------------------------------
# TestJobCreation
# ---------------------------------------------------------------------------


class TestJobCreation:
    """JobStore.create_job() creates a record in QUEUED state."""

    def test_creates_job_with_queued_status(self, tmp_path):
        job = _make_store(tmp_path).create_job("clip.mp4")
        assert job.status == JobStatus.QUEUED

    def test_assigns_unique_id(self, tmp_path):
        store = _make_store(tmp_path)
        assert store.create_job("a.mp4").id != store.create_job("b.mp4").id

    def test_directory_is_named_by_id(self, tmp_path):
        job = _make_store(tmp_path).create_job("clip.mp4")
        assert job.output_dir == tmp_path / "storage" / job.id
        assert job.output_dir.is_dir()

    def test_temp_directory_without_storage_dir(self):
        store = JobStore()
        job = store.create_job("clip.mp4")
        assert job.output_dir.is_dir()
        assert job.output_dir.name.startswith("captions_job_")
        store.delete_job(job.id)

    def test_stores_request_options(self, tmp_path):
        job = _make_store(tmp_path).create_job(
            "clip.mp4",
            script="Hello. World.",
            subtitle_format="vtt",
            render_mode=RenderMode.TRACK,
            styling={"font_size": 20},
            duration_s=12.5,
            config={"timing": {"gap_s": 0.25}},
        )
        assert job.script == "Hello. World."
        assert job.subtitle_format == SubtitleFormat.VTT
        assert job.render_mode == RenderMode.TRACK
        assert job.styling == {"font_size": 20}
        assert job.duration_s == 12.5
        assert job.config == {"timing": {"gap_s": 0.25}}

    def test_defaults(self, tmp_path):
        job = _make_store(tmp_path).create_job("clip.mp4")
        assert job.subtitle_format == SubtitleFormat.SRT
        assert job.render_mode == RenderMode.BURNED
        assert job.completed_at is None
        assert job.error is None
        assert job.failed_stage is None
        assert job.progress is None
        assert job.degraded is False
        assert job.output_files == []

    def test_sets_timestamps(self, tmp_path):
        before = time.time()
        job = _make_store(tmp_path).create_job("clip.mp4")
        after = time.time()
        assert before <= job.created_at <= after
        assert before <= job.updated_at <= after

    def test_max_jobs_limit(self, tmp_path):
        store = _make_store(tmp_path, max_jobs=2)
        store.create_job("a.mp4")
        store.create_job("b.mp4")
        with pytest.raises(ValueError, match="Maximum number"):
            store.create_job("c.mp4")

    def test_from_config(self, tmp_path):
        config = PipelineConfig(storage_dir=tmp_path / "s", job_ttl_seconds=5, max_jobs=3)
        store = JobStore.from_config(config)
        assert store.max_jobs == 3
        assert store.storage_dir == tmp_path / "s"
        assert store.records_file is None


# ---------------------------------------------------------------------------
# TestJobRetrieval
# ---------------------------------------------------------------------------


class TestJobRetrieval:
    """JobStore.get_job() and list_jobs() retrieve stored records."""

    def test_get_existing_job(self, tmp_path):
        store = _make_store(tmp_path)
        created = store.create_job("clip.mp4")
        assert store.get_job(created.id) is created

    def test_get_missing_job_returns_none(self, tmp_path):
        assert _make_store(tmp_path).get_job("nonexistent-id") is None

    def test_list_jobs_empty_store(self, tmp_path):
        assert _make_store(tmp_path).list_jobs() == []

    def test_list_jobs_ordered_by_creation_time(self, tmp_path):
        store = _make_store(tmp_path)
        j1 = store.create_job("first.mp4")
        j2 = store.create_job("second.mp4")
        assert [j.id for j in store.list_jobs()] == [j1.id, j2.id]


# ---------------------------------------------------------------------------
# TestJobUpdate
# ---------------------------------------------------------------------------


class TestJobUpdate:
    """JobStore.update_job() modifies record fields."""

    def test_update_status(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        updated = store.update_job(job.id, status=JobStatus.TIMING)
        assert updated.status == JobStatus.TIMING

    def test_update_bumps_updated_at(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        old_updated = job.updated_at
        time.sleep(0.01)
        store.update_job(job.id, status=JobStatus.WRITING)
        assert job.updated_at > old_updated

    def test_update_failure_fields(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=JobStatus.FAILED, error="Script text is empty",
                         failed_stage="timing")
        assert job.error == "Script text is empty"
        assert job.failed_stage == "timing"

    def test_requeue_clears_previous_failure(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=JobStatus.FAILED, error="boom", failed_stage="muxing")
        store.update_job(job.id, progress={"stage": "muxing", "percent": 10.0})
        store.update_job(job.id, status=JobStatus.QUEUED)
        assert job.error is None
        assert job.failed_stage is None
        assert job.progress is None
        assert job.completed_at is None

    def test_requeue_drops_previous_outputs(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(
            job.id,
            status=JobStatus.COMPLETED,
            subtitle_path=str(tmp_path / "a.srt"),
            output_video_path=str(tmp_path / "a.mp4"),
            applied_mode="burned",
            degraded=True,
            output_files=["a.srt", "a.mp4"],
        )
        store.update_job(job.id, status=JobStatus.QUEUED)
        assert job.applied_mode is None
        assert job.output_video_path is None
        assert job.degraded is False
        assert job.output_files == []
        assert job.subtitle_path == tmp_path / "a.srt"

    def test_requeue_job_applies_fields(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4", script="Old.")
        store.update_job(job.id, status=JobStatus.FAILED, error="boom", failed_stage="muxing")
        assert store.requeue_job(job.id, script="New.") is job
        assert job.status == JobStatus.QUEUED
        assert job.script == "New."
        assert job.error is None

    def test_requeue_job_refuses_running_record(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4", script="Old.")
        store.update_job(job.id, status=JobStatus.MUXING)
        assert store.requeue_job(job.id, script="New.") is None
        assert job.status == JobStatus.MUXING
        assert job.script == "Old."

    def test_requeue_job_only_once(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=JobStatus.COMPLETED)
        assert store.requeue_job(job.id) is job
        assert store.requeue_job(job.id) is None

    def test_requeue_unknown_job(self, tmp_path):
        assert _make_store(tmp_path).requeue_job("nope") is None

    def test_update_outputs(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(
            job.id,
            subtitle_path=str(tmp_path / "a.srt"),
            output_video_path=str(tmp_path / "a.mp4"),
            applied_mode="track",
            cue_count=4,
            degraded=True,
            output_files=["a.srt", "a.mp4"],
        )
        assert job.subtitle_path == tmp_path / "a.srt"
        assert job.output_video_path == tmp_path / "a.mp4"
        assert job.applied_mode == RenderMode.TRACK
        assert job.cue_count == 4
        assert job.degraded is True
        assert job.output_files == ["a.srt", "a.mp4"]

    def test_update_missing_job_returns_none(self, tmp_path):
        assert _make_store(tmp_path).update_job("nonexistent", status=JobStatus.FAILED) is None

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_terminal_status_sets_completed_at(self, tmp_path, status):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=status)
        assert job.completed_at is not None
        assert job.is_terminal

    def test_non_terminal_status_does_not_set_completed_at(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=JobStatus.MUXING)
        assert job.completed_at is None

    def test_only_non_none_fields_updated(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4", script="Hi.", config={"timing": {}})
        store.update_job(job.id, status=JobStatus.TIMING)
        assert job.script == "Hi."
        assert job.config == {"timing": {}}
        assert job.error is None


# ---------------------------------------------------------------------------
# TestJobDeletion
# ---------------------------------------------------------------------------


class TestJobDeletion:
    """JobStore.delete_job() removes records and their directories."""

    def test_delete_existing_job(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        (job.output_dir / "clip_subtitles.srt").write_text("fake srt")
        assert store.delete_job(job.id) is True
        assert store.get_job(job.id) is None
        assert not job.output_dir.exists()

    def test_delete_missing_job_returns_false(self, tmp_path):
        assert _make_store(tmp_path).delete_job("nonexistent") is False

    def test_delete_handles_already_removed_dir(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        shutil.rmtree(job.output_dir)
        assert store.delete_job(job.id) is True


# ---------------------------------------------------------------------------
# TestTTLCleanup
# ---------------------------------------------------------------------------


class TestTTLCleanup:
    """JobStore.cleanup_expired() removes terminal records past their TTL."""

    def test_cleanup_removes_expired_completed_job(self, tmp_path, monkeypatch):
        store = _make_store(tmp_path, ttl_seconds=60)
        job = store.create_job("clip.mp4")

        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=JobStatus.COMPLETED)

        monkeypatch.setattr(time, "time", lambda: 161.0)
        assert store.cleanup_expired() == 1
        assert store.get_job(job.id) is None
        assert not job.output_dir.exists()

    def test_cleanup_keeps_non_expired_job(self, tmp_path, monkeypatch):
        store = _make_store(tmp_path, ttl_seconds=60)
        job = store.create_job("clip.mp4")

        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=JobStatus.FAILED, error="err")

        monkeypatch.setattr(time, "time", lambda: 159.0)
        assert store.cleanup_expired() == 0
        assert store.get_job(job.id) is not None

    def test_cleanup_ignores_in_progress_jobs(self, tmp_path, monkeypatch):
        store = _make_store(tmp_path, ttl_seconds=1)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=JobStatus.MUXING)

        far_future = time.time() + 10000
        monkeypatch.setattr(time, "time", lambda: far_future)
        assert store.cleanup_expired() == 0
        assert store.get_job(job.id) is not None

    def test_cleanup_returns_zero_on_empty_store(self, tmp_path):
        assert _make_store(tmp_path).cleanup_expired() == 0

    def test_default_ttl_is_one_hour(self):
        assert DEFAULT_TTL_SECONDS == 3600


# ---------------------------------------------------------------------------
# TestBackgroundRunner
# ---------------------------------------------------------------------------


class TestBackgroundRunner:
    """JobStore.run_in_background() wraps task execution with error handling."""

    def test_successful_task_runs_callable(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")
        called_with = {}

        def task(job_id, job_store):
            called_with["job_id"] = job_id
            called_with["store"] = job_store
            job_store.update_job(job_id, status=JobStatus.COMPLETED)

        store.run_in_background(job.id, task)

        assert called_with == {"job_id": job.id, "store": store}
        assert store.get_job(job.id).status == JobStatus.COMPLETED

    def test_failed_task_sets_status_to_failed(self, tmp_path):
        store = _make_store(tmp_path)
        job = store.create_job("clip.mp4")

        def failing_task(job_id, job_store):
            job_store.update_job(job_id, status=JobStatus.MUXING)
            raise RuntimeError("worker crashed")

        store.run_in_background(job.id, failing_task)

        updated_job = store.get_job(job.id)
        assert updated_job.status == JobStatus.FAILED
        assert "worker crashed" in updated_job.error


# ---------------------------------------------------------------------------
# TestPersistence
# ---------------------------------------------------------------------------


class TestPersistence:
    """Records are mirrored to the records file and reloaded on start."""

    def test_records_file_is_written(self, tmp_path):
        records = tmp_path / "records.json"
        store = _make_store(tmp_path, records_file=records)
        job = store.create_job("clip.mp4", script="Hi.")
        data = json.loads(records.read_text(encoding="utf-8"))
        assert [entry["id"] for entry in data] == [job.id]
        assert data[0]["status"] == "queued"
        assert data[0]["output_dir"] == str(job.output_dir)

    def test_reload_restores_completed_records(self, tmp_path):
        records = tmp_path / "records.json"
        store = _make_store(tmp_path, records_file=records)
        job = store.create_job("clip.mp4", subtitle_format="vtt", render_mode="track")
        store.update_job(
            job.id,
            status=JobStatus.COMPLETED,
            subtitle_path=str(job.output_dir / "x.vtt"),
            applied_mode=RenderMode.TRACK,
            cue_count=2,
        )

        reloaded = _make_store(tmp_path, records_file=records).get_job(job.id)
        assert reloaded.status == JobStatus.COMPLETED
        assert reloaded.subtitle_format == SubtitleFormat.VTT
        assert reloaded.render_mode == RenderMode.TRACK
        assert reloaded.applied_mode == RenderMode.TRACK
        assert reloaded.subtitle_path == job.output_dir / "x.vtt"
        assert reloaded.cue_count == 2

    def test_in_flight_records_are_failed_on_reload(self, tmp_path):
        records = tmp_path / "records.json"
        store = _make_store(tmp_path, records_file=records)
        job = store.create_job("clip.mp4")
        store.update_job(job.id, status=JobStatus.MUXING)

        reloaded = _make_store(tmp_path, records_file=records).get_job(job.id)
        assert reloaded.status == JobStatus.FAILED
        assert reloaded.failed_stage == "muxing"
        assert "restart" in reloaded.error

    def test_deleted_records_are_removed_from_file(self, tmp_path):
        records = tmp_path / "records.json"
        store = _make_store(tmp_path, records_file=records)
        job = store.create_job("clip.mp4")
        store.delete_job(job.id)
        assert json.loads(records.read_text(encoding="utf-8")) == []

    def test_unreadable_file_starts_empty(self, tmp_path):
        records = tmp_path / "records.json"
        records.write_text("{not json", encoding="utf-8")
        assert _make_store(tmp_path, records_file=records).list_jobs() == []

    def test_job_dict_round_trip(self, tmp_path):
        job = _make_store(tmp_path).create_job("clip.mp4", styling={"position": "top"})
        assert Job.from_dict(job.to_dict()) == job


# ---------------------------------------------------------------------------
# TestThreadSafety
# ---------------------------------------------------------------------------


class TestThreadSafety:
    """Concurrent access to JobStore doesn't corrupt state."""

    def test_concurrent_creates(self, tmp_path):
        store = _make_store(tmp_path)
        results = []
        errors = []

        def create_job(idx):
            try:
                results.append(store.create_job("file_{}.mp4".format(idx)).id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create_job, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(set(results)) == 20
        assert len(store.list_jobs()) == 20

    def test_concurrent_updates_with_persistence(self, tmp_path):
        store = _make_store(tmp_path, records_file=tmp_path / "records.json")
        job = store.create_job("clip.mp4")
        errors = []

        def update_progress(idx):
            try:
                store.update_job(job.id, progress={"stage": "muxing", "percent": idx * 5.0})
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=update_progress, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        data = json.loads((tmp_path / "records.json").read_text(encoding="utf-8"))
        assert data[0]["progress"] == store.get_job(job.id).progress
