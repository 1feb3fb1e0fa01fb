"""Processing-record store with background execution, TTL cleanup and
optional JSON persistence.

WHY: The HTTP API needs to track captioning jobs through their lifecycle
(queued → timing → serializing → writing → muxing → completed | failed).
Muxing can take minutes, so the API returns a record ID immediately and
processes work in the background. Records live in memory; a deployment
that needs them to survive restarts points CAPTION_RECORDS_FILE at a JSON
file.

HOW: Two components work together:
  Job       — dataclass holding record metadata, request options, outputs
  JobStore  — thread-safe dict-based store with create/update/get/list/delete,
              background task execution and TTL cleanup. Every mutation is
              mirrored to the records file when one is configured.

RULES:
- All store mutations are protected by a threading.RLock for thread safety
- requeue_job() checks and re-queues a record atomically
- Each record gets its own directory: <storage_dir>/<id>, or a temp dir
  when no storage_dir is configured
- get_job()/update_job() return None for unknown IDs, never raise
- Moving to a non-failed status clears error and failed_stage
- TTL-based expiry removes terminal records and their directories
- Background runner marks the record failed on unhandled exceptions
- Records found mid-flight when loading from disk are marked failed
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.ir import JobStatus, RenderMode, SubtitleFormat

logger = logging.getLogger(__name__)

# Default time-to-live for completed/failed records (seconds)
DEFAULT_TTL_SECONDS = 3600

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    """Metadata and state for a single processing record.

    RULES:
    - id: UUID4 hex string, unique and immutable after creation
    - status: current JobStatus (starts as QUEUED)
    - filename: sanitized uploaded filename (for display/download)
    - output_dir: directory holding the upload and every output file
    - render_mode: the requested mode; applied_mode is what actually
      succeeded (None when captions were never muxed or degraded)
    - styling: CaptionStyling fields as a plain dict
    - config: extra options, e.g. {"timing": {"words_per_minute": 200}}
    - error/failed_stage: only set when status is FAILED
    - output_files: filenames in output_dir available for download
    """

    id: str
    status: JobStatus
    filename: str
    output_dir: Path
    created_at: float
    updated_at: float
    completed_at: Optional[float] = None
    script: str = ""
    subtitle_format: SubtitleFormat = SubtitleFormat.SRT
    render_mode: RenderMode = RenderMode.BURNED
    applied_mode: Optional[RenderMode] = None
    styling: Dict[str, Any] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    video_path: Optional[Path] = None
    duration_s: Optional[float] = None
    subtitle_path: Optional[Path] = None
    output_video_path: Optional[Path] = None
    cue_count: Optional[int] = None
    degraded: bool = False
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    progress: Optional[Dict[str, Any]] = None
    output_files: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation used by the records file."""
        data = asdict(self)
        for key in ("output_dir", "video_path", "subtitle_path", "output_video_path"):
            if data[key] is not None:
                data[key] = str(data[key])
        for key in ("status", "subtitle_format", "render_mode", "applied_mode"):
            if data[key] is not None:
                data[key] = data[key].value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Job:
        data = dict(data)
        data["status"] = JobStatus(data["status"])
        data["subtitle_format"] = SubtitleFormat(data.get("subtitle_format", "srt"))
        data["render_mode"] = RenderMode(data.get("render_mode", "burned"))
        if data.get("applied_mode"):
            data["applied_mode"] = RenderMode(data["applied_mode"])
        for key in ("output_dir", "video_path", "subtitle_path", "output_video_path"):
            if data.get(key):
                data[key] = Path(data[key])
        return cls(**data)


class JobStore:
    """Thread-safe store for processing records.

    WHY: Concurrent API requests and background pipelines access record
    state simultaneously. A centralized store with locking prevents race
    conditions and doubles as the orchestrator's status store.

    RULES:
    - All public methods that mutate state acquire self._lock
    - create_job() raises ValueError when max_jobs records already exist
    - update_job() applies only non-None arguments and bumps updated_at
    - completed_at is set on COMPLETED/FAILED and cleared otherwise
    - requeue_job() only succeeds for COMPLETED/FAILED records
    - delete_job() removes the record and its directory
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_jobs: int = 100,
        storage_dir: Optional[Path] = None,
        records_file: Optional[Path] = None,
    ) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()
        self._ttl_seconds = ttl_seconds
        self.max_jobs = max_jobs
        self.storage_dir = Path(storage_dir) if storage_dir is not None else None
        self.records_file = Path(records_file) if records_file is not None else None
        if self.records_file is not None:
            self._load()

    @classmethod
    def from_config(cls, config: PipelineConfig) -> JobStore:
        return cls(
            ttl_seconds=config.job_ttl_seconds,
            max_jobs=config.max_jobs,
            storage_dir=config.storage_dir,
            records_file=config.records_file,
        )

    def create_job(
        self,
        filename: str,
        script: str = "",
        subtitle_format: SubtitleFormat = SubtitleFormat.SRT,
        render_mode: RenderMode = RenderMode.BURNED,
        styling: Optional[Dict[str, Any]] = None,
        duration_s: Optional[float] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """Create a new QUEUED record with a dedicated output directory."""
        with self._lock:
            if len(self._jobs) >= self.max_jobs:
                raise ValueError(
                    "Maximum number of concurrent jobs ({}) reached".format(
                        self.max_jobs
                    )
                )

            job_id = uuid.uuid4().hex
            now = time.time()
            if self.storage_dir is not None:
                output_dir = self.storage_dir / job_id
                output_dir.mkdir(parents=True, exist_ok=True)
            else:
                output_dir = Path(tempfile.mkdtemp(prefix="captions_job_"))

            job = Job(
                id=job_id,
                status=JobStatus.QUEUED,
                filename=filename,
                output_dir=output_dir,
                created_at=now,
                updated_at=now,
                script=script,
                subtitle_format=SubtitleFormat(subtitle_format),
                render_mode=RenderMode(render_mode),
                styling=styling or {},
                duration_s=duration_s,
                config=config or {},
            )

            self._jobs[job_id] = job
            self._save()

        logger.info("Created job %s for file %s", job_id, filename)
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Retrieve a record by ID, or None if not found.

        The returned Job is the live instance, not a copy.
        """
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """Return all records ordered oldest-first by created_at."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        error: Optional[str] = None,
        failed_stage: Optional[str] = None,
        progress: Optional[Dict[str, Any]] = None,
        script: Optional[str] = None,
        subtitle_format: Optional[SubtitleFormat] = None,
        render_mode: Optional[RenderMode] = None,
        applied_mode: Optional[RenderMode] = None,
        styling: Optional[Dict[str, Any]] = None,
        config: Optional[Dict[str, Any]] = None,
        video_path: Optional[Path] = None,
        duration_s: Optional[float] = None,
        subtitle_path: Optional[str] = None,
        output_video_path: Optional[str] = None,
        cue_count: Optional[int] = None,
        degraded: Optional[bool] = None,
        output_files: Optional[List[str]] = None,
    ) -> Optional[Job]:
        """Update a record's mutable fields.

        HOW: Acquires the lock, applies non-None updates, bumps updated_at.
        A status change to anything but FAILED clears the previous error,
        and a change to QUEUED also drops the previous run's outputs
        (progress, applied mode, output video, degraded flag, output files),
        so a re-run record never reports stale results.

        RULES:
        - Returns the updated Job, or None if job_id not found
        - completed_at is set when status becomes COMPLETED or FAILED
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None

            now = time.time()

            if status is not None:
                job.status = JobStatus(status)
                if job.status != JobStatus.FAILED:
                    job.error = None
                    job.failed_stage = None
                if job.status == JobStatus.QUEUED:
                    # Outputs of the previous run no longer describe the record
                    job.progress = None
                    job.applied_mode = None
                    job.output_video_path = None
                    job.degraded = False
                    job.output_files = []
            if error is not None:
                job.error = error
            if failed_stage is not None:
                job.failed_stage = failed_stage
            if progress is not None:
                job.progress = progress
            if script is not None:
                job.script = script
            if subtitle_format is not None:
                job.subtitle_format = SubtitleFormat(subtitle_format)
            if render_mode is not None:
                job.render_mode = RenderMode(render_mode)
            if applied_mode is not None:
                job.applied_mode = RenderMode(applied_mode)
            if styling is not None:
                job.styling = styling
            if config is not None:
                job.config = config
            if video_path is not None:
                job.video_path = Path(video_path)
            if duration_s is not None:
                job.duration_s = duration_s
            if subtitle_path is not None:
                job.subtitle_path = Path(subtitle_path)
            if output_video_path is not None:
                job.output_video_path = Path(output_video_path)
            if cue_count is not None:
                job.cue_count = cue_count
            if degraded is not None:
                job.degraded = degraded
            if output_files is not None:
                job.output_files = output_files

            job.updated_at = now

            if job.is_terminal:
                job.completed_at = now
            else:
                job.completed_at = None

            self._save()
            return job

    def requeue_job(self, job_id: str, **fields: Any) -> Optional[Job]:
        """Move a finished record back to QUEUED, applying ``fields``.

        The terminal check and the update happen under one lock, so two
        callers can never queue the same record twice. Returns None when
        the record is unknown or still processing.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.is_terminal:
                return None
            return self.update_job(job_id, status=JobStatus.QUEUED, **fields)

    def delete_job(self, job_id: str) -> bool:
        """Delete a record and its output directory.

        Returns True if the record was found and deleted, False otherwise.
        """
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is not None:
                self._save()

        if job is None:
            return False

        self._cleanup_output_dir(job.output_dir)
        logger.info("Deleted job %s", job_id)
        return True

    def cleanup_expired(self) -> int:
        """Remove terminal records whose completed_at is older than the TTL.

        Returns the count of removed records.
        """
        now = time.time()
        expired_jobs: List[Job] = []

        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if not job.is_terminal or job.completed_at is None:
                    continue
                if now - job.completed_at > self._ttl_seconds:
                    expired_jobs.append(self._jobs.pop(job_id))
            if expired_jobs:
                self._save()

        for job in expired_jobs:
            self._cleanup_output_dir(job.output_dir)
            logger.info("Expired job %s (completed %.0fs ago)", job.id, now - job.completed_at)

        return len(expired_jobs)

    def run_in_background(
        self,
        job_id: str,
        task: Callable[[str, JobStore], None],
    ) -> None:
        """Run ``task(job_id, store)``, marking the record failed if it raises."""
        try:
            task(job_id, self)
        except Exception as exc:
            logger.exception("Background task failed for job %s", job_id)
            self.update_job(job_id, status=JobStatus.FAILED, error=str(exc))

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def _save(self) -> None:
        """Write every record to the records file. Caller holds the lock."""
        if self.records_file is None:
            return
        self.records_file.parent.mkdir(parents=True, exist_ok=True)
        payload = [job.to_dict() for job in self._jobs.values()]
        tmp_path = self.records_file.with_name(self.records_file.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.records_file)

    def _load(self) -> None:
        if self.records_file is None or not self.records_file.exists():
            return
        try:
            raw = json.loads(self.records_file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable records file: %s", self.records_file)
            return

        now = time.time()
        for entry in raw:
            try:
                job = Job.from_dict(entry)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed record: %r", entry.get("id") if isinstance(entry, dict) else entry)
                continue
            if not job.is_terminal:
                job.failed_stage = job.status.value
                job.status = JobStatus.FAILED
                job.error = "Interrupted by a service restart"
                job.completed_at = now
            self._jobs[job.id] = job
        logger.info("Loaded %d record(s) from %s", len(self._jobs), self.records_file)

    @staticmethod
    def _cleanup_output_dir(output_dir: Path) -> None:
        """Remove a record's directory tree. Never raises."""
        if output_dir.exists():
            try:
                shutil.rmtree(output_dir)
            except OSError:
                logger.warning("Failed to clean up output dir: %s", output_dir)
