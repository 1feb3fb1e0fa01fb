"""Pipeline orchestrator — time, serialize, write, and mux captions.

WHY: The CLI, the HTTP API and background jobs all need the same sequence
of stages with the same status reporting and the same error contract.
Centralizing it here keeps the front-ends thin.

HOW: run_caption_pipeline() walks the stages strictly in order:
timing → serializing → writing → muxing. Before each stage it updates the
status store (when one is supplied). Any exception is mapped to a
PipelineError carrying the failing stage and a human-readable message,
and the record is marked failed.

RULES:
- Timer and serializer are never retried (they are deterministic)
- All rendering retries/fallbacks are delegated to CaptionMuxer
- Muxing is skipped for captions-only requests (no video_path) and when
  the script produced zero cues; the record still completes
- Duration is probed through the engine when the request omits it
- PipelineError.kind: "validation" for bad input, "io" for filesystem
  failures, "internal" for anything else (message kept generic)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.errors import CaptionInputError, EngineError, PipelineError
from caption_pipeline.core.ir import (
    CaptionStyling,
    JobStatus,
    RenderMode,
    SubtitleFormat,
    TimingParameters,
)
from caption_pipeline.core.timing import DEFAULT_TIMING, build_document, validate_duration
from caption_pipeline.core.writer import subtitle_filename, write_subtitle_file
from caption_pipeline.formatters import get_formatter
from caption_pipeline.render.engine import EngineEvent, EngineEventKind, EventObserver, FFmpegEngine, notify
from caption_pipeline.render.muxer import CaptionMuxer

logger = logging.getLogger(__name__)


class StatusStore(Protocol):
    """The slice of the record store the orchestrator relies on.

    Both methods return None for unknown ids instead of raising.
    """

    def get_job(self, job_id: str) -> Any: ...

    def update_job(self, job_id: str, **fields: Any) -> Any: ...


@dataclass
class CaptionRequest:
    """Everything one pipeline run needs.

    RULES:
    - video_path=None means captions-only (no muxing)
    - video_duration_s=None means "probe the video"
    - record_id names the subtitle and output files
    """

    script_text: str
    video_duration_s: Optional[float] = None
    subtitle_format: SubtitleFormat = SubtitleFormat.SRT
    render_mode: RenderMode = RenderMode.BURNED
    styling: Optional[CaptionStyling] = None
    video_path: Optional[Path] = None
    output_dir: Path = Path(".")
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timing: TimingParameters = DEFAULT_TIMING

    @property
    def captions_only(self) -> bool:
        return self.video_path is None


@dataclass
class PipelineResult:
    """Structured success payload."""

    subtitle_path: Path
    subtitle_content: str
    format: SubtitleFormat
    cue_count: int
    duration_s: float
    video_with_subtitles: Optional[Path] = None
    render_mode: Optional[RenderMode] = None
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: subtitlePath, subtitleContent, format, videoWithSubtitles?, degraded?"""
        payload: Dict[str, Any] = {
            "subtitlePath": str(self.subtitle_path),
            "subtitleContent": self.subtitle_content,
            "format": self.format.value,
        }
        if self.video_with_subtitles is not None:
            payload["videoWithSubtitles"] = str(self.video_with_subtitles)
        if self.degraded:
            payload["degraded"] = True
        return payload


def output_video_path(output_dir: Path, record_id: str) -> Path:
    return Path(output_dir) / "{}_with_subtitles.mp4".format(record_id)


class _StageTracker:
    """Report stage transitions to an optional status store."""

    def __init__(self, store: Optional[StatusStore], job_id: Optional[str]) -> None:
        self.store = store
        self.job_id = job_id
        self.stage = JobStatus.QUEUED

    def _update(self, **fields: Any) -> None:
        if self.store is not None and self.job_id is not None:
            self.store.update_job(self.job_id, **fields)

    def enter(self, stage: JobStatus) -> None:
        self.stage = stage
        logger.debug("Record %s entering %s", self.job_id, stage.value)
        self._update(status=stage)

    def record(self, **fields: Any) -> None:
        self._update(**fields)

    def fail(self, message: str) -> None:
        self._update(status=JobStatus.FAILED, error=message, failed_stage=self.stage.value)

    def observer(self, downstream: Optional[EventObserver]) -> EventObserver:
        def _on_event(event: EngineEvent) -> None:
            if event.kind == EngineEventKind.PROGRESS and event.percent is not None:
                self._update(progress={"stage": self.stage.value, "percent": round(event.percent, 1)})
            elif event.kind == EngineEventKind.STARTED:
                logger.debug("Engine command for %s: %s", self.job_id, event.command)
            notify(downstream, event)

        return _on_event


async def run_caption_pipeline(
    request: CaptionRequest,
    *,
    config: Optional[PipelineConfig] = None,
    engine: Any = None,
    store: Optional[StatusStore] = None,
    job_id: Optional[str] = None,
    on_event: Optional[EventObserver] = None,
) -> PipelineResult:
    """Run the full captioning pipeline for one request.

    Args:
        request: Script, duration, format, mode, styling and paths.
        config: Process configuration (timeouts, language, binaries).
        engine: Transcoding engine; defaults to FFmpegEngine from config.
        store: Optional status store updated at every stage boundary.
        job_id: Record id in ``store``.
        on_event: Observer for engine events, forwarded by the muxer.

    Returns:
        PipelineResult describing the subtitle file and any output video.

    Raises:
        PipelineError: On any failure; the record (if any) is marked failed.
    """
    config = config or PipelineConfig()
    tracker = _StageTracker(store, job_id)

    try:
        tracker.enter(JobStatus.TIMING)
        if not request.script_text or not request.script_text.strip():
            raise CaptionInputError("Script text is empty")

        duration = request.video_duration_s
        if duration is None:
            if request.video_path is None:
                raise CaptionInputError("Video duration is required when no video is supplied")
            if not Path(request.video_path).is_file():
                raise CaptionInputError("Video file not found: {}".format(request.video_path))
            engine = engine or FFmpegEngine.from_config(config)
            duration = await engine.probe_duration(request.video_path)
        duration = validate_duration(duration)
        tracker.record(duration_s=duration)

        document = build_document(request.script_text, duration, request.subtitle_format, request.timing)
        logger.info("Timed %d cue(s) over %.2fs for %s", len(document), duration, request.record_id)

        tracker.enter(JobStatus.SERIALIZING)
        content = get_formatter(document.format).format_document(document)

        tracker.enter(JobStatus.WRITING)
        subtitle_path = write_subtitle_file(
            content,
            Path(request.output_dir) / subtitle_filename(request.record_id, document.format),
        )
        tracker.record(subtitle_path=str(subtitle_path), cue_count=len(document))

        result = PipelineResult(
            subtitle_path=subtitle_path,
            subtitle_content=content,
            format=document.format,
            cue_count=len(document),
            duration_s=duration,
        )

        if request.video_path is not None and document.cues:
            tracker.enter(JobStatus.MUXING)
            engine = engine or FFmpegEngine.from_config(config)
            mux = await CaptionMuxer(engine, config).mux(
                request.video_path,
                subtitle_path,
                output_video_path(request.output_dir, request.record_id),
                mode=request.render_mode,
                styling=request.styling,
                duration_s=duration,
                on_event=tracker.observer(on_event),
            )
            result.video_with_subtitles = mux.output_path
            result.render_mode = mux.mode
            result.degraded = mux.degraded
        elif request.video_path is not None:
            logger.warning("Script for %s produced no captions; skipping muxing", request.record_id)

        completed_fields: Dict[str, Any] = {"status": JobStatus.COMPLETED, "degraded": result.degraded}
        if result.video_with_subtitles is not None:
            completed_fields["output_video_path"] = str(result.video_with_subtitles)
        if result.render_mode is not None:
            completed_fields["applied_mode"] = result.render_mode
        tracker.record(**completed_fields)
        return result

    except CaptionInputError as exc:
        message = str(exc)
        tracker.fail(message)
        raise PipelineError(tracker.stage.value, message, "validation") from exc
    except EngineError as exc:
        logger.warning("Duration probe failed for %s: %s", request.record_id, exc)
        message = "Could not determine video duration"
        tracker.fail(message)
        raise PipelineError(tracker.stage.value, message, "validation") from exc
    except OSError as exc:
        message = "File operation failed: {}".format(exc.strerror or exc)
        logger.error("Pipeline %s failed during %s: %s", request.record_id, tracker.stage.value, exc)
        tracker.fail(message)
        raise PipelineError(tracker.stage.value, message, "io") from exc
    except Exception as exc:
        logger.exception("Pipeline %s crashed during %s", request.record_id, tracker.stage.value)
        message = "Unexpected error while {}".format(tracker.stage.value)
        tracker.fail(message)
        raise PipelineError(tracker.stage.value, message, "internal") from exc
