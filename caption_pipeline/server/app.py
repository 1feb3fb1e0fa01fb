"""FastAPI application with captioning API routes and OpenAPI docs.

WHY: External clients (web front-ends, curl, automation tools) need an
HTTP API to generate subtitle files from a script, upload videos for
captioning, poll for status, and download results. FastAPI provides
automatic OpenAPI documentation, request validation, and background
task support.

HOW: POST /subtitles runs the captions-only pipeline inline (it is pure
and fast). POST /videos accepts a multipart upload with form fields,
creates a record, and runs the full pipeline in the background. Other
endpoints provide polling, re-processing, timing regeneration, downloads,
format listing, and health.

RULES:
- All endpoints have OpenAPI descriptions on every parameter and response
- Error responses use a consistent ErrorResponse schema
- PipelineError kind 'validation' → 400; 'io'/'internal' → 500
- Background pipelines use FastAPI BackgroundTasks via JobStore.run_in_background
- The job store is a module-level singleton built from load_config()
- File validation checks extension against SUPPORTED_VIDEO_FORMATS
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, List, Optional

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, Response

from caption_pipeline import __version__
from caption_pipeline.config import (
    API_HOST,
    API_PORT,
    MAX_UPLOAD_BYTES,
    SUPPORTED_VIDEO_FORMATS,
    load_config,
)
from caption_pipeline.core.errors import CaptionInputError, PipelineError
from caption_pipeline.core.ir import (
    CaptionStyling,
    JobStatus,
    RenderMode,
    SubtitleFormat,
    TimingParameters,
)
from caption_pipeline.core.pipeline import CaptionRequest, run_caption_pipeline
from caption_pipeline.formatters import FORMATTERS, get_formatter
from caption_pipeline.server.jobs import Job, JobStore
from caption_pipeline.server.models import (
    CaptionPosition,
    CaptionResultResponse,
    CaptionStylingModel,
    ErrorResponse,
    FormatInfo,
    HealthResponse,
    JobCreatedResponse,
    JobResponse,
    ReprocessRequest,
    SubtitleGenerateRequest,
    SubtitleResponse,
    SubtitleType,
    TimingUpdateRequest,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

config = load_config()
job_store = JobStore.from_config(config)


async def _periodic_cleanup() -> None:
    """Run record cleanup every 5 minutes."""
    while True:
        await asyncio.sleep(300)
        job_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start periodic cleanup on startup, cancel on shutdown."""
    task = asyncio.create_task(_periodic_cleanup())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    lifespan=lifespan,
    title="Caption Pipeline API",
    description=(
        "REST API for turning a plain-text script into timed SRT/WebVTT "
        "subtitles and applying them to a video, burned in or as a soft "
        "subtitle track. Upload a video, poll for status, and download "
        "the captioned result."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _job_to_response(job: Job) -> JobResponse:
    """Convert an internal Job dataclass to a JobResponse Pydantic model."""
    return JobResponse(
        id=job.id,
        status=job.status.value,
        filename=job.filename,
        created_at=job.created_at,
        updated_at=job.updated_at,
        format=job.subtitle_format.value,
        subtitle_type="hard" if job.render_mode == RenderMode.BURNED else "soft",
        applied_mode=job.applied_mode.value if job.applied_mode else None,
        styling=job.styling,
        duration_s=job.duration_s,
        cue_count=job.cue_count,
        degraded=job.degraded,
        progress=job.progress,
        error=job.error,
        failed_stage=job.failed_stage,
        output_files=job.output_files if job.output_files else None,
    )


def _get_job_or_404(job_id: str) -> Job:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return job


def _still_processing(job: Job) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail="Job is still processing (current status: {}).".format(job.status.value),
    )


def _validate_file_extension(filename: str) -> None:
    """Raise HTTPException if the file extension is not supported."""
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_VIDEO_FORMATS:
        sorted_formats = sorted(SUPPORTED_VIDEO_FORMATS)
        raise HTTPException(
            status_code=400,
            detail="Unsupported file type '{}'. Supported formats: {}".format(
                ext, ", ".join(sorted_formats)
            ),
        )


def _require_script(script: Optional[str]) -> str:
    if script is None or not script.strip():
        raise HTTPException(status_code=400, detail="Script text is empty")
    return script


def _timing_for(job: Job) -> TimingParameters:
    return TimingParameters(**job.config.get("timing", {}))


def _timing_dict(timing: TimingParameters) -> dict:
    return {
        "words_per_minute": timing.words_per_minute,
        "pacing_buffer": timing.pacing_buffer,
        "gap_s": timing.gap_s,
    }


def _pipeline_http_error(exc: PipelineError) -> HTTPException:
    if exc.kind == "validation":
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _output_files(job: Job) -> List[str]:
    names = []
    for path in (job.subtitle_path, job.output_video_path):
        if path is not None and Path(path).exists():
            names.append(Path(path).name)
    return names


async def _run_caption_pipeline(job_id: str, store: JobStore) -> None:
    """Run the full captioning pipeline for a record.

    WHY: This is the background task that processes an uploaded video:
    time the script, write the subtitle file, and mux it into the video.

    HOW: Rebuilds a CaptionRequest from the stored record and hands the
    store to the orchestrator, which updates status at each stage. On
    success the downloadable output files are recorded.

    RULES:
    - PipelineError means the orchestrator already marked the record failed
    - Any other exception propagates to JobStore.run_in_background
    """
    job = store.get_job(job_id)
    if job is None:
        return

    request = CaptionRequest(
        script_text=job.script,
        video_duration_s=job.duration_s,
        subtitle_format=job.subtitle_format,
        render_mode=job.render_mode,
        styling=CaptionStyling(**job.styling) if job.styling else None,
        video_path=job.video_path,
        output_dir=job.output_dir,
        record_id=job.id,
        timing=_timing_for(job),
    )

    try:
        await run_caption_pipeline(request, config=config, store=store, job_id=job_id)
    except PipelineError as exc:
        logger.warning("Captioning failed for job %s: %s", job_id, exc)
        return

    store.update_job(job_id, output_files=_output_files(job))


def _run_caption_sync(job_id: str, store: JobStore) -> None:
    """Synchronous wrapper for the async captioning pipeline.

    WHY: FastAPI BackgroundTasks run synchronous callables in a threadpool.
    This wraps the async pipeline with asyncio.run().
    """
    asyncio.run(_run_caption_pipeline(job_id, store))


def _schedule(background_tasks: BackgroundTasks, job_id: str) -> None:
    background_tasks.add_task(job_store.run_in_background, job_id, _run_caption_sync)


# ---------------------------------------------------------------------------
# Endpoints: Subtitles
# ---------------------------------------------------------------------------


@app.post(
    "/subtitles",
    response_model=CaptionResultResponse,
    response_model_exclude_none=True,
    status_code=201,
    tags=["subtitles"],
    summary="Generate a subtitle file from a script",
    description=(
        "Split the script into sentences, time each caption by reading rate, "
        "and render an SRT or WebVTT file. No video is involved and nothing "
        "is kept on the server: subtitlePath is the suggested filename and "
        "subtitleContent carries the file."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Empty script or invalid parameters"},
    },
)
async def generate_subtitles(body: SubtitleGenerateRequest) -> CaptionResultResponse:
    # No record owns this output, so it lives only for the request
    with tempfile.TemporaryDirectory(prefix="captions_") as tmp_dir:
        request = CaptionRequest(
            script_text=_require_script(body.script),
            video_duration_s=body.video_duration,
            subtitle_format=body.format,
            output_dir=Path(tmp_dir),
            record_id=uuid.uuid4().hex,
            timing=body.timing.to_parameters() if body.timing else TimingParameters(),
        )
        try:
            result = await run_caption_pipeline(request, config=config)
        except PipelineError as exc:
            raise _pipeline_http_error(exc)

    payload = result.to_dict()
    payload["subtitlePath"] = result.subtitle_path.name
    return CaptionResultResponse.model_validate(payload)


# ---------------------------------------------------------------------------
# Endpoints: Videos
# ---------------------------------------------------------------------------


@app.post(
    "/videos",
    response_model=JobCreatedResponse,
    status_code=201,
    tags=["videos"],
    summary="Upload a video for captioning",
    description=(
        "Upload a video with its script and captioning options. Returns a "
        "record ID immediately; captioning runs in the background. Poll "
        "GET /videos/{id} for status updates."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid file type or options"},
        413: {"model": ErrorResponse, "description": "Upload too large"},
        429: {"model": ErrorResponse, "description": "Too many records"},
    },
)
async def upload_video(
    background_tasks: BackgroundTasks,
    file: Annotated[
        UploadFile,
        File(description="Video file to caption"),
    ],
    script: Annotated[
        str,
        Form(description="Script text; sentences end with '.', '!' or '?'."),
    ],
    format: Annotated[
        SubtitleFormat,
        Form(description="Subtitle format: 'srt' or 'vtt'."),
    ] = SubtitleFormat.SRT,
    subtitle_type: Annotated[
        SubtitleType,
        Form(description="'hard' burns captions in, 'soft' attaches a subtitle track."),
    ] = SubtitleType.hard,
    font_size: Annotated[
        Optional[int],
        Form(gt=0, description="Burn-in font size in points."),
    ] = None,
    font_color: Annotated[
        Optional[str],
        Form(description="Burn-in colour name or '#RRGGBB'."),
    ] = None,
    position: Annotated[
        Optional[CaptionPosition],
        Form(description="Burn-in caption placement: top, bottom or center."),
    ] = None,
    video_duration: Annotated[
        Optional[float],
        Form(gt=0, description="Video duration in seconds. Probed with ffprobe when omitted."),
    ] = None,
) -> JobCreatedResponse:
    # Sanitize filename to prevent path traversal
    raw_filename = file.filename or "upload.mp4"
    filename = Path(raw_filename).name
    _validate_file_extension(filename)
    _require_script(script)

    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail="Upload exceeds the {} MB limit".format(MAX_UPLOAD_BYTES // (1024 * 1024)),
        )

    styling = CaptionStylingModel(font_size=font_size, font_color=font_color, position=position)

    try:
        job = job_store.create_job(
            filename=filename,
            script=script,
            subtitle_format=format,
            render_mode=RenderMode.from_subtitle_type(subtitle_type.value),
            styling=styling.model_dump(mode="json", exclude_none=True),
            duration_s=video_duration,
        )
    except ValueError as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    # Save uploaded file to the record's directory
    input_path = job.output_dir / filename
    input_path.write_bytes(content)
    job_store.update_job(job.id, video_path=input_path)

    _schedule(background_tasks, job.id)

    return JobCreatedResponse(
        id=job.id,
        status=job.status.value,
        filename=job.filename,
    )


@app.post(
    "/videos/{job_id}/subtitles",
    response_model=JobCreatedResponse,
    status_code=202,
    tags=["videos"],
    summary="Re-run captioning with new options",
    description=(
        "Re-process an existing record with a new script, format, rendering "
        "mode, styling or timing. Omitted fields keep their current values."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid options"},
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job is still processing"},
    },
)
async def reprocess_video(
    job_id: str,
    body: ReprocessRequest,
    background_tasks: BackgroundTasks,
) -> JobCreatedResponse:
    job = _get_job_or_404(job_id)
    if not job.is_terminal:
        raise _still_processing(job)
    if job.video_path is None or not job.video_path.exists():
        raise HTTPException(status_code=409, detail="Job has no source video to process.")

    job_config = dict(job.config)
    if body.timing is not None:
        job_config["timing"] = _timing_dict(body.timing.to_parameters(_timing_for(job)))

    requeued = job_store.requeue_job(
        job_id,
        script=_require_script(body.script) if body.script is not None else None,
        subtitle_format=body.format,
        render_mode=(
            RenderMode.from_subtitle_type(body.subtitle_type.value)
            if body.subtitle_type is not None
            else None
        ),
        styling=(
            body.styling.model_dump(mode="json", exclude_none=True)
            if body.styling is not None
            else None
        ),
        config=job_config,
    )
    if requeued is None:
        raise _still_processing(_get_job_or_404(job_id))

    _schedule(background_tasks, job_id)

    return JobCreatedResponse(id=job.id, status=job.status.value, filename=job.filename)


@app.get(
    "/videos",
    response_model=List[JobResponse],
    tags=["videos"],
    summary="List processing records",
    description="Returns every known record, oldest first.",
)
async def list_videos() -> List[JobResponse]:
    return [_job_to_response(job) for job in job_store.list_jobs()]


@app.get(
    "/videos/{job_id}",
    response_model=JobResponse,
    tags=["videos"],
    summary="Get record status",
    description=(
        "Poll this endpoint to track a record through timing, serializing, "
        "writing and muxing. Failed records report the failing stage."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def get_video(job_id: str) -> JobResponse:
    return _job_to_response(_get_job_or_404(job_id))


@app.get(
    "/videos/{job_id}/subtitles",
    response_model=SubtitleResponse,
    tags=["videos"],
    summary="Get subtitle content",
    description="Returns the current subtitle file content for a record.",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Subtitles not written yet"},
    },
)
async def get_video_subtitles(job_id: str) -> SubtitleResponse:
    job = _get_job_or_404(job_id)
    subtitle_path = _subtitle_path_or_409(job)
    return SubtitleResponse(
        id=job.id,
        format=job.subtitle_format.value,
        filename=subtitle_path.name,
        cue_count=job.cue_count,
        content=subtitle_path.read_text(encoding="utf-8"),
    )


@app.get(
    "/videos/{job_id}/subtitles/file",
    tags=["videos"],
    summary="Download the subtitle file",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Subtitles not written yet"},
    },
)
async def download_video_subtitles(job_id: str) -> Response:
    job = _get_job_or_404(job_id)
    subtitle_path = _subtitle_path_or_409(job)
    return Response(
        content=subtitle_path.read_bytes(),
        media_type=_infer_media_type(subtitle_path.name),
        headers={"Content-Disposition": 'attachment; filename="{}"'.format(subtitle_path.name)},
    )


@app.put(
    "/videos/{job_id}/subtitles/timing",
    response_model=SubtitleResponse,
    tags=["videos"],
    summary="Regenerate subtitles with new timing",
    description=(
        "Rewrite the record's subtitle file using new reading-rate, pacing "
        "or gap parameters. Set remux=true to also re-apply the captions to "
        "the video in the background."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid timing parameters"},
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job is still processing or has no duration"},
    },
)
async def update_subtitle_timing(
    job_id: str,
    body: TimingUpdateRequest,
    background_tasks: BackgroundTasks,
) -> SubtitleResponse:
    job = _get_job_or_404(job_id)
    if not job.is_terminal:
        raise _still_processing(job)
    if job.duration_s is None:
        raise HTTPException(status_code=409, detail="Job has no known video duration yet.")

    timing = body.to_parameters(_timing_for(job))
    request = CaptionRequest(
        script_text=job.script,
        video_duration_s=job.duration_s,
        subtitle_format=job.subtitle_format,
        output_dir=job.output_dir,
        record_id=job.id,
        timing=timing,
    )
    try:
        result = await run_caption_pipeline(request, config=config)
    except PipelineError as exc:
        raise _pipeline_http_error(exc)

    job_config = dict(job.config)
    job_config["timing"] = _timing_dict(timing)
    fields = {
        "config": job_config,
        "subtitle_path": str(result.subtitle_path),
        "cue_count": result.cue_count,
    }
    if body.remux:
        # The record may have been re-queued while the subtitles were rebuilt
        if job_store.requeue_job(job_id, **fields) is None:
            raise _still_processing(_get_job_or_404(job_id))
        _schedule(background_tasks, job_id)
    else:
        job_store.update_job(job_id, **fields)

    return SubtitleResponse(
        id=job.id,
        format=result.format.value,
        filename=result.subtitle_path.name,
        cue_count=result.cue_count,
        content=result.subtitle_content,
    )


@app.get(
    "/videos/{job_id}/video",
    tags=["videos"],
    summary="Download the captioned video",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job not yet completed"},
    },
)
async def download_video(job_id: str) -> FileResponse:
    job = _get_job_or_404(job_id)
    if job.status != JobStatus.COMPLETED:
        raise HTTPException(
            status_code=409,
            detail="Job is not completed (current status: {}).".format(job.status.value),
        )
    if job.output_video_path is None or not job.output_video_path.exists():
        raise HTTPException(status_code=404, detail="Job has no captioned video.")
    headers = {"X-Captions-Degraded": "true"} if job.degraded else None
    return FileResponse(
        job.output_video_path,
        media_type=_infer_media_type(job.output_video_path.name),
        filename=job.output_video_path.name,
        headers=headers,
    )


@app.delete(
    "/videos/{job_id}",
    status_code=204,
    tags=["videos"],
    summary="Delete a record",
    description="Delete a record together with its uploaded video and all outputs.",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def delete_video(job_id: str) -> Response:
    deleted = job_store.delete_job(job_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Formats
# ---------------------------------------------------------------------------


@app.get(
    "/formats",
    response_model=List[FormatInfo],
    tags=["formats"],
    summary="List supported subtitle formats",
)
async def list_formats() -> List[FormatInfo]:
    result = []
    for key in sorted(FORMATTERS):
        formatter = get_formatter(key)
        result.append(FormatInfo(
            key=key,
            name=formatter.name,
            extension=formatter.extension,
            media_type=formatter.media_type,
        ))
    return result


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness check; also reports whether ffmpeg is installed.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        ffmpeg_available=shutil.which(config.ffmpeg_path) is not None,
    )


# ---------------------------------------------------------------------------
# Helpers (private)
# ---------------------------------------------------------------------------


def run_api():
    """Entry point for the caption-api console script."""
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)


def _subtitle_path_or_409(job: Job) -> Path:
    if job.subtitle_path is None or not job.subtitle_path.exists():
        raise HTTPException(
            status_code=409,
            detail="Subtitles not written yet (current status: {}).".format(job.status.value),
        )
    return job.subtitle_path


def _infer_media_type(filename: str) -> str:
    """Infer MIME type from filename extension.

    RULES:
    - subtitle extensions use their formatter's media type
    - common video containers map to video/*
    - fallback → application/octet-stream
    """
    ext = Path(filename).suffix.lower()
    try:
        return get_formatter(ext.lstrip(".")).media_type
    except CaptionInputError:
        pass
    mapping = {
        ".mp4": "video/mp4",
        ".m4v": "video/mp4",
        ".mov": "video/quicktime",
        ".mkv": "video/x-matroska",
        ".webm": "video/webm",
        ".avi": "video/x-msvideo",
    }
    return mapping.get(ext, "application/octet-stream")
