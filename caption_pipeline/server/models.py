"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Pydantic
models enforce field types at runtime and generate JSON Schema that
appears in the /docs UI.

HOW: Each endpoint pair (request + response) has its own model. Enums
represent closed sets like subtitle formats and caption positions. All
models include Field descriptions for rich OpenAPI docs.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Enum values match internal constants exactly
- CaptionResultResponse uses the camelCase wire names of
  PipelineResult.to_dict() through field aliases
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from caption_pipeline.core.ir import SubtitleFormat, TimingParameters


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SubtitleType(str, Enum):
    """Rendering mode as named by API clients (mapped to RenderMode)."""

    hard = "hard"
    soft = "soft"


class CaptionPosition(str, Enum):
    top = "top"
    bottom = "bottom"
    center = "center"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CaptionStylingModel(BaseModel):
    """Burn-in styling options. Ignored for soft subtitle tracks."""

    font_size: Optional[int] = Field(
        default=None,
        gt=0,
        description="Font size in points.",
    )
    font_color: Optional[str] = Field(
        default=None,
        description="Colour name (e.g. 'yellow') or '#RRGGBB'.",
    )
    position: Optional[CaptionPosition] = Field(
        default=None,
        description="Vertical placement of the captions.",
    )


class TimingModel(BaseModel):
    """Overrides for the reading-rate timing model."""

    words_per_minute: Optional[float] = Field(
        default=None,
        gt=0,
        description="Assumed reading rate. Default 180.",
    )
    pacing_buffer: Optional[float] = Field(
        default=None,
        gt=0,
        description="Multiplier applied to each cue's reading time. Default 1.2.",
    )
    gap_s: Optional[float] = Field(
        default=None,
        ge=0,
        description="Silence inserted between consecutive cues, in seconds. Default 0.5.",
    )

    def to_parameters(self, base: Optional[TimingParameters] = None) -> TimingParameters:
        """Merge the non-null overrides onto ``base`` (defaults when None)."""
        base = base or TimingParameters()
        return TimingParameters(
            words_per_minute=self.words_per_minute or base.words_per_minute,
            pacing_buffer=self.pacing_buffer or base.pacing_buffer,
            gap_s=base.gap_s if self.gap_s is None else self.gap_s,
        )


class SubtitleGenerateRequest(BaseModel):
    """Generate a subtitle file from a script without any video."""

    script: str = Field(description="Script text; sentences end with '.', '!' or '?'.")
    video_duration: float = Field(gt=0, description="Duration of the target video in seconds.")
    format: SubtitleFormat = Field(default=SubtitleFormat.SRT, description="Subtitle format.")
    timing: Optional[TimingModel] = Field(default=None, description="Optional timing overrides.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "script": "He runs. He jumps! Will he make it?",
                "video_duration": 10.0,
                "format": "srt",
            }
        ]
    }}


class ReprocessRequest(BaseModel):
    """Re-run captioning for an existing record with new options.

    Omitted fields keep the record's current values.
    """

    script: Optional[str] = Field(default=None, description="Replacement script text.")
    format: Optional[SubtitleFormat] = Field(default=None, description="Subtitle format.")
    subtitle_type: Optional[SubtitleType] = Field(
        default=None,
        description="'hard' burns captions in, 'soft' attaches a subtitle track.",
    )
    styling: Optional[CaptionStylingModel] = Field(default=None, description="Burn-in styling.")
    timing: Optional[TimingModel] = Field(default=None, description="Timing overrides.")


class TimingUpdateRequest(TimingModel):
    """Regenerate a record's subtitle file with new timing parameters."""

    remux: bool = Field(
        default=False,
        description=(
            "Also re-apply the regenerated captions to the video in the "
            "background. Without it only the subtitle file is rewritten."
        ),
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class JobResponse(BaseModel):
    """Processing record status response.

    RULES:
    - error and failed_stage are only set when status is 'failed'
    - output_files is only populated once outputs exist
    """

    id: str = Field(description="Unique record identifier (UUID).")
    status: str = Field(description="Current pipeline stage or terminal state.")
    filename: str = Field(description="Uploaded video filename.")
    created_at: float = Field(description="Record creation timestamp (Unix epoch seconds).")
    updated_at: float = Field(description="Last status change (Unix epoch seconds).")
    format: str = Field(description="Subtitle format.")
    subtitle_type: str = Field(description="Requested rendering mode ('hard' or 'soft').")
    applied_mode: Optional[str] = Field(
        default=None,
        description="Rendering mode that actually succeeded ('burned' or 'track').",
    )
    styling: Dict[str, Any] = Field(default_factory=dict, description="Burn-in styling options.")
    duration_s: Optional[float] = Field(default=None, description="Video duration in seconds.")
    cue_count: Optional[int] = Field(default=None, description="Number of captions produced.")
    degraded: bool = Field(
        default=False,
        description="True when captions could not be applied and the original video was copied.",
    )
    progress: Optional[Dict[str, Any]] = Field(default=None, description="Engine progress.")
    error: Optional[str] = Field(
        default=None,
        description="Error message, only present when status is 'failed'.",
    )
    failed_stage: Optional[str] = Field(
        default=None,
        description="Stage that failed, only present when status is 'failed'.",
    )
    output_files: Optional[List[str]] = Field(
        default=None,
        description="Output filenames available for download.",
    )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "status": "muxing",
                "filename": "clip.mp4",
                "created_at": 1739959200.0,
                "updated_at": 1739959204.5,
                "format": "srt",
                "subtitle_type": "hard",
                "applied_mode": None,
                "styling": {"font_size": 24, "position": "bottom"},
                "duration_s": 10.0,
                "cue_count": 3,
                "degraded": False,
                "progress": {"stage": "muxing", "percent": 42.0},
                "error": None,
                "failed_stage": None,
                "output_files": None,
            }
        ]
    }}


class JobCreatedResponse(BaseModel):
    """Response returned when a record is created or re-queued."""

    id: str = Field(description="Unique record identifier (UUID) for polling status.")
    status: str = Field(description="Record status (always 'queued').")
    filename: str = Field(description="Uploaded video filename.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "status": "queued",
                "filename": "clip.mp4",
            }
        ]
    }}


class CaptionResultResponse(BaseModel):
    """Result of a synchronous subtitle generation."""

    subtitle_path: str = Field(
        alias="subtitlePath",
        description="Where the subtitle file was written, or its suggested filename when nothing is kept.",
    )
    subtitle_content: str = Field(alias="subtitleContent", description="Full subtitle file content.")
    format: str = Field(description="Subtitle format.")
    video_with_subtitles: Optional[str] = Field(
        default=None,
        alias="videoWithSubtitles",
        description="Captioned video path, when a video was processed.",
    )
    degraded: Optional[bool] = Field(
        default=None,
        description="Present and true only when captions could not be applied to the video.",
    )


class SubtitleResponse(BaseModel):
    """Subtitle content for a record."""

    id: str = Field(description="Record identifier.")
    format: str = Field(description="Subtitle format.")
    filename: str = Field(description="Subtitle filename.")
    cue_count: Optional[int] = Field(default=None, description="Number of captions.")
    content: str = Field(description="Full subtitle file content.")


class FormatInfo(BaseModel):
    """Description of a supported subtitle format."""

    key: str = Field(description="Format identifier used in API requests.")
    name: str = Field(description="Human-readable format name.")
    extension: str = Field(description="File extension produced (without dot).")
    media_type: str = Field(description="MIME type of the subtitle file.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    ffmpeg_available: bool = Field(
        description="Whether the configured ffmpeg binary was found on this host.",
    )
