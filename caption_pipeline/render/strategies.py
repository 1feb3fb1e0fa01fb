"""Rendering strategies tried by the caption muxer, in order.

WHY: Burning captions in is the most valuable result but depends on
fonts and libass being available; attaching a soft track is cheaper and
more portable; copying the source is the last resort that still leaves
the user with a playable file. Modelling each as a strategy object makes
the fallback order a plain list instead of nested try/except blocks.

HOW: Every strategy exposes ``render(engine, job, on_event)`` returning an
EngineResult. strategies_for_mode() builds the ordered list for a
requested RenderMode; CopyOriginalStrategy is the terminal step and is
appended by the muxer, never by this list.

RULES:
- burned → [BurnInStrategy, SoftTrackStrategy]
- track  → [SoftTrackStrategy]
- CopyOriginalStrategy raises OSError if the copy itself fails
"""

from __future__ import annotations

import asyncio
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.ir import CaptionStyling, RenderMode
from caption_pipeline.render.engine import (
    EngineEvent,
    EngineEventKind,
    EngineResult,
    EngineStatus,
    EventObserver,
    notify,
)


@dataclass(frozen=True)
class MuxJob:
    """Inputs shared by every strategy for one muxing request."""

    video_path: Path
    subtitle_path: Path
    output_path: Path
    styling: CaptionStyling | None = None
    duration_s: float | None = None


class RenderStrategy(ABC):
    """One way of producing the output video."""

    name: str = ""
    mode: RenderMode | None = None

    @abstractmethod
    async def render(self, engine, job: MuxJob, on_event: EventObserver | None = None) -> EngineResult:  # noqa: ANN001
        """Attempt to produce ``job.output_path`` and report the outcome."""


class BurnInStrategy(RenderStrategy):
    """Composite the subtitle file into the video frames."""

    name = "burn_in"
    mode = RenderMode.BURNED

    def __init__(self, timeout_s: float = 600.0) -> None:
        self.timeout_s = timeout_s

    async def render(self, engine, job: MuxJob, on_event: EventObserver | None = None) -> EngineResult:  # noqa: ANN001
        return await engine.burn_subtitles(
            job.video_path,
            job.subtitle_path,
            job.output_path,
            styling=job.styling,
            timeout_s=self.timeout_s,
            duration_s=job.duration_s,
            on_event=on_event,
        )


class SoftTrackStrategy(RenderStrategy):
    """Remux the video with the subtitles as a default subtitle stream."""

    name = "soft_track"
    mode = RenderMode.TRACK

    def __init__(self, timeout_s: float = 300.0, language: str = "eng") -> None:
        self.timeout_s = timeout_s
        self.language = language

    async def render(self, engine, job: MuxJob, on_event: EventObserver | None = None) -> EngineResult:  # noqa: ANN001
        return await engine.attach_subtitles(
            job.video_path,
            job.subtitle_path,
            job.output_path,
            language=self.language,
            timeout_s=self.timeout_s,
            duration_s=job.duration_s,
            on_event=on_event,
        )


class CopyOriginalStrategy(RenderStrategy):
    """Copy the source video verbatim; captions are absent."""

    name = "copy_original"
    mode = None

    async def render(self, engine, job: MuxJob, on_event: EventObserver | None = None) -> EngineResult:  # noqa: ANN001
        await asyncio.to_thread(shutil.copyfile, job.video_path, job.output_path)
        notify(on_event, EngineEvent(EngineEventKind.COMPLETED, output_path=str(job.output_path)))
        return EngineResult(EngineStatus.SUCCEEDED, output_path=job.output_path)


def strategies_for_mode(mode: RenderMode, config: PipelineConfig) -> list[RenderStrategy]:
    """Return the ordered engine strategies for a requested mode."""
    soft = SoftTrackStrategy(timeout_s=config.soft_track_timeout_s, language=config.subtitle_language)
    if mode == RenderMode.BURNED:
        return [BurnInStrategy(timeout_s=config.burn_timeout_s), soft]
    return [soft]
