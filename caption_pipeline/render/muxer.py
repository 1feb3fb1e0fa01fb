"""Caption muxer — apply a subtitle file to a video with layered fallback.

WHY: The pipeline must always end with a playable video. Burn-in can fail
on hosts without fonts, soft tracks can fail on odd containers, and either
can hang. The muxer owns that recovery policy so the orchestrator only
sees one result.

HOW: Validate inputs, then iterate the strategies for the requested mode,
stopping at the first SUCCEEDED result. Exceptions from a strategy are
recorded as failed attempts. When every strategy fails, copy the source
verbatim and flag the result as degraded.

RULES:
- Missing video or subtitle file → MissingInputError, engine never called
- degraded=True only when the copy fallback produced the output
- mode on the result is the mode that actually succeeded (None if degraded)
- Errors from the copy fallback itself propagate (OSError)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.errors import MissingInputError
from caption_pipeline.core.ir import CaptionStyling, RenderMode
from caption_pipeline.render.engine import EngineResult, EngineStatus, EventObserver
from caption_pipeline.render.strategies import (
    CopyOriginalStrategy,
    MuxJob,
    RenderStrategy,
    strategies_for_mode,
)

logger = logging.getLogger(__name__)


@dataclass
class MuxAttempt:
    strategy: str
    result: EngineResult


@dataclass
class MuxResult:
    """Outcome of a muxing request.

    RULES:
    - output_path always exists when a MuxResult is returned
    - attempts lists every strategy tried, in order, including the copy
    """

    output_path: Path
    mode: RenderMode | None
    degraded: bool
    attempts: list[MuxAttempt] = field(default_factory=list)


class CaptionMuxer:
    """Drive the transcoding engine through the rendering fallback chain."""

    def __init__(self, engine, config: PipelineConfig | None = None) -> None:  # noqa: ANN001
        self.engine = engine
        self.config = config or PipelineConfig()

    async def mux(
        self,
        video_path: str | Path,
        subtitle_path: str | Path,
        output_path: str | Path,
        mode: RenderMode = RenderMode.BURNED,
        styling: CaptionStyling | None = None,
        duration_s: float | None = None,
        on_event: EventObserver | None = None,
    ) -> MuxResult:
        """Produce ``output_path`` showing the captions, or a degraded copy.

        Args:
            video_path: Source video.
            subtitle_path: SRT or VTT file to apply.
            output_path: Destination video path (parent dirs are created).
            mode: Preferred rendering mode.
            styling: Burn-in styling; ignored by the soft track.
            duration_s: Source duration, enables percent progress events.
            on_event: Observer for engine events.

        Raises:
            MissingInputError: If the video or subtitle file does not exist.
            OSError: If the final copy fallback cannot write the output.
        """
        job = MuxJob(
            video_path=Path(video_path),
            subtitle_path=Path(subtitle_path),
            output_path=Path(output_path),
            styling=styling,
            duration_s=duration_s,
        )
        if not job.video_path.is_file():
            raise MissingInputError(job.video_path, "Video")
        if not job.subtitle_path.is_file():
            raise MissingInputError(job.subtitle_path, "Subtitle")

        job.output_path.parent.mkdir(parents=True, exist_ok=True)

        attempts: list[MuxAttempt] = []
        for strategy in strategies_for_mode(RenderMode(mode), self.config):
            result = await self._attempt(strategy, job, on_event)
            attempts.append(MuxAttempt(strategy.name, result))
            if result.succeeded:
                logger.info("Captions applied via %s: %s", strategy.name, job.output_path)
                return MuxResult(job.output_path, strategy.mode, False, attempts)
            logger.warning(
                "Strategy %s %s: %s", strategy.name, result.status.value, result.error
            )

        fallback = CopyOriginalStrategy()
        result = await fallback.render(self.engine, job, on_event)
        attempts.append(MuxAttempt(fallback.name, result))
        logger.warning("All caption strategies failed; copied source to %s", job.output_path)
        return MuxResult(job.output_path, None, True, attempts)

    async def _attempt(
        self,
        strategy: RenderStrategy,
        job: MuxJob,
        on_event: EventObserver | None,
    ) -> EngineResult:
        """Run one strategy, converting an unexpected crash into a failed result."""
        try:
            return await strategy.render(self.engine, job, on_event)
        except Exception as exc:
            logger.warning("Strategy %s crashed", strategy.name, exc_info=True)
            return EngineResult(EngineStatus.FAILED, output_path=job.output_path, error=str(exc))
