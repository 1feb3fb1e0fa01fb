"""Shared test fixtures for the caption_pipeline test suite.

WHY: The muxer, orchestrator, CLI and API tests all need a transcoding
engine that behaves predictably without ffmpeg installed, plus a small
source video on disk and an isolated configuration.

HOW: FakeEngine implements the same async methods as FFmpegEngine. Each
method records the call, then succeeds (writing the output file and
emitting progress events), fails, or raises, depending on how the fake
was configured.

RULES:
- A SUCCEEDED fake call always creates the output file, like ffmpeg does
- A status given as an Exception instance is raised instead of returned
- Every test gets its own storage directory under tmp_path
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.errors import EngineError
from caption_pipeline.render.engine import (
    EngineEvent,
    EngineEventKind,
    EngineResult,
    EngineStatus,
    notify,
)

EXAMPLE_SCRIPT = "He runs. He jumps! Will he make it?"


class FakeEngine:
    """Stand-in for FFmpegEngine with scripted outcomes."""

    def __init__(
        self,
        burn: Any = EngineStatus.SUCCEEDED,
        soft: Any = EngineStatus.SUCCEEDED,
        duration: float = 10.0,
        probe_error: Optional[str] = None,
    ) -> None:
        self.burn = burn
        self.soft = soft
        self.duration = duration
        self.probe_error = probe_error
        self.calls: List[Tuple[str, dict]] = []

    @property
    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def burn_subtitles(self, video_path, subtitle_path, output_path, styling=None,
                             timeout_s=600.0, duration_s=None, on_event=None):
        self.calls.append(("burn", {
            "video_path": Path(video_path),
            "subtitle_path": Path(subtitle_path),
            "output_path": Path(output_path),
            "styling": styling,
            "timeout_s": timeout_s,
            "duration_s": duration_s,
        }))
        return self._finish(self.burn, Path(output_path), on_event)

    async def attach_subtitles(self, video_path, subtitle_path, output_path, language="eng",
                               timeout_s=300.0, duration_s=None, on_event=None):
        self.calls.append(("soft", {
            "video_path": Path(video_path),
            "subtitle_path": Path(subtitle_path),
            "output_path": Path(output_path),
            "language": language,
            "timeout_s": timeout_s,
            "duration_s": duration_s,
        }))
        return self._finish(self.soft, Path(output_path), on_event)

    async def probe_duration(self, video_path):
        self.calls.append(("probe", {"video_path": Path(video_path)}))
        if self.probe_error is not None:
            raise EngineError(self.probe_error)
        return self.duration

    @staticmethod
    def _finish(status, output_path: Path, on_event) -> EngineResult:
        if isinstance(status, Exception):
            raise status
        notify(on_event, EngineEvent(EngineEventKind.STARTED, command="fake"))
        if status == EngineStatus.SUCCEEDED:
            notify(on_event, EngineEvent(EngineEventKind.PROGRESS, percent=50.0))
            output_path.write_bytes(b"captioned video")
            notify(on_event, EngineEvent(EngineEventKind.COMPLETED, output_path=str(output_path)))
            return EngineResult(status, output_path=output_path, returncode=0)
        notify(on_event, EngineEvent(EngineEventKind.FAILED, error="engine said no"))
        return EngineResult(status, output_path=output_path, returncode=1, error="engine said no")


@pytest.fixture
def fake_engine():
    """A FakeEngine where every call succeeds."""
    return FakeEngine()


@pytest.fixture
def video_file(tmp_path):
    """A small stand-in source video on disk."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"original video bytes")
    return path


@pytest.fixture
def pipeline_config(tmp_path):
    """PipelineConfig rooted in the test's temp directory."""
    return PipelineConfig(storage_dir=tmp_path / "storage")
