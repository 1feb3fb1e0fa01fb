"""Tests for the caption muxer's fallback chain.

WHY: The muxer's promise is that a pipeline run always ends with a
playable video. These tests walk every branch of the fallback order
(burn-in, soft track, verbatim copy) and check the degraded flag only
appears when captions are truly absent.

HOW: FakeEngine (conftest.py) is scripted to succeed, fail, time out or
raise per method. Async calls run through asyncio.run().
"""

from __future__ import annotations

import asyncio

import pytest

from caption_pipeline.config import PipelineConfig
from caption_pipeline.core.errors import MissingInputError
from caption_pipeline.core.ir import CaptionStyling, RenderMode
from caption_pipeline.render.engine import EngineStatus
from caption_pipeline.render.muxer import CaptionMuxer
from caption_pipeline.render.strategies import (
    BurnInStrategy,
    SoftTrackStrategy,
    strategies_for_mode,
)

from conftest import FakeEngine


@pytest.fixture
def subtitle_file(tmp_path):
    path = tmp_path / "clip_subtitles.srt"
    path.write_text("1\n00:00:00,000 --> 00:00:00,500\nHi\n\n", encoding="utf-8")
    return path


def _mux(engine, video, subs, out, **kwargs):
    config = kwargs.pop("config", PipelineConfig())
    return asyncio.run(CaptionMuxer(engine, config).mux(video, subs, out, **kwargs))


# ---------------------------------------------------------------------------
# Strategy ordering
# ---------------------------------------------------------------------------


class TestStrategiesForMode:
    """strategies_for_mode() orders engine strategies per requested mode."""

    def test_burned_tries_burn_then_track(self):
        strategies = strategies_for_mode(RenderMode.BURNED, PipelineConfig())
        assert [type(s) for s in strategies] == [BurnInStrategy, SoftTrackStrategy]

    def test_track_only_tries_track(self):
        strategies = strategies_for_mode(RenderMode.TRACK, PipelineConfig())
        assert [type(s) for s in strategies] == [SoftTrackStrategy]

    def test_timeouts_and_language_come_from_config(self):
        config = PipelineConfig(burn_timeout_s=42, soft_track_timeout_s=7, subtitle_language="swe")
        burn, soft = strategies_for_mode(RenderMode.BURNED, config)
        assert burn.timeout_s == 42
        assert soft.timeout_s == 7
        assert soft.language == "swe"


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------


class TestCaptionMuxer:
    """CaptionMuxer.mux() stops at the first strategy that succeeds."""

    def test_burn_success(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine()
        styling = CaptionStyling(font_size=30)
        result = _mux(engine, video_file, subtitle_file, tmp_path / "out" / "o.mp4",
                      styling=styling, duration_s=10.0)
        assert engine.call_names == ["burn"]
        assert result.mode == RenderMode.BURNED
        assert result.degraded is False
        assert result.output_path.read_bytes() == b"captioned video"
        assert engine.calls[0][1]["styling"] == styling
        assert engine.calls[0][1]["duration_s"] == 10.0

    def test_burn_failure_falls_back_to_track(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine(burn=EngineStatus.FAILED)
        result = _mux(engine, video_file, subtitle_file, tmp_path / "o.mp4")
        assert engine.call_names == ["burn", "soft"]
        assert result.mode == RenderMode.TRACK
        assert result.degraded is False
        assert [a.strategy for a in result.attempts] == ["burn_in", "soft_track"]

    def test_burn_timeout_falls_back_to_track(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine(burn=EngineStatus.TIMED_OUT)
        result = _mux(engine, video_file, subtitle_file, tmp_path / "o.mp4")
        assert result.mode == RenderMode.TRACK
        assert result.attempts[0].result.status == EngineStatus.TIMED_OUT

    def test_total_failure_copies_original(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine(burn=EngineStatus.FAILED, soft=EngineStatus.FAILED)
        result = _mux(engine, video_file, subtitle_file, tmp_path / "o.mp4")
        assert engine.call_names == ["burn", "soft"]
        assert result.degraded is True
        assert result.mode is None
        assert result.output_path.read_bytes() == b"original video bytes"
        assert [a.strategy for a in result.attempts] == ["burn_in", "soft_track", "copy_original"]

    def test_strategy_crash_is_treated_as_failure(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine(burn=RuntimeError("filter graph exploded"))
        result = _mux(engine, video_file, subtitle_file, tmp_path / "o.mp4")
        assert result.mode == RenderMode.TRACK
        assert result.attempts[0].result.status == EngineStatus.FAILED
        assert "exploded" in result.attempts[0].result.error

    def test_track_mode_skips_burn(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine()
        config = PipelineConfig(soft_track_timeout_s=12, subtitle_language="fra")
        result = _mux(engine, video_file, subtitle_file, tmp_path / "o.mp4",
                      mode=RenderMode.TRACK, config=config)
        assert engine.call_names == ["soft"]
        assert result.mode == RenderMode.TRACK
        assert engine.calls[0][1]["timeout_s"] == 12
        assert engine.calls[0][1]["language"] == "fra"

    def test_track_mode_failure_copies_original(self, tmp_path, video_file, subtitle_file):
        engine = FakeEngine(soft=EngineStatus.FAILED)
        result = _mux(engine, video_file, subtitle_file, tmp_path / "o.mp4", mode=RenderMode.TRACK)
        assert engine.call_names == ["soft"]
        assert result.degraded is True

    def test_progress_events_reach_observer(self, tmp_path, video_file, subtitle_file):
        events = []
        _mux(FakeEngine(), video_file, subtitle_file, tmp_path / "o.mp4", on_event=events.append)
        assert any(e.percent == 50.0 for e in events)


class TestMuxerInputValidation:
    """Missing inputs are reported before the engine is touched."""

    def test_missing_video(self, tmp_path, subtitle_file):
        engine = FakeEngine()
        with pytest.raises(MissingInputError, match="Video file not found"):
            _mux(engine, tmp_path / "nope.mp4", subtitle_file, tmp_path / "o.mp4")
        assert engine.calls == []

    def test_missing_subtitles(self, tmp_path, video_file):
        engine = FakeEngine()
        with pytest.raises(MissingInputError, match="Subtitle file not found"):
            _mux(engine, video_file, tmp_path / "nope.srt", tmp_path / "o.mp4")
        assert engine.calls == []
