"""Intermediate representation dataclasses for timed captions.

WHY: The timer, the serializers, the muxer and the record store all need
to agree on what a cue, a subtitle document, a rendering mode and a
pipeline status are. The IR provides a single, well-typed vocabulary that
every stage consumes, decoupling timing from formatting and rendering.

HOW: Small dataclasses and str-enums:
  CaptionCue        — one timed caption (index, start, end, text)
  SubtitleDocument  — ordered cues plus the output format
  TimingParameters  — reading rate, pacing buffer, inter-cue gap
  CaptionStyling    — the fixed burn-in styling knobs
  SubtitleFormat / RenderMode / JobStatus — closed value sets

RULES:
- All times are float seconds from video start
- Cues are created by the timer only and never mutated afterwards
- Enums inherit from str so values serialize cleanly to JSON
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from caption_pipeline.config import INTER_CUE_GAP_S, PACING_BUFFER, WORDS_PER_MINUTE


class SubtitleFormat(str, enum.Enum):
    """Supported subtitle serializations."""

    SRT = "srt"
    VTT = "vtt"


class RenderMode(str, enum.Enum):
    """How captions are applied to the video.

    RULES:
    - burned: composited into the pixels (request value "hard")
    - track: separate selectable subtitle stream (request value "soft")
    """

    BURNED = "burned"
    TRACK = "track"

    @classmethod
    def from_subtitle_type(cls, value: str) -> RenderMode:
        """Map a request's ``hard``/``soft`` (or a mode name) to a RenderMode."""
        aliases = {"hard": cls.BURNED, "soft": cls.TRACK}
        key = value.strip().lower()
        if key in aliases:
            return aliases[key]
        return cls(key)


class JobStatus(str, enum.Enum):
    """Lifecycle of a captioning record.

    WHY: The orchestrator reports each stage boundary so pollers can show
    progress and failures can name the stage they happened in.

    RULES:
    - queued → timing → serializing → writing → muxing → completed
    - failed is reachable from any non-terminal state
    """

    QUEUED = "queued"
    TIMING = "timing"
    SERIALIZING = "serializing"
    WRITING = "writing"
    MUXING = "muxing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class CaptionCue:
    """A single timed caption.

    RULES:
    - index is 1-based and contiguous within a document
    - 0 <= start < end
    - text is trimmed and non-empty
    """

    index: int
    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class TimingParameters:
    """Knobs for word-count based pacing."""

    words_per_minute: float = WORDS_PER_MINUTE
    pacing_buffer: float = PACING_BUFFER
    gap_s: float = INTER_CUE_GAP_S


@dataclass(frozen=True)
class CaptionStyling:
    """Fixed styling parameters handed to the burn-in filter.

    RULES:
    - position is one of "top", "bottom", "center" (or None for default)
    - font_color accepts a color name or #RRGGBB hex
    """

    font_size: int | None = None
    font_color: str | None = None
    position: str | None = None

    def is_empty(self) -> bool:
        return self.font_size is None and self.font_color is None and self.position is None


@dataclass
class SubtitleDocument:
    """Ordered cues plus the format they will be serialized to."""

    format: SubtitleFormat
    cues: list[CaptionCue] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.cues)
