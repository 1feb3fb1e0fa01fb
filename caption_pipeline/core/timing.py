"""Word-count based cue timing for narration scripts.

WHY: Scripts arrive as prose with no timestamps, and no speech-to-text
alignment is available. Estimating reading time from word counts gives
captions that track a narrator closely enough while staying fully
deterministic.

HOW: Split the script into sentences on runs of terminal punctuation,
give each sentence (words / wpm) * 60 seconds inflated by a pacing
buffer, and walk a cursor through the video with a fixed gap between
cues. Every end time is clamped to the video duration.

RULES:
- 180 words per minute, 20% pacing buffer, 0.5 s gap by default
- Zero sentences → zero cues (not an error)
- Cues that would start at or after the video end are dropped
- Pure functions: same input always yields the same cues
"""

from __future__ import annotations

import logging
import math
import re

from caption_pipeline.core.errors import CaptionInputError
from caption_pipeline.core.ir import (
    CaptionCue,
    SubtitleDocument,
    SubtitleFormat,
    TimingParameters,
)

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

DEFAULT_TIMING = TimingParameters()


def split_sentences(script_text: str) -> list[str]:
    """Split script text into trimmed, non-empty sentences.

    Runs of ``.``, ``!`` and ``?`` count as one delimiter, so ``"Wait...
    what?!"`` yields ``["Wait", "what"]``.
    """
    segments = (s.strip() for s in _SENTENCE_SPLIT_RE.split(script_text or ""))
    return [s for s in segments if s]


def count_words(sentence: str) -> int:
    return len(sentence.split())


def sentence_duration(word_count: int, timing: TimingParameters = DEFAULT_TIMING) -> float:
    """Seconds a sentence of ``word_count`` words stays on screen."""
    raw = (word_count / timing.words_per_minute) * 60
    return raw * timing.pacing_buffer


def validate_duration(video_duration: float) -> float:
    """Return the duration as float, raising CaptionInputError when unusable."""
    try:
        value = float(video_duration)
    except (TypeError, ValueError):
        raise CaptionInputError("Video duration must be a number, got {!r}".format(video_duration))
    if not math.isfinite(value) or value <= 0:
        raise CaptionInputError("Video duration must be positive, got {}".format(video_duration))
    return value


def build_cues(
    script_text: str,
    video_duration: float,
    timing: TimingParameters = DEFAULT_TIMING,
) -> list[CaptionCue]:
    """Convert script text into ordered, non-overlapping caption cues.

    Args:
        script_text: Narration prose. Sentences end with ``.``, ``!`` or ``?``.
        video_duration: Total video length in seconds (> 0).
        timing: Reading rate, pacing buffer and inter-cue gap.

    Returns:
        Cues with 1-based contiguous indices whose end times never exceed
        ``video_duration``.

    Raises:
        CaptionInputError: If the duration is not a positive number.
    """
    duration = validate_duration(video_duration)
    sentences = split_sentences(script_text)

    cues: list[CaptionCue] = []
    current_time = 0.0

    for position, sentence in enumerate(sentences):
        if current_time >= duration:
            # Remaining sentences would get zero or negative width
            logger.debug(
                "Dropping %d trailing sentence(s) past %.3fs",
                len(sentences) - position,
                duration,
            )
            break

        end = min(current_time + sentence_duration(count_words(sentence), timing), duration)
        cues.append(CaptionCue(index=len(cues) + 1, start=current_time, end=end, text=sentence))
        current_time = end + timing.gap_s

    return cues


def build_document(
    script_text: str,
    video_duration: float,
    subtitle_format: SubtitleFormat | str = SubtitleFormat.SRT,
    timing: TimingParameters = DEFAULT_TIMING,
) -> SubtitleDocument:
    """Time a script and wrap the cues in a SubtitleDocument."""
    try:
        fmt = SubtitleFormat(subtitle_format)
    except ValueError:
        raise CaptionInputError(
            "Unknown subtitle format '{}'. Available: {}".format(
                subtitle_format, ", ".join(f.value for f in SubtitleFormat)
            )
        )
    return SubtitleDocument(format=fmt, cues=build_cues(script_text, video_duration, timing))


def format_timestamp(seconds: float, separator: str = ",") -> str:
    """Format seconds as ``HH:MM:SS<sep>mmm``.

    Milliseconds are floored, not rounded: 1.9999 → ``00:00:01,999``.
    """
    hours = math.floor(seconds / 3600)
    minutes = math.floor((seconds % 3600) / 60)
    secs = math.floor(seconds % 60)
    millis = math.floor((seconds % 1) * 1000)
    return "{:02d}:{:02d}:{:02d}{}{:03d}".format(hours, minutes, secs, separator, millis)
