"""SubRip (SRT) subtitle formatter.

WHY: SRT is the most widely accepted sidecar format and the one ffmpeg's
subtitles filter burns most reliably.

RULES:
- Per cue: index line, "HH:MM:SS,mmm --> HH:MM:SS,mmm", text, blank line
- Empty cue list → empty string
- Registered as "srt" in the FORMATTERS dict
"""

from __future__ import annotations

from typing import Sequence

from caption_pipeline.core.ir import CaptionCue
from caption_pipeline.core.timing import format_timestamp
from caption_pipeline.formatters.base import BaseFormatter


class SRTFormatter(BaseFormatter):
    """Formatter that produces SubRip text."""

    @property
    def name(self) -> str:
        return "SubRip (SRT)"

    @property
    def extension(self) -> str:
        return "srt"

    @property
    def media_type(self) -> str:
        return "application/x-subrip"

    def format(self, cues: Sequence[CaptionCue]) -> str:
        blocks = []
        for cue in cues:
            blocks.append(
                "{}\n{} --> {}\n{}\n\n".format(
                    cue.index,
                    format_timestamp(cue.start, ","),
                    format_timestamp(cue.end, ","),
                    cue.text,
                )
            )
        return "".join(blocks)
