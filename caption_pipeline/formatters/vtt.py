"""WebVTT subtitle formatter.

WHY: Browsers' <track> element only understands WebVTT, so web players
need it alongside SRT.

RULES:
- Starts with the literal header "WEBVTT" and a blank line
- Per cue: "HH:MM:SS.mmm --> HH:MM:SS.mmm", text, blank line (no index line)
- Empty cue list → "WEBVTT\\n\\n"
- Registered as "vtt" in the FORMATTERS dict
"""

from __future__ import annotations

from typing import Sequence

from caption_pipeline.core.ir import CaptionCue
from caption_pipeline.core.timing import format_timestamp
from caption_pipeline.formatters.base import BaseFormatter

WEBVTT_HEADER = "WEBVTT\n\n"


class VTTFormatter(BaseFormatter):
    """Formatter that produces WebVTT text."""

    @property
    def name(self) -> str:
        return "WebVTT"

    @property
    def extension(self) -> str:
        return "vtt"

    @property
    def media_type(self) -> str:
        return "text/vtt"

    def format(self, cues: Sequence[CaptionCue]) -> str:
        parts = [WEBVTT_HEADER]
        for cue in cues:
            parts.append(
                "{} --> {}\n{}\n\n".format(
                    format_timestamp(cue.start, "."),
                    format_timestamp(cue.end, "."),
                    cue.text,
                )
            )
        return "".join(parts)
