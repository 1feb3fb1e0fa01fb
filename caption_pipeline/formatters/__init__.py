"""Subtitle formatter registry — pluggable format hub.

WHY: The CLI, the API and the orchestrator need a single lookup to find
the right serializer by format name. A central dict makes it trivial to
add new formats: create the formatter class, import it here, add one line.

HOW: FORMATTERS maps SubtitleFormat values to formatter *classes* (not
instances). Callers instantiate as needed: ``FORMATTERS["srt"]()``.

RULES:
- Keys are SubtitleFormat values ("srt", "vtt")
- Every formatter listed here must be importable without side effects
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from caption_pipeline.core.errors import CaptionInputError
from caption_pipeline.formatters.srt import SRTFormatter
from caption_pipeline.formatters.vtt import VTTFormatter

if TYPE_CHECKING:
    from caption_pipeline.formatters.base import BaseFormatter

FORMATTERS: dict[str, type[BaseFormatter]] = {
    "srt": SRTFormatter,
    "vtt": VTTFormatter,
}


def get_formatter(subtitle_format: str) -> BaseFormatter:
    """Instantiate the formatter registered for ``subtitle_format``.

    Raises:
        CaptionInputError: If no formatter is registered under that name.
    """
    key = getattr(subtitle_format, "value", subtitle_format)
    if key not in FORMATTERS:
        raise CaptionInputError(
            "Unknown subtitle format '{}'. Available: {}".format(
                key, ", ".join(sorted(FORMATTERS))
            )
        )
    return FORMATTERS[key]()
