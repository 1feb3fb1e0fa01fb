"""Abstract base formatter for subtitle serializations.

WHY: SRT and WebVTT carry the same cues and differ only in the header,
the index line and the millisecond separator. A common base keeps the
CLI, the API and the orchestrator format-agnostic.

HOW: BaseFormatter is an ABC with ``name``, ``extension``, ``media_type``
and a ``format()`` method. Concrete formatters share format_timestamp()
from the timing module so both formats floor milliseconds identically.

RULES:
- format() is a pure function of the cue list
- Output uses "\\n" line endings and ends every cue with a blank line
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from caption_pipeline.core.ir import CaptionCue, SubtitleDocument


class BaseFormatter(ABC):
    """Abstract base for all subtitle formatters.

    To add a new subtitle format:
    1. Create a new file in formatters/
    2. Subclass BaseFormatter
    3. Implement format(), name, extension and media_type
    4. Register in FORMATTERS dict in formatters/__init__.py
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable format name, e.g. 'SubRip (SRT)'."""

    @property
    @abstractmethod
    def extension(self) -> str:
        """File extension without the dot, e.g. 'srt'."""

    @property
    @abstractmethod
    def media_type(self) -> str:
        """MIME type for downloads."""

    @abstractmethod
    def format(self, cues: Sequence[CaptionCue]) -> str:
        """Serialize cues into the complete file content.

        Args:
            cues: Ordered cues produced by the cue timer.

        Returns:
            The subtitle file content as a string.
        """

    def format_document(self, document: SubtitleDocument) -> str:
        return self.format(document.cues)
