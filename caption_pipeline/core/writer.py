"""Subtitle file persistence.

WHY: The serialized subtitle text must exist on disk before ffmpeg can
burn or attach it, and users download the same file afterwards.

RULES:
- Parent directories are created recursively
- Writes replace the whole file (never append)
- OSError propagates to the caller; nothing is swallowed here
"""

from __future__ import annotations

import logging
from pathlib import Path

from caption_pipeline.core.ir import SubtitleFormat

logger = logging.getLogger(__name__)


def subtitle_filename(record_id: str, subtitle_format: SubtitleFormat | str) -> str:
    """Return the conventional subtitle filename for a record, e.g. ``abc_subtitles.srt``."""
    return "{}_subtitles.{}".format(record_id, SubtitleFormat(subtitle_format).value)


def write_subtitle_file(content: str, path: str | Path) -> Path:
    """Write ``content`` as the complete UTF-8 contents of ``path``.

    Returns:
        The path written, as a Path.

    Raises:
        OSError: If the directory cannot be created or the file written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.debug("Wrote %d chars to %s", len(content), path)
    return path
