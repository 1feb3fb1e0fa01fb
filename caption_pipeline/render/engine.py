"""Async ffmpeg/ffprobe adapter with progress events and timeouts.

WHY: Burning or attaching captions takes seconds to minutes and may hang
on broken inputs. The muxer needs each engine call to be a bounded,
non-blocking unit of work that reports a tagged outcome instead of
raising, so fallback decisions stay explicit.

HOW: FFmpegEngine.run() launches the binary with
asyncio.create_subprocess_exec, reads ``-progress pipe:1`` key/value
lines from stdout, drains stderr concurrently, and wraps the whole wait in
asyncio.wait_for. Observers receive EngineEvent objects: one STARTED,
zero or more PROGRESS, then exactly one COMPLETED or FAILED.

RULES:
- run() never raises for engine failures; it returns an EngineResult
- A timeout kills the process and yields status TIMED_OUT
- A missing binary (OSError on spawn) yields status FAILED
- Observer exceptions are logged and ignored; progress is advisory
- EngineResult.error holds the last stderr line only, never the full log
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from caption_pipeline.core.errors import EngineError
from caption_pipeline.core.ir import CaptionStyling

logger = logging.getLogger(__name__)

_PROBE_TIMEOUT_S = 30.0

# Subtitle codecs per output container for soft-track muxing
_SUBTITLE_CODECS = {
    ".mp4": "mov_text",
    ".m4v": "mov_text",
    ".mov": "mov_text",
    ".webm": "webvtt",
}

# ASS colours are &HAABBGGRR
_COLOR_NAMES = {
    "white": "FFFFFF",
    "black": "000000",
    "red": "FF0000",
    "green": "00FF00",
    "blue": "0000FF",
    "yellow": "FFFF00",
    "cyan": "00FFFF",
    "magenta": "FF00FF",
}

# ASS numpad alignment: 2 = bottom centre, 5 = middle centre, 8 = top centre
_ALIGNMENTS = {"bottom": 2, "center": 5, "top": 8}
_MARGIN_V = 20


class EngineStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class EngineEventKind(str, enum.Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineEvent:
    """One notification from a running engine invocation."""

    kind: EngineEventKind
    command: str | None = None
    percent: float | None = None
    output_path: str | None = None
    error: str | None = None


EventObserver = Callable[[EngineEvent], None]


@dataclass
class EngineResult:
    """Tagged outcome of a single engine invocation.

    RULES:
    - status is SUCCEEDED only when the process exited 0 and the expected
      output file exists
    - error is a one-line summary suitable for logs
    """

    status: EngineStatus
    command: list[str] = field(default_factory=list)
    output_path: Path | None = None
    returncode: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == EngineStatus.SUCCEEDED


def notify(observer: EventObserver | None, event: EngineEvent) -> None:
    """Deliver an event to an observer without letting it break the caller."""
    if observer is None:
        return
    try:
        observer(event)
    except Exception:
        logger.warning("Engine event observer raised on %s", event.kind.value, exc_info=True)


def escape_filter_path(path: str | Path) -> str:
    """Escape a path for use inside an ffmpeg filter argument (``subtitles=...``).

    ffmpeg unescapes ``-vf`` twice: once when it splits the filtergraph and
    again when it parses the filter's options. The path is escaped for the
    option level first, then the result is escaped for the graph level, so
    ``C:/clips/a.srt`` becomes ``C\\\\:/clips/a.srt``.
    """
    s = Path(path).as_posix()
    for char in ("\\", "'", ":"):
        s = s.replace(char, "\\" + char)
    for char in ("\\", "'", "[", "]", ",", ";"):
        s = s.replace(char, "\\" + char)
    return s


def _ass_colour(color: str) -> str:
    value = color.strip().lower()
    rgb = _COLOR_NAMES.get(value)
    if rgb is None:
        hex_value = value.lstrip("#")
        if len(hex_value) != 6 or any(c not in "0123456789abcdef" for c in hex_value):
            logger.warning("Unknown font colour %r, using white", color)
            hex_value = "ffffff"
        rgb = hex_value.upper()
    return "&H00{}{}{}".format(rgb[4:6], rgb[2:4], rgb[0:2])


def build_force_style(styling: CaptionStyling | None) -> str:
    """Translate CaptionStyling into an ffmpeg ``force_style`` value.

    Returns an empty string when no styling was requested.
    """
    if styling is None or styling.is_empty():
        return ""

    parts = []
    if styling.font_size is not None:
        parts.append("FontSize={}".format(int(styling.font_size)))
    if styling.font_color:
        parts.append("PrimaryColour={}".format(_ass_colour(styling.font_color)))
    if styling.position:
        alignment = _ALIGNMENTS.get(styling.position.lower())
        if alignment is None:
            logger.warning("Unknown caption position %r, using bottom", styling.position)
            alignment = _ALIGNMENTS["bottom"]
        parts.append("Alignment={}".format(alignment))
        parts.append("MarginV={}".format(_MARGIN_V))
    return ",".join(parts)


def burn_in_args(
    video_path: str | Path,
    subtitle_path: str | Path,
    output_path: str | Path,
    styling: CaptionStyling | None = None,
) -> list[str]:
    """ffmpeg arguments that composite subtitles into the video, copying audio."""
    video_filter = "subtitles={}".format(escape_filter_path(subtitle_path))
    force_style = build_force_style(styling)
    if force_style:
        video_filter += ":force_style='{}'".format(force_style)
    return [
        "-y",
        "-i", str(video_path),
        "-vf", video_filter,
        "-c:a", "copy",
        "-progress", "pipe:1",
        "-nostats",
        str(output_path),
    ]


def soft_track_args(
    video_path: str | Path,
    subtitle_path: str | Path,
    output_path: str | Path,
    language: str = "eng",
) -> list[str]:
    """ffmpeg arguments that add the subtitle file as a default subtitle stream."""
    codec = _SUBTITLE_CODECS.get(Path(output_path).suffix.lower(), "copy")
    return [
        "-y",
        "-i", str(video_path),
        "-i", str(subtitle_path),
        "-map", "0:v",
        "-map", "0:a?",
        "-map", "1:0",
        "-c", "copy",
        "-c:s", codec,
        "-metadata:s:s:0", "language={}".format(language),
        "-disposition:s:0", "default",
        "-progress", "pipe:1",
        "-nostats",
        str(output_path),
    ]


def parse_progress_seconds(line: str) -> float | None:
    """Return the encoded position from an ffmpeg ``-progress`` line, if present.

    ``out_time_ms`` is reported in microseconds by ffmpeg, same as ``out_time_us``.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


def _last_line(data: bytes) -> str:
    lines = [ln.strip() for ln in data.decode("utf-8", errors="replace").splitlines() if ln.strip()]
    return lines[-1] if lines else ""


class FFmpegEngine:
    """Async wrapper around the ffmpeg and ffprobe binaries.

    WHY: Keeps process handling (spawn, progress, timeout, kill) in one
    place so the rendering strategies only decide *what* to run.

    RULES:
    - Use burn_subtitles()/attach_subtitles() for muxing
    - probe_duration() raises EngineError; the muxing calls never raise
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe") -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    @classmethod
    def from_config(cls, config) -> FFmpegEngine:  # noqa: ANN001
        return cls(ffmpeg_path=config.ffmpeg_path, ffprobe_path=config.ffprobe_path)

    async def run(
        self,
        args: list[str],
        timeout_s: float,
        output_path: str | Path | None = None,
        duration_s: float | None = None,
        on_event: EventObserver | None = None,
    ) -> EngineResult:
        """Run ffmpeg with ``args`` and report the tagged outcome.

        Args:
            args: Arguments after the binary name.
            timeout_s: Wall-clock bound; the process is killed when exceeded.
            output_path: File that must exist afterwards for success.
            duration_s: Input duration, enables percent progress events.
            on_event: Optional observer for engine events.

        Returns:
            EngineResult with SUCCEEDED, FAILED or TIMED_OUT.
        """
        cmd = [self.ffmpeg_path] + list(args)
        command_line = shlex.join(cmd)
        out = Path(output_path) if output_path is not None else None

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            message = "Could not start {}: {}".format(self.ffmpeg_path, exc)
            notify(on_event, EngineEvent(EngineEventKind.FAILED, command=command_line, error=message))
            return EngineResult(EngineStatus.FAILED, command=cmd, output_path=out, error=message)

        logger.info("Engine started: %s", command_line)
        notify(on_event, EngineEvent(EngineEventKind.STARTED, command=command_line))

        stderr_task = asyncio.create_task(proc.stderr.read())

        async def _consume_progress() -> int:
            async for raw_line in proc.stdout:
                position = parse_progress_seconds(raw_line.decode("utf-8", errors="replace"))
                if position is not None and duration_s:
                    percent = max(0.0, min(100.0, position / duration_s * 100))
                    notify(on_event, EngineEvent(EngineEventKind.PROGRESS, percent=percent))
            return await proc.wait()

        try:
            returncode = await asyncio.wait_for(_consume_progress(), timeout=timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            stderr_task.cancel()
            try:
                await stderr_task
            except asyncio.CancelledError:
                pass
            message = "Timed out after {:.0f}s".format(timeout_s)
            logger.warning("Engine timed out: %s", command_line)
            notify(on_event, EngineEvent(EngineEventKind.FAILED, command=command_line, error=message))
            return EngineResult(EngineStatus.TIMED_OUT, command=cmd, output_path=out, error=message)

        stderr = await stderr_task

        if returncode != 0:
            message = _last_line(stderr) or "exit code {}".format(returncode)
            logger.warning("Engine failed (exit %s): %s", returncode, message)
            notify(on_event, EngineEvent(EngineEventKind.FAILED, command=command_line, error=message))
            return EngineResult(
                EngineStatus.FAILED, command=cmd, output_path=out, returncode=returncode, error=message
            )

        if out is not None and not out.exists():
            message = "Output file was not created"
            notify(on_event, EngineEvent(EngineEventKind.FAILED, command=command_line, error=message))
            return EngineResult(
                EngineStatus.FAILED, command=cmd, output_path=out, returncode=returncode, error=message
            )

        notify(
            on_event,
            EngineEvent(EngineEventKind.COMPLETED, output_path=str(out) if out is not None else None),
        )
        return EngineResult(EngineStatus.SUCCEEDED, command=cmd, output_path=out, returncode=returncode)

    async def burn_subtitles(
        self,
        video_path: str | Path,
        subtitle_path: str | Path,
        output_path: str | Path,
        styling: CaptionStyling | None = None,
        timeout_s: float = 600.0,
        duration_s: float | None = None,
        on_event: EventObserver | None = None,
    ) -> EngineResult:
        args = burn_in_args(video_path, subtitle_path, output_path, styling)
        return await self.run(args, timeout_s, output_path, duration_s, on_event)

    async def attach_subtitles(
        self,
        video_path: str | Path,
        subtitle_path: str | Path,
        output_path: str | Path,
        language: str = "eng",
        timeout_s: float = 300.0,
        duration_s: float | None = None,
        on_event: EventObserver | None = None,
    ) -> EngineResult:
        args = soft_track_args(video_path, subtitle_path, output_path, language)
        return await self.run(args, timeout_s, output_path, duration_s, on_event)

    async def probe_duration(self, video_path: str | Path) -> float:
        """Return the container duration of ``video_path`` in seconds.

        Raises:
            EngineError: If ffprobe is missing, fails, times out, or reports
                no usable duration.
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(video_path),
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise EngineError("Could not start {}: {}".format(self.ffprobe_path, exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_PROBE_TIMEOUT_S)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise EngineError("ffprobe timed out for {}".format(video_path))

        if proc.returncode != 0:
            raise EngineError("ffprobe failed for {}: {}".format(video_path, _last_line(stderr)))

        try:
            duration = float(json.loads(stdout)["format"]["duration"])
        except (ValueError, KeyError, TypeError) as exc:
            raise EngineError("ffprobe returned no duration for {}".format(video_path)) from exc
        return duration
