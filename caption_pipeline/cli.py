"""Command-line interface for the caption pipeline.

WHY: Editors need a quick way to caption a single video from the terminal
without running the API server. The CLI wires together file validation,
script loading, the pipeline orchestrator and ffmpeg behind one command.

HOW: Uses argparse to accept a video file, the script (as a file path or
inline text), subtitle format, rendering mode, burn-in styling and an
output directory. Runs the async pipeline via asyncio.run(). Status
messages go to stderr; the JSON result goes to stdout so the CLI can be
piped into other tools.

RULES:
- Positional argument: video file path (omit with --captions-only)
- Script from --script FILE or --script-text TEXT; otherwise a companion
  file {stem}-script.txt or {stem}.txt next to the video is used
- --captions-only writes the subtitle file and never touches ffmpeg;
  --duration is then required
- Output naming: {stem}_subtitles.{format}, {stem}_with_subtitles.mp4
- Status output goes to stderr (not stdout); exit code 1 on any failure
- Python 3.9 compatible — no match/case, no X | Y unions
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from caption_pipeline.config import SUPPORTED_VIDEO_FORMATS, load_config
from caption_pipeline.core.errors import PipelineError
from caption_pipeline.core.ir import CaptionStyling, RenderMode, SubtitleFormat
from caption_pipeline.core.pipeline import CaptionRequest, run_caption_pipeline
from caption_pipeline.render.engine import EngineEvent, EngineEventKind


def _status(msg: str) -> None:
    """Print a status message to stderr, flushed immediately."""
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


class _ProgressPrinter:
    """Engine observer that prints status lines at every 25% step."""

    def __init__(self) -> None:
        self._last_step = -1

    def __call__(self, event: EngineEvent) -> None:
        if event.kind == EngineEventKind.STARTED:
            self._last_step = -1
            _status("  Running ffmpeg...")
        elif event.kind == EngineEventKind.PROGRESS and event.percent is not None:
            step = int(event.percent // 25)
            if step > self._last_step:
                self._last_step = step
                _status("  {:.0f}%".format(event.percent))
        elif event.kind == EngineEventKind.FAILED:
            _status("  ffmpeg attempt failed: {}".format(event.error))


def _resolve_script(args: argparse.Namespace, video_path: Optional[Path]) -> str:
    """Return the script text from the flags or a companion file.

    RULES:
    - --script-text wins over --script
    - Companion lookup order: {stem}-script.txt, then {stem}.txt
    """
    if args.script_text is not None:
        return args.script_text

    if args.script:
        script_path = Path(args.script)
        if not script_path.is_file():
            _fail("Script file not found: {}".format(script_path))
        return script_path.read_text(encoding="utf-8")

    if video_path is not None:
        for candidate in (
            video_path.with_name(video_path.stem + "-script.txt"),
            video_path.with_suffix(".txt"),
        ):
            if candidate.is_file():
                _status("Using companion script: {}".format(candidate.name))
                return candidate.read_text(encoding="utf-8")

    _fail("No script given. Use --script FILE or --script-text TEXT.")
    return ""


def _build_styling(args: argparse.Namespace) -> Optional[CaptionStyling]:
    styling = CaptionStyling(
        font_size=args.font_size,
        font_color=args.font_color,
        position=args.position,
    )
    return None if styling.is_empty() else styling


async def _run_pipeline(args: argparse.Namespace) -> None:
    """Validate arguments, run the pipeline, and print the JSON result.

    RULES:
    - Validate the video before any engine call
    - Status messages to stderr at each step
    """
    video_path: Optional[Path] = None
    if not args.captions_only:
        if not args.input_file:
            _fail("A video file is required unless --captions-only is given.")
        video_path = Path(args.input_file).resolve()
        if not video_path.is_file():
            _fail("File not found: {}".format(video_path))
        ext = video_path.suffix.lower()
        if ext not in SUPPORTED_VIDEO_FORMATS:
            _fail(
                "Unsupported file type '{}'. Supported formats: {}".format(
                    ext, ", ".join(sorted(SUPPORTED_VIDEO_FORMATS))
                )
            )
    elif args.duration is None:
        _fail("--duration is required with --captions-only.")

    script_text = _resolve_script(args, video_path)

    # Determine output directory and naming stem
    if args.output_dir:
        output_dir = Path(args.output_dir).resolve()
    elif video_path is not None:
        output_dir = video_path.parent
    else:
        output_dir = Path.cwd()

    if args.input_file:
        stem = Path(args.input_file).stem
    elif args.script:
        stem = Path(args.script).stem
    else:
        stem = "captions"

    request = CaptionRequest(
        script_text=script_text,
        video_duration_s=args.duration,
        subtitle_format=SubtitleFormat(args.format),
        render_mode=RenderMode.from_subtitle_type(args.mode),
        styling=_build_styling(args),
        video_path=video_path,
        output_dir=output_dir,
        record_id=stem,
    )

    _status("Generating {} captions...".format(request.subtitle_format.value.upper()))
    try:
        result = await run_caption_pipeline(
            request,
            config=load_config(),
            on_event=_ProgressPrinter(),
        )
    except PipelineError as exc:
        _fail(exc.message)

    _status("  {} caption(s) written to {}".format(result.cue_count, result.subtitle_path))
    if result.video_with_subtitles is not None:
        if result.degraded:
            _status("Warning: captions could not be applied; copied the original video.")
        else:
            _status("  Captions {} into {}".format(
                "burned" if result.render_mode == RenderMode.BURNED else "attached",
                result.video_with_subtitles,
            ))
    _status("Done!")

    print(json.dumps(result.to_dict(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    Separate from main() so tests can inspect the parser without running
    the pipeline.
    """
    parser = argparse.ArgumentParser(
        prog="caption_pipeline",
        description="Generate timed SRT/WebVTT captions from a script and "
                    "burn them into (or attach them to) a video.",
    )

    parser.add_argument(
        "input_file",
        nargs="?",
        default=None,
        help="Path to the video file to caption.",
    )

    script_group = parser.add_mutually_exclusive_group()
    script_group.add_argument(
        "--script",
        default=None,
        help="Path to a plain-text script file.",
    )
    script_group.add_argument(
        "--script-text",
        default=None,
        help="Script text given inline.",
    )

    parser.add_argument(
        "--format",
        choices=[f.value for f in SubtitleFormat],
        default=SubtitleFormat.SRT.value,
        help="Subtitle format (default: %(default)s).",
    )

    parser.add_argument(
        "--mode",
        choices=["hard", "soft"],
        default="hard",
        help="'hard' burns captions in, 'soft' attaches a subtitle track "
             "(default: %(default)s).",
    )

    parser.add_argument(
        "--captions-only",
        action="store_true",
        help="Only write the subtitle file; do not process any video.",
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Video duration in seconds (probed with ffprobe when omitted).",
    )

    parser.add_argument(
        "--font-size",
        type=int,
        default=None,
        help="Burn-in font size in points.",
    )

    parser.add_argument(
        "--font-color",
        default=None,
        help="Burn-in font colour: a name (e.g. yellow) or #RRGGBB.",
    )

    parser.add_argument(
        "--position",
        choices=["top", "bottom", "center"],
        default=None,
        help="Burn-in caption placement.",
    )

    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory to save output files (default: next to the video).",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log pipeline details to stderr.",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(_run_pipeline(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
