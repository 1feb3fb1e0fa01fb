"""Caption Pipeline — script-timed subtitles and caption muxing for video.

WHY: A narration script is plain prose with no timing. Players need
time-stamped cues, and many delivery targets need those cues either burned
into the picture or attached as a selectable track. This package turns
script text plus a video duration into SRT/WebVTT files and drives ffmpeg
to apply them to the source video.

HOW: Four-stage pipeline — time (core.timing), serialize (formatters),
write (core.writer), mux (render). The orchestrator in core.pipeline
sequences the stages and reports status to a record store; the CLI and
the FastAPI server are thin front-ends over it.

RULES:
- Timing and serialization are pure; only the writer and muxer touch disk
- Adding a subtitle format = one new formatter module, no core changes
- Rendering fallbacks live in the muxer's strategy list, nowhere else
"""

__version__ = "0.1.0"
