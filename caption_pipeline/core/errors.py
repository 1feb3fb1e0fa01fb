"""Exception types shared by the caption pipeline stages.

WHY: Callers (CLI, API, tests) need typed exceptions to tell a bad request
apart from an unwritable disk or a programming error, and to know which
stage failed without parsing messages.

RULES:
- Input problems are ValueError subclasses and are never retried
- PipelineError is the only exception the orchestrator raises
- Messages are human-readable; raw engine stderr never ends up in them
"""

from __future__ import annotations


class CaptionInputError(ValueError):
    """Raised when a request cannot be processed as given.

    Covers blank scripts, non-positive durations and unknown format or
    mode names.
    """


class MissingInputError(CaptionInputError):
    """Raised when the source video or subtitle file is missing before muxing."""

    def __init__(self, path: object, kind: str = "Input") -> None:
        self.path = path
        super().__init__("{} file not found: {}".format(kind, path))


class EngineError(RuntimeError):
    """Raised when the transcoding engine cannot answer a query (e.g. probing)."""


class PipelineError(Exception):
    """Structured failure surfaced by the orchestrator.

    RULES:
    - stage is the JobStatus value that was running ("timing", "writing", ...)
    - kind is "validation", "io" or "internal"
    """

    def __init__(self, stage: str, message: str, kind: str = "internal") -> None:
        self.stage = stage
        self.message = message
        self.kind = kind
        super().__init__("{} failed: {}".format(stage, message))
