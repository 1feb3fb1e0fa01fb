"""Core timing, IR, persistence and orchestration modules.

WHY: The core package contains the stable heart of the pipeline — the
IR dataclasses, the cue timer, the subtitle writer and the orchestrator
that sequences them. Formatters, the muxer, the CLI and the API all
consume these.

HOW: ir.py defines the data structures, timing.py builds cues from script
text, writer.py persists serialized subtitles, pipeline.py runs the
stages in order and reports status, errors.py holds the shared exceptions.

RULES:
- IR dataclasses are the contract — change with care
- timing.py is format-agnostic — no serialization logic here
"""
