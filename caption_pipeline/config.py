"""Configuration constants, environment defaults, and the pipeline config.

WHY: Centralizes all configurable values so they are easy to find,
update, and override. Reading rate, pacing, engine timeouts, storage
paths and accepted upload formats live here as plain data, so both
people and tooling can change them without touching pipeline logic.

HOW: python-dotenv loads the .env file on import. Defaults are module-level
constants read from the environment. load_config() snapshots them into a
frozen PipelineConfig that is built once at process start and passed to
the orchestrator, muxer, engine, CLI and API explicitly.

RULES:
- Nothing outside this module reads os.environ
- PipelineConfig is immutable; use dataclasses.replace() for overrides
- Timeouts are seconds; burn-in 600, soft track 300 unless overridden
- SUPPORTED_VIDEO_FORMATS lists accepted upload extensions (lowercase, with dot)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Cue timing defaults
# ---------------------------------------------------------------------------

WORDS_PER_MINUTE = 180.0
PACING_BUFFER = 1.2
INTER_CUE_GAP_S = 0.5

# ---------------------------------------------------------------------------
# Supported upload extensions
# ---------------------------------------------------------------------------

SUPPORTED_VIDEO_FORMATS: set[str] = {
    ".mp4", ".mov", ".m4v", ".mkv", ".avi", ".webm",
}
"""Video file extensions accepted for upload (lowercase, with dot)."""

MAX_UPLOAD_BYTES = 100 * 1024 * 1024

# ---------------------------------------------------------------------------
# Environment-driven defaults
# ---------------------------------------------------------------------------

FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
BURN_TIMEOUT_S = float(os.getenv("CAPTION_BURN_TIMEOUT_S", "600"))
SOFT_TRACK_TIMEOUT_S = float(os.getenv("CAPTION_SOFT_TIMEOUT_S", "300"))
SUBTITLE_LANGUAGE = os.getenv("CAPTION_SUBTITLE_LANGUAGE", "eng")
STORAGE_DIR = os.getenv("CAPTION_STORAGE_DIR", "./storage/processed")
RECORDS_FILE = os.getenv("CAPTION_RECORDS_FILE", "")
JOB_TTL_SECONDS = int(os.getenv("CAPTION_JOB_TTL_SECONDS", "3600"))
MAX_JOBS = int(os.getenv("CAPTION_MAX_JOBS", "100"))
API_HOST = os.getenv("CAPTION_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("CAPTION_API_PORT", "8000"))


@dataclass(frozen=True)
class PipelineConfig:
    """Process-wide settings injected into every pipeline collaborator.

    WHY: The engine binaries, timeouts and storage locations vary per host.
    Passing one immutable object around (instead of importing globals)
    keeps collaborators testable with fakes and temp directories.

    RULES:
    - records_file=None means the record store is memory-only
    - storage_dir holds one sub-directory per record id
    """

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    burn_timeout_s: float = 600.0
    soft_track_timeout_s: float = 300.0
    subtitle_language: str = "eng"
    storage_dir: Path = field(default_factory=lambda: Path("./storage/processed"))
    records_file: Path | None = None
    job_ttl_seconds: int = 3600
    max_jobs: int = 100


def load_config() -> PipelineConfig:
    """Build a PipelineConfig from the environment (after .env loading)."""
    return PipelineConfig(
        ffmpeg_path=FFMPEG_PATH,
        ffprobe_path=FFPROBE_PATH,
        burn_timeout_s=BURN_TIMEOUT_S,
        soft_track_timeout_s=SOFT_TRACK_TIMEOUT_S,
        subtitle_language=SUBTITLE_LANGUAGE,
        storage_dir=Path(STORAGE_DIR),
        records_file=Path(RECORDS_FILE) if RECORDS_FILE else None,
        job_ttl_seconds=JOB_TTL_SECONDS,
        max_jobs=MAX_JOBS,
    )
