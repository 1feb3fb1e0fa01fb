"""Video rendering: the ffmpeg adapter, rendering strategies and the muxer.

WHY: Everything that talks to the transcoding engine lives here, so the
core modules stay pure and testable without ffmpeg installed.

HOW: engine.py runs ffmpeg/ffprobe as asyncio subprocesses and returns
tagged results, strategies.py describes each rendering method, muxer.py
walks the strategies with fallback.
"""
