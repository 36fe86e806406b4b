"""
Recodarr encoding queue.

Accepts transcode requests, runs at most N ffmpeg processes at a time,
tracks per-job lifecycle and progress, and installs finished outputs over
the originals without risking the library's files.
"""

__version__ = "0.1.0"
