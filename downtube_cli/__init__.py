"""
DownTube: a queue-based video and audio downloader driving yt-dlp and ffmpeg.
"""

__version__ = "0.1.0"
