"""
Media Processing Layer.

This package drives the external tools: metadata probing, playlist expansion,
per-job download/merge execution and integrity validation.
"""

from .binaries import Binaries
from .integrity import FileIntegrityChecker
from .playlist import PlaylistExpander
from .probe import MetadataProbe
from .runner import ProcessRunner, RunOutcome

__all__ = [
    "Binaries",
    "FileIntegrityChecker",
    "MetadataProbe",
    "PlaylistExpander",
    "ProcessRunner",
    "RunOutcome",
]
