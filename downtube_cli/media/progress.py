"""
Parsing of yt-dlp progress output.
"""

import math
import re
from typing import Optional

PROGRESS_RE = re.compile(r"\[download\]\s+(\d{1,3}\.\d)%")


def parse_progress_percent(text: str) -> Optional[int]:
    """
    Extracts the download percentage from a chunk of yt-dlp output.

    The last marker in `text` wins, since a chunk may hold several updates.
    Halves round up, so ``99.5%`` reports as 100.

    Returns:
        An integer in [0, 100], or None if `text` has no progress marker.
    """
    matches = PROGRESS_RE.findall(text)
    if not matches:
        return None
    value = math.floor(float(matches[-1]) + 0.5)
    return max(0, min(100, value))
