"""Progress tracking from ffmpeg's diagnostic stream.

ffmpeg writes status lines such as ``frame= 450 fps= 90 ... time=00:00:15.00 ...``
to stderr, separated by ``\\r``. ``ProgressParser`` consumes stderr chunk by
chunk and only ever holds the trailing partial line, so memory stays bounded
regardless of how long the render runs.
"""

import re

TIME_PATTERN = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
LINE_BREAK = re.compile(r"[\r\n]")

# Progress 100 is reserved for a finished, uploaded render.
MAX_RUNNING_PROGRESS = 99
MAX_PARTIAL_LINE = 4096


def parse_elapsed_seconds(text: str) -> float | None:
    """Elapsed seconds from the last ``time=HH:MM:SS.ms`` token in ``text``."""
    matches = TIME_PATTERN.findall(text)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def compute_progress(elapsed_seconds: float, duration_seconds: float) -> int:
    if duration_seconds <= 0:
        return 0
    progress = round(100 * elapsed_seconds / duration_seconds)
    return max(0, min(MAX_RUNNING_PROGRESS, progress))


class ProgressParser:
    def __init__(self, duration_seconds: float):
        self.duration_seconds = duration_seconds
        self.progress: int | None = None
        self._partial = ""

    def feed(self, chunk: str) -> int | None:
        """Consume a chunk of stderr; return the new progress if it changed."""
        lines = LINE_BREAK.split(self._partial + chunk)
        self._partial = lines.pop()[-MAX_PARTIAL_LINE:]

        elapsed = parse_elapsed_seconds("\n".join(lines))
        if elapsed is None:
            return None
        progress = compute_progress(elapsed, self.duration_seconds)
        if progress == self.progress:
            return None
        self.progress = progress
        return progress
