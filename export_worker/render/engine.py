"""Runs ffmpeg as a subprocess and reports progress while it renders."""

import asyncio
import codecs
import logging
import shlex
from collections import deque
from pathlib import Path
from typing import Awaitable, Callable

from export_worker.exceptions import EngineExecutionError, RenderTimeoutError
from export_worker.render.progress import ProgressParser

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]

STDERR_CHUNK_SIZE = 4096
STDERR_TAIL_CHARS = 2000


class FFmpegRunner:
    """Spawns ffmpeg, streams its stderr and enforces a deadline."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout_seconds: float | None = None):
        self.ffmpeg_path = ffmpeg_path
        self.timeout_seconds = timeout_seconds

    def build_command(self, arguments: list[str], output_path: str | Path) -> list[str]:
        return [self.ffmpeg_path, "-y", *arguments, str(output_path)]

    async def run(
        self,
        arguments: list[str],
        output_path: str | Path,
        duration_seconds: float,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Render to ``output_path``.

        Raises:
            EngineExecutionError: ffmpeg could not start or exited non-zero
            RenderTimeoutError: ffmpeg was still running at the deadline
        """
        command = self.build_command(arguments, output_path)
        logger.info(f"[FFMPEG] Executing: {shlex.join(command)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineExecutionError(f"Failed to start ffmpeg: {e}") from e

        parser = ProgressParser(duration_seconds)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        tail: deque[str] = deque(maxlen=STDERR_TAIL_CHARS)

        async def consume() -> int:
            while True:
                chunk = await proc.stderr.read(STDERR_CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                tail.extend(text)
                progress = parser.feed(text)
                if progress is not None and on_progress is not None:
                    await on_progress(progress)
            return await proc.wait()

        try:
            returncode = await asyncio.wait_for(consume(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise RenderTimeoutError(f"ffmpeg did not finish within {self.timeout_seconds:g}s") from None
        finally:
            if proc.returncode is None:
                logger.warning(f"[FFMPEG] Killing ffmpeg (pid={proc.pid})")
                proc.kill()
                await proc.wait()

        if returncode != 0:
            tail_text = "".join(tail).strip()
            logger.error(f"[FFMPEG] Exited with code {returncode}: {tail_text}")
            raise EngineExecutionError(
                f"ffmpeg exited with code {returncode}: {tail_text}",
                returncode=returncode,
            )
        logger.info(f"[FFMPEG] Render finished: {output_path}")
        return Path(output_path)
