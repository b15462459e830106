"""FFmpeg/FFprobe process invocation.

Both tools are reached through narrow interfaces (MediaProber, Remuxer) so
callers can substitute fakes instead of spawning binaries. Processes are
launched with asyncio and killed when the awaiting task is cancelled, so a
dropped request never leaves an ffmpeg process running.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from tubely.core.errors import (
    NoStreamFoundError,
    ProbeFailedError,
    ProbeOutputInvalidError,
    TranscodeFailedError,
)

logger = logging.getLogger(__name__)

# Bytes of stderr kept on errors
STDERR_TAIL = 2000


@dataclass(frozen=True)
class StreamGeometry:
    """Pixel dimensions of a video stream."""
    width: int
    height: int


@dataclass
class ProcessResult:
    """Outcome of an external process run."""
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def stderr_tail(self) -> str:
        return self.stderr[-STDERR_TAIL:].decode("utf-8", errors="replace")


class MediaProber(Protocol):
    async def probe(self, path: Path) -> StreamGeometry: ...


class Remuxer(Protocol):
    async def remux(self, input_path: Path, output_path: Path) -> None: ...


async def run_process(cmd: list[str]) -> ProcessResult:
    """Run a command to completion, killing it if the caller is cancelled.

    Raises:
        OSError: If the executable cannot be launched
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
            logger.warning("Killed external process after cancellation", extra={"cmd": cmd[0]})
        raise
    return ProcessResult(process.returncode, stdout, stderr)


def parse_probe_output(output: bytes | str) -> StreamGeometry:
    """Parse ffprobe JSON output into the first stream's geometry.

    Args:
        output: ffprobe stdout with ``-print_format json -show_streams``

    Returns:
        StreamGeometry of the first stream

    Raises:
        ProbeOutputInvalidError: If output is not the expected JSON schema
        NoStreamFoundError: If the stream list is empty
    """
    try:
        data = json.loads(output)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProbeOutputInvalidError("ffprobe output is not valid JSON", e) from e

    if not isinstance(data, dict) or not isinstance(data.get("streams"), list):
        raise ProbeOutputInvalidError("ffprobe output has no streams list")

    streams = data["streams"]
    if not streams:
        raise NoStreamFoundError("No streams found in file")

    first = streams[0]
    if not isinstance(first, dict):
        raise ProbeOutputInvalidError("ffprobe stream entry is not an object")

    width = first.get("width")
    height = first.get("height")
    for name, value in (("width", width), ("height", height)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ProbeOutputInvalidError(f"ffprobe stream has no integer {name}")

    return StreamGeometry(width=width, height=height)


class FFprobeProber:
    """Stream probe backed by the ffprobe binary."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    def build_probe_command(self, path: Path) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v",
            "-print_format", "json",
            "-show_streams",
            str(path),
        ]

    async def probe(self, path: Path) -> StreamGeometry:
        """Get the first video stream's dimensions.

        Raises:
            ProbeFailedError: If ffprobe cannot run or exits nonzero
            ProbeOutputInvalidError: If the output cannot be parsed
            NoStreamFoundError: If no video stream is present
        """
        try:
            result = await run_process(self.build_probe_command(path))
        except OSError as e:
            raise ProbeFailedError(f"Couldn't launch {self.ffprobe_path}", e) from e

        if result.returncode != 0:
            raise ProbeFailedError(
                f"ffprobe exited with status {result.returncode}",
                stderr=result.stderr_tail,
            )

        return parse_probe_output(result.stdout)


class FFmpegRemuxer:
    """Stream-copy remuxer backed by the ffmpeg binary."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def build_remux_command(self, input_path: Path, output_path: Path) -> list[str]:
        """Build the ffmpeg command for a fast-start remux.

        Streams are copied verbatim; only the container is rewritten with the
        moov atom moved to the front.
        """
        return [
            self.ffmpeg_path,
            "-y",  # Overwrite output
            "-v", "error",
            "-i", str(input_path),
            "-c", "copy",
            "-movflags", "faststart",
            "-f", "mp4",
            str(output_path),
        ]

    async def remux(self, input_path: Path, output_path: Path) -> None:
        """Remux ``input_path`` into ``output_path``.

        Raises:
            TranscodeFailedError: If ffmpeg cannot run or exits nonzero
        """
        try:
            result = await run_process(self.build_remux_command(input_path, output_path))
        except OSError as e:
            raise TranscodeFailedError(f"Couldn't launch {self.ffmpeg_path}", e) from e

        if result.returncode != 0:
            raise TranscodeFailedError(
                f"ffmpeg exited with status {result.returncode}",
                stderr=result.stderr_tail,
            )
