"""Fast-start remuxing.

Moves the MP4 moov atom ahead of the media data so players can start before
the whole file is downloaded. Streams are copied, never re-encoded.
"""

import logging
from pathlib import Path

from tubely.core.errors import TranscodeProducedEmptyOutputError
from tubely.modules.media.ffmpeg import Remuxer

logger = logging.getLogger(__name__)

PROCESSING_INFIX = ".processing"


def derive_processing_path(input_path: Path) -> Path:
    """Insert the processing infix before the extension.

    ``/tmp/upload.mp4`` becomes ``/tmp/upload.processing.mp4``.
    """
    return input_path.with_name(f"{input_path.stem}{PROCESSING_INFIX}{input_path.suffix}")


def _discard(path: Path) -> None:
    path.unlink(missing_ok=True)


class FastStartTranscoder:
    """Rewrites a video container for progressive playback."""

    def __init__(self, remuxer: Remuxer):
        self.remuxer = remuxer

    async def remux(self, input_path: Path) -> Path:
        """Remux ``input_path`` into a sibling fast-start file.

        The input is left untouched; the caller owns the returned file.

        Returns:
            Path of the remuxed output

        Raises:
            TranscodeFailedError: If the remuxer fails; no output is left behind
            TranscodeProducedEmptyOutputError: If the output is missing or empty
        """
        output_path = derive_processing_path(input_path)

        try:
            await self.remuxer.remux(input_path, output_path)
        except BaseException:
            # Includes cancellation; a partial file must not survive
            _discard(output_path)
            raise

        # Exit status alone is not trusted
        if not output_path.is_file() or output_path.stat().st_size == 0:
            _discard(output_path)
            raise TranscodeProducedEmptyOutputError(
                f"Remux of {input_path.name} produced no output"
            )

        logger.debug(
            "Remuxed for fast start",
            extra={"output_path": str(output_path), "file_size": output_path.stat().st_size},
        )
        return output_path
