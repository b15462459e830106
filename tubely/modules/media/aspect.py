"""Aspect ratio classification for uploaded videos.

The category only selects the storage key prefix; it never affects
transcoding or validation.
"""

import logging
from enum import Enum
from pathlib import Path

from tubely.modules.media.ffmpeg import MediaProber

logger = logging.getLogger(__name__)

RATIO_TOLERANCE = 0.01

LANDSCAPE_RATIO = 16 / 9
PORTRAIT_RATIO = 9 / 16
SQUARE_RATIO = 1.0


class AspectCategory(str, Enum):
    """Coarse orientation of a video."""

    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    OTHER = "other"


def classify_dimensions(width: int, height: int) -> AspectCategory:
    """Classify pixel dimensions into an AspectCategory.

    Two tiers: the ratio is first matched against 16:9, 9:16 and 1:1 within
    RATIO_TOLERANCE, then against 16:9 and 9:16 using integer division. The
    second tier has no square case, so square only comes from the first.

    Args:
        width: Pixel width
        height: Pixel height

    Returns:
        AspectCategory
    """
    if height == 0:
        return AspectCategory.OTHER

    ratio = width / height
    if abs(ratio - LANDSCAPE_RATIO) <= RATIO_TOLERANCE:
        return AspectCategory.LANDSCAPE
    if abs(ratio - PORTRAIT_RATIO) <= RATIO_TOLERANCE:
        return AspectCategory.PORTRAIT
    if abs(ratio - SQUARE_RATIO) <= RATIO_TOLERANCE:
        return AspectCategory.OTHER

    if width == 16 * height // 9:
        return AspectCategory.LANDSCAPE
    if height == 16 * width // 9:
        return AspectCategory.PORTRAIT
    return AspectCategory.OTHER


class AspectClassifier:
    """Probes a video file and classifies its orientation."""

    def __init__(self, prober: MediaProber):
        self.prober = prober

    async def classify(self, path: Path) -> AspectCategory:
        """Classify the video at ``path``.

        Raises:
            ProbeFailedError, ProbeOutputInvalidError, NoStreamFoundError:
                propagated from the prober, never retried
        """
        geometry = await self.prober.probe(path)
        category = classify_dimensions(geometry.width, geometry.height)
        logger.debug(
            "Classified video geometry",
            extra={"width": geometry.width, "height": geometry.height, "category": category.value},
        )
        return category
