"""Media processing module.

Implements ffprobe-based aspect classification, ffmpeg fast-start remuxing,
and storage key derivation for uploaded assets.
"""

from tubely.modules.media.aspect import AspectCategory, AspectClassifier, classify_dimensions
from tubely.modules.media.faststart import FastStartTranscoder, derive_processing_path
from tubely.modules.media.ffmpeg import (
    FFmpegRemuxer,
    FFprobeProber,
    MediaProber,
    Remuxer,
    StreamGeometry,
)
from tubely.modules.media.keys import AssetKeyGenerator, media_type_to_extension

__all__ = [
    "AspectCategory",
    "AspectClassifier",
    "classify_dimensions",
    "FastStartTranscoder",
    "derive_processing_path",
    "FFmpegRemuxer",
    "FFprobeProber",
    "MediaProber",
    "Remuxer",
    "StreamGeometry",
    "AssetKeyGenerator",
    "media_type_to_extension",
]
