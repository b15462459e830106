"""Video management module."""

from tubely.modules.video.models import Video
from tubely.modules.video.pipeline import (
    PipelineStage,
    UploadPipeline,
    UploadRequest,
    parse_media_type,
)
from tubely.modules.video.repository import VideoRepository
from tubely.modules.video.service import VideoService

__all__ = [
    # Models
    "Video",
    # Repositories
    "VideoRepository",
    # Pipeline
    "PipelineStage",
    "UploadPipeline",
    "UploadRequest",
    "parse_media_type",
    # Service
    "VideoService",
]
