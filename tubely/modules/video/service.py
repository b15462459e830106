"""Video service for business logic.

Wires the upload pipeline to its production collaborators and exposes the
record lookups used by the API.
"""

import uuid
from typing import BinaryIO, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tubely.core.config import settings
from tubely.core.errors import VideoNotFoundError, VideoOwnershipError
from tubely.core.storage import ObjectStore
from tubely.modules.media.aspect import AspectClassifier
from tubely.modules.media.faststart import FastStartTranscoder
from tubely.modules.media.ffmpeg import FFmpegRemuxer, FFprobeProber, MediaProber, Remuxer
from tubely.modules.media.keys import AssetKeyGenerator
from tubely.modules.video.models import Video
from tubely.modules.video.pipeline import UploadPipeline, UploadRequest
from tubely.modules.video.repository import VideoRepository


class VideoService:
    """Service for video record and upload operations."""

    def __init__(
        self,
        session: AsyncSession,
        store: ObjectStore,
        prober: Optional[MediaProber] = None,
        remuxer: Optional[Remuxer] = None,
        key_generator: Optional[AssetKeyGenerator] = None,
        temp_dir: Optional[str] = None,
        upload_timeout: Optional[float] = None,
        video_repo: Optional[VideoRepository] = None,
    ):
        """Initialize service.

        Args:
            session: Database session
            store: Object store receiving uploaded videos
            prober: Stream prober, ffprobe when omitted
            remuxer: Fast-start remuxer, ffmpeg when omitted
            key_generator: Storage key generator
            temp_dir: Directory for spooled uploads, system default when omitted
            upload_timeout: Deadline in seconds for one upload
            video_repo: Record gateway, built on ``session`` when omitted
        """
        self.session = session
        self.video_repo = video_repo or VideoRepository(session)
        self.store = store
        self.prober = prober or FFprobeProber(settings.FFPROBE_PATH)
        self.remuxer = remuxer or FFmpegRemuxer(settings.FFMPEG_PATH)
        self.key_generator = key_generator or AssetKeyGenerator()
        self.temp_dir = temp_dir
        self.upload_timeout = upload_timeout

    async def get_video(self, video_id: uuid.UUID) -> Video:
        """Get video by ID.

        Raises:
            VideoNotFoundError: If video not found
        """
        video = await self.video_repo.get_by_id(video_id)
        if not video:
            raise VideoNotFoundError(f"Video {video_id} not found")
        return video

    async def get_owned_video(self, video_id: uuid.UUID, user_id: uuid.UUID) -> Video:
        """Get video by ID, requiring ``user_id`` to own it.

        Raises:
            VideoNotFoundError: If video not found
            VideoOwnershipError: If the video belongs to another user
        """
        video = await self.get_video(video_id)
        if not self.video_repo.is_owned_by(video, user_id):
            raise VideoOwnershipError("You don't have permission to access this video")
        return video

    def create_pipeline(self) -> UploadPipeline:
        """Build a pipeline for a single upload."""
        return UploadPipeline(
            store=self.store,
            repository=self.video_repo,
            classifier=AspectClassifier(self.prober),
            transcoder=FastStartTranscoder(self.remuxer),
            key_generator=self.key_generator,
            temp_dir=self.temp_dir,
        )

    async def upload_video(
        self,
        video_id: uuid.UUID,
        user_id: uuid.UUID,
        media_type: Optional[str],
        stream: BinaryIO,
    ) -> Video:
        """Upload a video file for an existing record.

        Ownership is checked here before any bytes are processed and again by
        the pipeline right before the record is updated.

        Args:
            video_id: Target video UUID
            user_id: Requesting user UUID
            media_type: Declared Content-Type of the file part
            stream: File contents

        Returns:
            Video: Updated video instance
        """
        await self.get_owned_video(video_id, user_id)

        pipeline = self.create_pipeline()
        request = UploadRequest(
            media_type=media_type,
            stream=stream,
            user_id=user_id,
            video_id=video_id,
        )
        return await pipeline.run(request, timeout=self.upload_timeout)
