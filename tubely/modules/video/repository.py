"""Video repository for database operations.

This is the only writer of Video rows; the upload pipeline mutates records
through it and never touches the session directly.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tubely.modules.video.models import Video


class VideoRepository:
    """Repository for Video read/write operations."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def create(
        self,
        user_id: uuid.UUID,
        title: str,
        description: Optional[str] = None,
    ) -> Video:
        """Create a new video record.

        Args:
            user_id: Owner user UUID
            title: Video title
            description: Video description

        Returns:
            Video: Created video instance
        """
        video = Video(user_id=user_id, title=title, description=description)
        self.session.add(video)
        await self.session.flush()
        await self.session.refresh(video)
        return video

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        """Get video by ID.

        Args:
            video_id: Video UUID

        Returns:
            Optional[Video]: Video if found, None otherwise
        """
        result = await self.session.execute(
            select(Video).where(Video.id == video_id)
        )
        return result.scalar_one_or_none()

    def is_owned_by(self, video: Video, user_id: uuid.UUID) -> bool:
        """Check whether ``user_id`` owns ``video``."""
        return video.is_owned_by(user_id)

    async def update(self, video: Video) -> Video:
        """Persist pending changes on ``video``.

        Server-generated columns are reloaded so the instance can be read
        outside the session without lazy loads.

        Args:
            video: Video instance with modified attributes

        Returns:
            Video: Updated video instance
        """
        self.session.add(video)
        await self.session.flush()
        await self.session.refresh(video)
        return video
