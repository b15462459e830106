"""Pydantic schemas for video module."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


# Declared media types accepted on the video upload path
ALLOWED_VIDEO_MEDIA_TYPES = frozenset({"video/mp4"})


class VideoResponse(BaseModel):
    """Response schema for a video record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

