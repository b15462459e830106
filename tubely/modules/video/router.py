"""Video API router.

Implements the video upload endpoint and record lookup.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from tubely.core.config import settings
from tubely.core.database import get_db
from tubely.core.errors import ErrorKind, TubelyError
from tubely.core.storage import ObjectStore, get_object_store
from tubely.modules.auth.jwt import get_current_user_id
from tubely.modules.video.schemas import VideoResponse
from tubely.modules.video.service import VideoService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])

ERROR_STATUS = {
    ErrorKind.PRECONDITION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.EXTERNAL_TOOL: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def error_to_http(error: TubelyError) -> HTTPException:
    """Map an ingest error to an HTTPException by its kind."""
    status_code = ERROR_STATUS.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    # Causes and tool output stay in the logs
    detail = {"error": error.message, "kind": error.kind.value}
    return HTTPException(status_code=status_code, detail=detail)


def get_video_service(
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
) -> VideoService:
    """Build the VideoService for a request."""
    return VideoService(
        db,
        store,
        temp_dir=settings.UPLOAD_TEMP_DIR,
        upload_timeout=settings.UPLOAD_TIMEOUT_SECONDS,
    )


@router.post("/{video_id}/upload", response_model=VideoResponse)
async def upload_video(
    video_id: uuid.UUID,
    video: UploadFile = File(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: VideoService = Depends(get_video_service),
):
    """Upload a video file for an existing record.

    The file is remuxed for fast start and stored under a key prefixed with
    its aspect category; the record's ``video_url`` is updated on success.
    """
    logger.info("Uploading video", extra={"video_id": str(video_id), "user_id": str(user_id)})

    try:
        return await service.upload_video(
            video_id=video_id,
            user_id=user_id,
            media_type=video.content_type,
            stream=video.file,
        )
    except TubelyError as e:
        raise error_to_http(e) from e
    finally:
        await video.close()


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: VideoService = Depends(get_video_service),
):
    """Get video by ID."""
    try:
        return await service.get_owned_video(video_id, user_id)
    except TubelyError as e:
        raise error_to_http(e) from e
