"""Video upload pipeline.

One pass per request, no retries:

    spooling -> classifying -> transcoding -> key_derivation -> uploading
        -> metadata_commit -> done

Any failure moves to ``failed``. Every file created on local disk is removed
on every exit path. The object is written to the store before the record is
touched, so a failure can leave an unreferenced object but never a record
pointing at an object that was not written.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional

from sqlalchemy.exc import SQLAlchemyError

from tubely.core.errors import (
    MetadataCommitError,
    PipelineTimeoutError,
    SpoolError,
    TubelyError,
    UnsupportedMediaTypeError,
    VideoNotFoundError,
    VideoOwnershipError,
)
from tubely.core.logging import log_error, log_info, log_warning
from tubely.core.storage import ObjectStore
from tubely.modules.media.aspect import AspectClassifier
from tubely.modules.media.faststart import FastStartTranscoder, derive_processing_path
from tubely.modules.media.keys import AssetKeyGenerator, media_type_to_extension
from tubely.modules.video.models import Video
from tubely.modules.video.repository import VideoRepository
from tubely.modules.video.schemas import ALLOWED_VIDEO_MEDIA_TYPES

logger = logging.getLogger(__name__)

SPOOL_CHUNK_SIZE = 1024 * 1024
SPOOL_PREFIX = "tubely-upload-"


class PipelineStage(str, Enum):
    """Stages of a single upload run."""

    PENDING = "pending"
    SPOOLING = "spooling"
    CLASSIFYING = "classifying"
    TRANSCODING = "transcoding"
    KEY_DERIVATION = "key_derivation"
    UPLOADING = "uploading"
    METADATA_COMMIT = "metadata_commit"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadRequest:
    """A video upload as handed over by the API layer."""
    media_type: Optional[str]
    stream: BinaryIO
    user_id: uuid.UUID
    video_id: uuid.UUID


def parse_media_type(declared: Optional[str]) -> str:
    """Reduce a Content-Type value to its lowercase ``type/subtype``.

    Raises:
        UnsupportedMediaTypeError: If the value is missing or malformed
    """
    if not declared or not declared.strip():
        raise UnsupportedMediaTypeError("Missing Content-Type for video")

    essence = declared.split(";", 1)[0].strip().lower()
    main, sep, sub = essence.partition("/")
    if not sep or not main or not sub or " " in essence:
        raise UnsupportedMediaTypeError(f"Invalid Content-Type: {declared!r}")
    return essence


class UploadPipeline:
    """Moves one uploaded video from the request body into object storage.

    Instances track the current stage and are meant for a single request.
    """

    def __init__(
        self,
        store: ObjectStore,
        repository: VideoRepository,
        classifier: AspectClassifier,
        transcoder: FastStartTranscoder,
        key_generator: Optional[AssetKeyGenerator] = None,
        temp_dir: Optional[str] = None,
        allowed_media_types: frozenset[str] = ALLOWED_VIDEO_MEDIA_TYPES,
    ):
        self.store = store
        self.repository = repository
        self.classifier = classifier
        self.transcoder = transcoder
        self.key_generator = key_generator or AssetKeyGenerator()
        self.temp_dir = temp_dir
        self.allowed_media_types = allowed_media_types
        self.stage = PipelineStage.PENDING
        self.failed_stage: Optional[PipelineStage] = None

    def check_media_type(self, declared: Optional[str]) -> str:
        """Validate the declared media type against the allow-list.

        Raises:
            UnsupportedMediaTypeError: If the type is missing or not allowed
        """
        media_type = parse_media_type(declared)
        if media_type not in self.allowed_media_types:
            raise UnsupportedMediaTypeError(
                f"Unsupported media type {media_type}. "
                f"Allowed: {', '.join(sorted(self.allowed_media_types))}"
            )
        return media_type

    async def run(self, request: UploadRequest, timeout: Optional[float] = None) -> Video:
        """Run the pipeline for ``request``.

        Args:
            request: Upload request
            timeout: Optional deadline in seconds for the whole run

        Returns:
            Video: The updated video record

        Raises:
            TubelyError: A subclass identifying the failed stage's error kind
        """
        # Precondition: rejected before any file exists
        media_type = self.check_media_type(request.media_type)

        if timeout is None:
            return await self._run(request, media_type)

        try:
            async with asyncio.timeout(timeout):
                return await self._run(request, media_type)
        except TimeoutError as e:
            stage = self.failed_stage.value if self.failed_stage else self.stage.value
            log_error(logger, "Video upload timed out", video_id=str(request.video_id), stage=stage)
            raise PipelineTimeoutError(
                f"Upload of video {request.video_id} exceeded {timeout}s during {stage}", e
            ) from e

    async def _run(self, request: UploadRequest, media_type: str) -> Video:
        created: list[Path] = []
        try:
            self._enter(PipelineStage.SPOOLING, request)
            spool_path = self._create_spool_file(media_type)
            created.append(spool_path)
            # Registered up front so a cancelled remux cannot leak it
            created.append(derive_processing_path(spool_path))
            await self._spool(request.stream, spool_path)

            self._enter(PipelineStage.CLASSIFYING, request)
            category = await self.classifier.classify(spool_path)

            self._enter(PipelineStage.TRANSCODING, request)
            processed_path = await self.transcoder.remux(spool_path)
            if processed_path not in created:
                created.append(processed_path)

            self._enter(PipelineStage.KEY_DERIVATION, request)
            key = self.key_generator.generate(media_type, category.value)

            self._enter(PipelineStage.UPLOADING, request)
            await self._upload(processed_path, key, media_type)

            self._enter(PipelineStage.METADATA_COMMIT, request)
            video = await self._commit(request, key)

            self.stage = PipelineStage.DONE
            log_info(
                logger,
                "Video upload completed",
                video_id=str(request.video_id),
                key=key,
                aspect=category.value,
            )
            return video
        except TubelyError as e:
            log_error(
                logger,
                "Video upload failed",
                video_id=str(request.video_id),
                stage=self.stage.value,
                kind=e.kind.value,
                error=str(e),
            )
            self._fail()
            raise
        except BaseException:
            self._fail()
            raise
        finally:
            self._cleanup(created)

    def _fail(self) -> None:
        self.failed_stage = self.stage
        self.stage = PipelineStage.FAILED

    def _enter(self, stage: PipelineStage, request: UploadRequest) -> None:
        self.stage = stage
        log_info(logger, "Video upload stage", video_id=str(request.video_id), stage=stage.value)

    def _create_spool_file(self, media_type: str) -> Path:
        try:
            fd, name = tempfile.mkstemp(
                prefix=SPOOL_PREFIX,
                suffix=f".{media_type_to_extension(media_type)}",
                dir=self.temp_dir,
            )
        except OSError as e:
            raise SpoolError("Couldn't create video file on server", e) from e
        os.close(fd)
        return Path(name)

    async def _spool(self, stream: BinaryIO, path: Path) -> None:
        def copy() -> None:
            with open(path, "wb") as f:
                shutil.copyfileobj(stream, f, SPOOL_CHUNK_SIZE)

        try:
            await asyncio.to_thread(copy)
        except OSError as e:
            raise SpoolError("Couldn't save video file on server", e) from e

    async def _upload(self, path: Path, key: str, media_type: str) -> None:
        try:
            f = open(path, "rb")
        except OSError as e:
            raise SpoolError("Couldn't reopen remuxed video file", e) from e
        with f:
            f.seek(0)
            await self.store.put(key, media_type, f)

    async def _commit(self, request: UploadRequest, key: str) -> Video:
        try:
            video = await self.repository.get_by_id(request.video_id)
        except SQLAlchemyError as e:
            raise MetadataCommitError("Couldn't get video metadata", e) from e

        if video is None:
            raise VideoNotFoundError(f"Video {request.video_id} not found")

        # Re-checked here, right before the URL is persisted.
        if not self.repository.is_owned_by(video, request.user_id):
            # Known limitation: the object is already stored and is left orphaned.
            log_warning(
                logger,
                "Ownership check failed after upload; stored object is orphaned",
                video_id=str(request.video_id),
                key=key,
            )
            raise VideoOwnershipError(
                "You don't have permission to upload a video for this record"
            )

        video.video_url = self.store.get_url(key)
        try:
            return await self.repository.update(video)
        except SQLAlchemyError as e:
            raise MetadataCommitError("Couldn't update video metadata with video URL", e) from e

    def _cleanup(self, paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log_error(logger, "Couldn't remove temporary upload file", e, path=str(path))
