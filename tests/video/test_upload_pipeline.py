"""Tests for the video upload pipeline.

Every test runs the pipeline against a private spool directory so leftover
temporary files can be asserted on directly.
"""

import asyncio
import io
import uuid
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from tubely.core.errors import (
    ErrorKind,
    MetadataCommitError,
    ObjectStoreError,
    PipelineTimeoutError,
    ProbeFailedError,
    SpoolError,
    TranscodeFailedError,
    TranscodeProducedEmptyOutputError,
    UnsupportedMediaTypeError,
    VideoNotFoundError,
    VideoOwnershipError,
)
from tubely.modules.media.aspect import AspectClassifier
from tubely.modules.media.faststart import FastStartTranscoder
from tubely.modules.media.keys import AssetKeyGenerator
from tubely.modules.video.pipeline import (
    PipelineStage,
    UploadPipeline,
    UploadRequest,
    parse_media_type,
)

PAYLOAD = b"\x00\x00\x00\x18ftypmp42" + bytes(range(256)) * 64


def build_pipeline(fakes, store, repo, spool_dir, prober=None, remuxer=None, key_generator=None):
    return UploadPipeline(
        store=store,
        repository=repo,
        classifier=AspectClassifier(prober or fakes["prober"]()),
        transcoder=FastStartTranscoder(remuxer or fakes["remuxer"]()),
        key_generator=key_generator or AssetKeyGenerator(random_source=lambda n: b"\xab" * n),
        temp_dir=str(spool_dir),
    )


def build_request(video_id, user_id, media_type="video/mp4", payload=PAYLOAD):
    return UploadRequest(
        media_type=media_type,
        stream=io.BytesIO(payload),
        user_id=user_id,
        video_id=video_id,
    )


def leftover_files(spool_dir: Path) -> list[Path]:
    return list(spool_dir.iterdir())


class TestParseMediaType:
    def test_strips_parameters(self) -> None:
        assert parse_media_type("video/mp4; codecs=avc1") == "video/mp4"

    def test_lowercases(self) -> None:
        assert parse_media_type("Video/MP4") == "video/mp4"

    @pytest.mark.parametrize("declared", [None, "", "   ", "video", "/mp4", "video/", "vid eo/mp4"])
    def test_rejects_malformed(self, declared) -> None:
        with pytest.raises(UnsupportedMediaTypeError):
            parse_media_type(declared)


class TestSuccessfulUpload:
    @pytest.mark.asyncio
    async def test_updates_record_and_cleans_up(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)

        result = await pipeline.run(build_request(video.id, owner_id))

        key = "landscape/" + "ab" * 16 + ".mp4"
        assert result.video_url == f"https://tubely-test.s3.us-east-1.amazonaws.com/{key}"
        assert fake_store.objects[key] == PAYLOAD
        assert fake_store.content_types[key] == "video/mp4"
        assert fake_repo.update_calls == 1
        assert pipeline.stage == PipelineStage.DONE
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_portrait_prefix(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(
            fakes, fake_store, fake_repo, spool_dir, prober=fakes["prober"](1080, 1920)
        )

        await pipeline.run(build_request(video.id, owner_id))

        (key,) = fake_store.objects
        assert key.startswith("portrait/")

    @pytest.mark.asyncio
    async def test_square_prefix(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(
            fakes, fake_store, fake_repo, spool_dir, prober=fakes["prober"](1000, 1000)
        )

        await pipeline.run(build_request(video.id, owner_id))

        (key,) = fake_store.objects
        assert key.startswith("other/")

    @pytest.mark.asyncio
    async def test_classifies_and_remuxes_the_spooled_file(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        prober = fakes["prober"]()
        remuxer = fakes["remuxer"]()
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir, prober=prober, remuxer=remuxer)

        await pipeline.run(build_request(video.id, owner_id))

        (probed,) = prober.probed
        ((remux_in, remux_out),) = remuxer.calls
        assert probed == remux_in
        assert probed.parent == spool_dir
        assert remux_out.name.endswith(".processing.mp4")

    @pytest.mark.asyncio
    async def test_media_type_parameters_are_accepted(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)

        await pipeline.run(build_request(video.id, owner_id, media_type="video/mp4; codecs=avc1"))

        (content_type,) = fake_store.content_types.values()
        assert content_type == "video/mp4"

    @pytest.mark.asyncio
    async def test_deadline_not_reached(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)

        result = await pipeline.run(build_request(video.id, owner_id), timeout=30)

        assert result.video_url is not None


class TestPreconditions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("media_type", [None, "", "image/png", "video/quicktime"])
    async def test_rejected_before_spooling(self, fakes, fake_store, fake_repo, owner_id, spool_dir, media_type) -> None:
        video = fake_repo.add(owner_id)
        prober = fakes["prober"]()
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir, prober=prober)

        with pytest.raises(UnsupportedMediaTypeError) as exc_info:
            await pipeline.run(build_request(video.id, owner_id, media_type=media_type))

        assert exc_info.value.kind == ErrorKind.PRECONDITION
        assert pipeline.stage == PipelineStage.PENDING
        assert prober.probed == []
        assert fake_store.put_calls == 0
        assert leftover_files(spool_dir) == []


class TestStageFailures:
    @pytest.mark.asyncio
    async def test_upload_failure_leaves_no_files_and_no_mutation(self, fakes, failing_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id, video_url="https://old.example/video.mp4")
        pipeline = build_pipeline(fakes, failing_store, fake_repo, spool_dir)

        with pytest.raises(ObjectStoreError) as exc_info:
            await pipeline.run(build_request(video.id, owner_id))

        assert exc_info.value.kind == ErrorKind.TRANSFER
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert pipeline.stage == PipelineStage.FAILED
        assert pipeline.failed_stage == PipelineStage.UPLOADING
        assert fake_repo.update_calls == 0
        assert fake_repo.videos[video.id].video_url == "https://old.example/video.mp4"
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_probe_failure(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(
            fakes, fake_store, fake_repo, spool_dir, prober=fakes["prober"](fail=True)
        )

        with pytest.raises(ProbeFailedError):
            await pipeline.run(build_request(video.id, owner_id))

        assert pipeline.failed_stage == PipelineStage.CLASSIFYING
        assert fake_store.put_calls == 0
        assert fake_repo.videos[video.id].video_url is None
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_transcode_failure(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(
            fakes, fake_store, fake_repo, spool_dir, remuxer=fakes["remuxer"](fail=True)
        )

        with pytest.raises(TranscodeFailedError):
            await pipeline.run(build_request(video.id, owner_id))

        assert pipeline.failed_stage == PipelineStage.TRANSCODING
        assert fake_store.put_calls == 0
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_empty_transcode_output(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(
            fakes, fake_store, fake_repo, spool_dir, remuxer=fakes["remuxer"](empty=True)
        )

        with pytest.raises(TranscodeProducedEmptyOutputError):
            await pipeline.run(build_request(video.id, owner_id))

        assert fake_store.put_calls == 0
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_spool_read_failure(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        class BrokenStream(io.RawIOBase):
            def readable(self) -> bool:
                return True

            def readinto(self, b) -> int:
                raise OSError("connection reset by peer")

        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)
        request = UploadRequest(
            media_type="video/mp4", stream=BrokenStream(), user_id=owner_id, video_id=video.id
        )

        with pytest.raises(SpoolError):
            await pipeline.run(request)

        assert pipeline.failed_stage == PipelineStage.SPOOLING
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_missing_spool_directory(self, fakes, fake_store, fake_repo, owner_id, tmp_path) -> None:
        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(fakes, fake_store, fake_repo, tmp_path / "does-not-exist")

        with pytest.raises(SpoolError):
            await pipeline.run(build_request(video.id, owner_id))

    @pytest.mark.asyncio
    async def test_record_missing_at_commit(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)

        with pytest.raises(VideoNotFoundError):
            await pipeline.run(build_request(uuid.uuid4(), owner_id))

        assert fake_repo.update_calls == 0
        assert leftover_files(spool_dir) == []

    @pytest.mark.asyncio
    async def test_database_failure_at_commit(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id)

        async def broken_update(video):
            raise OperationalError("UPDATE videos", {}, Exception("server closed the connection"))

        fake_repo.update = broken_update
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)

        with pytest.raises(MetadataCommitError):
            await pipeline.run(build_request(video.id, owner_id))

        assert leftover_files(spool_dir) == []


class TestOwnershipAtCommit:
    @pytest.mark.asyncio
    async def test_mismatch_keeps_url_and_orphans_object(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        video = fake_repo.add(owner_id, video_url="https://old.example/video.mp4")
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir)

        with pytest.raises(VideoOwnershipError) as exc_info:
            await pipeline.run(build_request(video.id, uuid.uuid4()))

        assert exc_info.value.kind == ErrorKind.AUTHORIZATION
        assert fake_repo.videos[video.id].video_url == "https://old.example/video.mp4"
        assert fake_repo.update_calls == 0
        # The object was already written; it stays in the store
        assert len(fake_store.objects) == 1
        assert leftover_files(spool_dir) == []


class TestDeadline:
    @pytest.mark.asyncio
    async def test_timeout_during_probe(self, fakes, fake_store, fake_repo, owner_id, spool_dir) -> None:
        class SlowProber:
            async def probe(self, path):
                await asyncio.sleep(30)

        video = fake_repo.add(owner_id)
        pipeline = build_pipeline(fakes, fake_store, fake_repo, spool_dir, prober=SlowProber())

        with pytest.raises(PipelineTimeoutError) as exc_info:
            await pipeline.run(build_request(video.id, owner_id), timeout=0.2)

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert pipeline.failed_stage == PipelineStage.CLASSIFYING
        assert fake_store.put_calls == 0
        assert leftover_files(spool_dir) == []
