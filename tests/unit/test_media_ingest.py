"""
Tests for upload validation, ingest and frame extraction.

ffprobe / ffmpeg are replaced with fakes of ``subprocess.run``.
"""
import io
import json
import subprocess
from types import SimpleNamespace

import pytest
from PIL import Image

from nyumba.errors import MediaProcessingError, ValidationError
from nyumba.models.media import AssetStatus, MediaAsset, MediaKind
from nyumba.services import media_ingest

MB = 1024 * 1024


def video_asset(**overrides):
    fields = dict(id=1, owner_id=7, source_url="https://cdn.test/videos/7/a.mp4", kind=MediaKind.VIDEO)
    fields.update(overrides)
    return MediaAsset(**fields)


class TestValidateUpload:
    def test_image_and_video_kinds(self):
        assert media_ingest.validate_upload(b"x", "image/png", 1) is MediaKind.IMAGE
        assert media_ingest.validate_upload(b"x", "video/mp4", 1) is MediaKind.VIDEO

    def test_rejects_other_mime_families(self):
        with pytest.raises(ValidationError):
            media_ingest.validate_upload(b"x", "application/pdf", 1)

    def test_rejects_kind_mismatch(self):
        with pytest.raises(ValidationError):
            media_ingest.validate_upload(b"x", "image/jpeg", 1, kind=MediaKind.VIDEO)

    def test_rejects_empty_payload(self):
        with pytest.raises(ValidationError):
            media_ingest.validate_upload(b"", "image/jpeg", 0)

    def test_video_ceiling_uses_declared_size(self):
        with pytest.raises(ValidationError, match="50MB"):
            media_ingest.validate_upload(b"x", "video/mp4", 60 * MB)

    def test_image_ceiling_uses_actual_size(self):
        with pytest.raises(ValidationError, match="16MB"):
            media_ingest.validate_upload(b"x" * (16 * MB + 1), "image/jpeg", 10)

    def test_product_image_ceiling(self):
        payload = b"x" * (6 * MB)
        assert media_ingest.validate_upload(payload, "image/jpeg", len(payload)) is MediaKind.IMAGE
        with pytest.raises(ValidationError, match="5MB"):
            media_ingest.validate_upload(payload, "image/jpeg", len(payload), max_image_bytes=5 * MB)


class TestIngest:
    async def test_stores_video_and_creates_processing_asset(self, fake_db, fake_storage):
        asset = await media_ingest.ingest(b"\x00" * 1024, "tour.mp4", "video/mp4", 1024, owner_id=7)

        assert asset.status is AssetStatus.PROCESSING
        assert asset.kind is MediaKind.VIDEO
        assert asset.source_key.startswith("videos/7/")
        assert asset.source_key.endswith(".mp4")
        assert asset.source_url == f"https://cdn.test/{asset.source_key}"
        assert fake_storage.keys("videos/") == [asset.source_key]

    async def test_photo_goes_under_photos(self, fake_db, fake_storage, room_jpeg):
        asset = await media_ingest.ingest(room_jpeg, "room", "image/jpeg", len(room_jpeg), owner_id=3)
        assert asset.source_key.startswith("photos/3/")
        assert asset.source_key.endswith(".jpg")

    async def test_oversize_video_writes_nothing(self, fake_db, fake_storage):
        with pytest.raises(ValidationError):
            await media_ingest.ingest(b"\x00", "big.mp4", "video/mp4", 60 * MB, owner_id=7)

        assert fake_storage.objects == {}
        assert fake_db.tables.get("media_assets", []) == []

    async def test_upload_removed_when_asset_row_fails(self, monkeypatch, fake_storage):
        def broken(*args, **kwargs):
            raise ConnectionError("database down")

        monkeypatch.setattr(media_ingest.supabase_client, "create_media_asset", broken)
        with pytest.raises(ConnectionError):
            await media_ingest.ingest(b"\x00", "tour.mp4", "video/mp4", 1, owner_id=7)
        assert fake_storage.objects == {}


class TestFrameTimestamp:
    @pytest.mark.parametrize(
        "duration,expected",
        [(30.0, 5.0), (8.0, 4.0), (2.0, 1.0), (None, 3.0), (0.0, 3.0)],
    )
    def test_policy(self, duration, expected):
        assert media_ingest.choose_frame_timestamp(duration) == expected


class TestProbeDuration:
    def test_reads_json_duration(self, monkeypatch):
        out = json.dumps({"format": {"duration": "12.480000"}})
        monkeypatch.setattr(
            media_ingest.subprocess, "run",
            lambda cmd, **kw: SimpleNamespace(returncode=0, stdout=out, stderr=""),
        )
        assert media_ingest.probe_duration("clip.mp4") == pytest.approx(12.48)

    def test_failure_returns_none(self, monkeypatch):
        monkeypatch.setattr(
            media_ingest.subprocess, "run",
            lambda cmd, **kw: SimpleNamespace(returncode=1, stdout="", stderr="moov atom not found"),
        )
        assert media_ingest.probe_duration("clip.mp4") is None

    def test_timeout_returns_none(self, monkeypatch):
        def hang(cmd, **kw):
            raise subprocess.TimeoutExpired(cmd, kw.get("timeout"))

        monkeypatch.setattr(media_ingest.subprocess, "run", hang)
        assert media_ingest.probe_duration("clip.mp4") is None


class TestExtractFrame:
    @pytest.fixture
    def fake_ffmpeg(self, monkeypatch, make_image):
        """Pretend ffprobe reports *duration* and ffmpeg writes a 640x360 frame."""
        calls = []
        state = {"duration": "20.0", "ffmpeg_rc": 0}

        def run(cmd, **kwargs):
            calls.append(cmd)
            if cmd[0] == media_ingest.FFPROBE_BIN:
                if state["duration"] is None:
                    return SimpleNamespace(returncode=1, stdout="", stderr="bad")
                out = json.dumps({"format": {"duration": state["duration"]}})
                return SimpleNamespace(returncode=0, stdout=out, stderr="")
            if state["ffmpeg_rc"] == 0:
                with open(cmd[-1], "wb") as fh:
                    fh.write(make_image(640, 360, "navy"))
            return SimpleNamespace(returncode=state["ffmpeg_rc"], stdout="", stderr="boom")

        monkeypatch.setattr(media_ingest.subprocess, "run", run)
        return SimpleNamespace(calls=calls, state=state)

    async def test_video_frame_at_capped_midpoint(self, tmp_path, fake_ffmpeg):
        frame = await media_ingest.extract_frame(video_asset(), b"\x00\x01", "video/mp4", tmp_path)

        ffmpeg_cmd = fake_ffmpeg.calls[-1]
        assert ffmpeg_cmd[ffmpeg_cmd.index("-ss") + 1] == "5.000"
        assert frame.timestamp == 5.0
        assert frame.mime_type == "image/jpeg"
        thumb = Image.open(io.BytesIO(frame.thumbnail_bytes))
        assert thumb.size == (400, 225)

    async def test_unknown_duration_falls_back_to_three_seconds(self, tmp_path, fake_ffmpeg):
        fake_ffmpeg.state["duration"] = None
        frame = await media_ingest.extract_frame(video_asset(), b"\x00", "video/mp4", tmp_path)
        assert frame.timestamp == 3.0

    async def test_ffmpeg_failure_raises(self, tmp_path, fake_ffmpeg):
        fake_ffmpeg.state["ffmpeg_rc"] = 1
        with pytest.raises(MediaProcessingError):
            await media_ingest.extract_frame(video_asset(), b"\x00", "video/mp4", tmp_path)

    async def test_image_is_its_own_frame(self, tmp_path, make_image):
        photo = make_image(300, 200, "olive")
        asset = video_asset(kind=MediaKind.IMAGE)
        frame = await media_ingest.extract_frame(asset, photo, "image/jpeg", tmp_path)

        assert frame.frame_bytes == photo
        assert frame.timestamp is None
        # Narrower than the thumbnail width, so it is not upscaled
        assert Image.open(io.BytesIO(frame.thumbnail_bytes)).size == (300, 200)

    async def test_undecodable_image_raises(self, tmp_path):
        asset = video_asset(kind=MediaKind.IMAGE)
        with pytest.raises(MediaProcessingError):
            await media_ingest.extract_frame(asset, b"not a photo", "image/jpeg", tmp_path)


class TestPublishFrame:
    async def test_video_uploads_frame_and_thumbnail(self, fake_storage):
        frame = media_ingest.ExtractedFrame(b"frame", b"thumb", "image/jpeg")
        frame_url, thumb_url = await media_ingest.publish_frame(video_asset(), frame)

        assert frame_url.startswith("https://cdn.test/frames/7/")
        assert thumb_url.startswith("https://cdn.test/thumbnails/7/")

    async def test_image_reuses_source_url(self, fake_storage):
        asset = video_asset(kind=MediaKind.IMAGE, source_url="https://cdn.test/photos/7/p.jpg")
        frame = media_ingest.ExtractedFrame(b"frame", b"thumb", "image/jpeg")
        frame_url, _ = await media_ingest.publish_frame(asset, frame)

        assert frame_url == "https://cdn.test/photos/7/p.jpg"
        assert fake_storage.keys("frames/") == []

    async def test_storage_failure_is_media_processing_error(self, fake_storage):
        fake_storage.fail_on.add("thumbnails/")
        frame = media_ingest.ExtractedFrame(b"frame", b"thumb", "image/jpeg")
        with pytest.raises(MediaProcessingError):
            await media_ingest.publish_frame(video_asset(), frame)
