import pytest

from hls.errors import DownloadError, EncodeError
from hls.ladder import DEFAULT_LADDER, QualityProfile
from hls.pipeline import source_name
from hls.workspace import ScratchWorkspace

from .conftest import make_pipeline
from .fakes import FakeFetcher, FakeFFmpeg, FakeObjectStore


@pytest.fixture
def workspace(scratch_root, job):
    ws = ScratchWorkspace.create(scratch_root, job.id, ".mp4")
    yield ws
    ws.cleanup()


class TestSourceName:
    def test_plain_file(self):
        assert source_name("https://cdn.example.com/reels/clip.mp4") == ("clip", ".mp4")

    def test_query_string_is_ignored(self):
        assert source_name("https://cdn.example.com/a/My%20Clip.MOV?sig=abc") == ("My_Clip", ".mov")

    def test_no_path_falls_back(self):
        assert source_name("https://cdn.example.com/") == ("video", ".mp4")

    def test_odd_extension_falls_back_to_mp4(self):
        assert source_name("https://x.test/download/12345") == ("12345", ".mp4")


def test_scenario_default_ladder(job, workspace, object_store):
    ffmpeg = FakeFFmpeg()
    pipeline = make_pipeline(ffmpeg=ffmpeg, store=object_store)

    result = pipeline.run(job, workspace)

    assert result.master_playlist_key == "out/42/master.m3u8"
    assert result.thumbnail_key == "out/42/thumbnail.jpg"
    assert "out/42/master.m3u8" in object_store.objects
    assert "out/42/thumbnail.jpg" in object_store.objects

    master = object_store.objects["out/42/master.m3u8"][0].decode()
    assert master.count("#EXT-X-STREAM-INF") == 4
    assert master.splitlines()[3] == "360p/segments/playlist.m3u8"

    for profile in DEFAULT_LADDER:
        q = profile.name
        assert f"out/42/{q}/clip_{q}.mp4" in object_store.objects
        assert f"out/42/{q}/segments/playlist.m3u8" in object_store.objects
        assert f"out/42/{q}/segments/segment_000.ts" in object_store.objects

    # Master is published last.
    assert object_store.uploads[-1] == "out/42/master.m3u8"
    assert result.uploaded == len(object_store.uploads)
    assert [r.name for r in result.renditions] == ["360p", "480p", "720p", "1080p"]
    assert result.renditions[2].width == 1280
    assert result.urls["master"] == "https://cdn.test/media/out/42/master.m3u8"


def test_stages_run_in_order(job, workspace):
    ffmpeg = FakeFFmpeg()
    make_pipeline(ffmpeg=ffmpeg).run(job, workspace)

    kinds = []
    for call in ffmpeg.calls:
        if "-frames:v" in call:
            kinds.append("thumbnail")
        elif "-hls_segment_filename" in call:
            kinds.append("segment")
        else:
            kinds.append("transcode")
    assert kinds == ["thumbnail"] + ["transcode"] * 4 + ["segment"] * 4


def test_encode_failure_uploads_nothing(job, workspace, object_store):
    ffmpeg = FakeFFmpeg(fail_on="720p")
    pipeline = make_pipeline(ffmpeg=ffmpeg, store=object_store)

    with pytest.raises(EncodeError) as excinfo:
        pipeline.run(job, workspace)

    assert excinfo.value.quality == "720p"
    assert "broken frame" in excinfo.value.detail
    assert object_store.objects == {}
    assert object_store.deleted == []
    assert ffmpeg.commands("segment") == []
    assert len(ffmpeg.commands("transcode")) == 3


def test_download_failure_stops_before_probe(job, workspace, object_store):
    ffmpeg = FakeFFmpeg()
    pipeline = make_pipeline(
        ffmpeg=ffmpeg, store=object_store, fetcher=FakeFetcher(error=DownloadError("HTTP 404")),
    )

    with pytest.raises(DownloadError):
        pipeline.run(job, workspace)

    assert ffmpeg.calls == []
    assert object_store.objects == {}


def test_single_rung_ladder(job, workspace, object_store):
    ladder = (QualityProfile("240p", 240, "300k", "64k"),)
    result = make_pipeline(store=object_store, ladder=ladder).run(job, workspace)

    master = object_store.objects["out/42/master.m3u8"][0].decode()
    assert master.count("#EXT-X-STREAM-INF") == 1
    assert "RESOLUTION=426x240" in master
    assert len(result.renditions) == 1


def test_empty_ladder_is_rejected():
    with pytest.raises(ValueError):
        make_pipeline(ladder=())


def test_rerun_produces_identical_objects(job, scratch_root):
    first, second = FakeObjectStore(), FakeObjectStore()
    for store in (first, second):
        with ScratchWorkspace.create(scratch_root, job.id, ".mp4") as ws:
            make_pipeline(store=store).run(job, ws)

    assert sorted(first.objects) == sorted(second.objects)
    assert first.objects == second.objects
