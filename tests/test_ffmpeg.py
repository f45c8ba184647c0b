import subprocess
from pathlib import Path
from unittest import mock

import pytest
from PIL import Image

from hls.errors import EncodeError, SegmentError
from hls.ffmpeg import FFmpeg, Rendition, Segmenter, ThumbnailExtractor, Transcoder, _segment_index
from hls.ladder import DEFAULT_LADDER

from .fakes import FakeFFmpeg

P720 = DEFAULT_LADDER[2]


class TestFFmpegRunner:
    def test_command_prefix(self):
        cmd = FFmpeg("/opt/ffmpeg").command(["-i", Path("in.mp4"), "out.mp4"])
        assert cmd == ["/opt/ffmpeg", "-hide_banner", "-nostdin", "-y", "-i", "in.mp4", "out.mp4"]

    def test_run_checks_exit_status(self):
        with mock.patch("hls.ffmpeg.subprocess.run") as run:
            FFmpeg().run(["-version"])
        _, kwargs = run.call_args
        assert kwargs["check"] is True
        assert kwargs["stderr"] == subprocess.PIPE


class TestTranscoder:
    def test_args(self, tmp_path):
        args = Transcoder(FakeFFmpeg()).build_args(Path("in.mp4"), tmp_path / "o.mp4", P720, 1280, 720)

        assert args[args.index("-vf") + 1] == "scale=1280:720"
        assert args[args.index("-b:v") + 1] == "2500k"
        assert args[args.index("-b:a") + 1] == "128k"
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-preset") + 1] == "fast"
        assert args[args.index("-crf") + 1] == "23"
        assert args[args.index("-force_key_frames") + 1] == "expr:gte(t,n_forced*1)"

    def test_keyframes_follow_segment_length(self, tmp_path):
        args = Transcoder(FakeFFmpeg(), keyframe_seconds=4).build_args(Path("in.mp4"), tmp_path / "o.mp4", P720, 1280, 720)

        assert args[args.index("-force_key_frames") + 1] == "expr:gte(t,n_forced*4)"

    def test_transcode_writes_rendition(self, tmp_path):
        rendition = Transcoder(FakeFFmpeg()).transcode(tmp_path / "in.mp4", tmp_path / "720p", "clip", P720, 16 / 9)

        assert rendition.path == tmp_path / "720p" / "clip_720p.mp4"
        assert (rendition.width, rendition.height) == (1280, 720)
        assert rendition.bandwidth == 2_628_000

    def test_failure_carries_quality_and_stderr(self, tmp_path):
        with pytest.raises(EncodeError) as excinfo:
            Transcoder(FakeFFmpeg(fail_on="720p")).transcode(tmp_path / "in.mp4", tmp_path / "720p", "clip", P720, 1.0)

        assert excinfo.value.quality == "720p"
        assert "broken frame" in excinfo.value.detail

    def test_missing_output(self, tmp_path):
        ffmpeg = mock.Mock()
        with pytest.raises(EncodeError, match="no output"):
            Transcoder(ffmpeg).transcode(tmp_path / "in.mp4", tmp_path / "720p", "clip", P720, 1.0)


class TestSegmenter:
    def test_args(self, tmp_path):
        args = Segmenter(FakeFFmpeg(), segment_seconds=1).build_args(Path("r.mp4"), tmp_path)

        assert args[args.index("-hls_time") + 1] == "1"
        # Renditions are already encoded with aligned keyframes; segmenting only remuxes.
        assert args[args.index("-c") + 1] == "copy"
        assert "libx264" not in args
        assert "-force_key_frames" not in args
        assert "-b:v" not in args
        assert args[args.index("-hls_playlist_type") + 1] == "vod"
        assert args[args.index("-hls_list_size") + 1] == "0"
        assert args[args.index("-hls_segment_type") + 1] == "mpegts"
        assert args[args.index("-hls_segment_filename") + 1] == str(tmp_path / "segment_%03d.ts")
        assert args[-1] == str(tmp_path / "playlist.m3u8")

    def test_segment(self, tmp_path):
        path = tmp_path / "720p" / "clip_720p.mp4"
        path.parent.mkdir()
        path.write_bytes(b"mp4")
        rendition = Rendition(profile=P720, width=1280, height=720, path=path)

        Segmenter(FakeFFmpeg(segments=4)).segment(rendition)

        assert [p.name for p in rendition.segment_paths] == [f"segment_00{i}.ts" for i in range(4)]
        assert rendition.variant_playlist_path == tmp_path / "720p" / "segments" / "playlist.m3u8"

    def test_no_segments(self, tmp_path):
        path = tmp_path / "720p" / "clip_720p.mp4"
        path.parent.mkdir()
        rendition = Rendition(profile=P720, width=1280, height=720, path=path)

        with pytest.raises(SegmentError) as excinfo:
            Segmenter(mock.Mock()).segment(rendition)
        assert excinfo.value.quality == "720p"

    def test_segment_order_is_numeric(self):
        names = [Path(f"segment_{i:03d}.ts") for i in (1000, 2, 999, 10)]
        assert [p.name for p in sorted(names, key=_segment_index)] == [
            "segment_002.ts", "segment_010.ts", "segment_999.ts", "segment_1000.ts",
        ]


class TestThumbnail:
    def test_extract_bounded_jpeg(self, tmp_path):
        out = tmp_path / "output" / "thumbnail.jpg"
        ThumbnailExtractor(FakeFFmpeg(frame_size=(1920, 1080))).extract(tmp_path / "in.mp4", out, duration=10)

        with Image.open(out) as img:
            assert img.format == "JPEG"
            assert img.size == (640, 360)
        assert not out.with_suffix(".frame.png").exists()

    def test_short_clip_seeks_to_middle(self):
        extractor = ThumbnailExtractor(FakeFFmpeg())
        assert extractor.seek_position(0.5) == 0.25
        assert extractor.seek_position(30) == 1.0
        args = extractor.build_args(Path("in.mp4"), Path("f.png"), 0.5)
        assert args[:2] == ["-ss", "0.250"]

    def test_ffmpeg_failure(self, tmp_path):
        ffmpeg = mock.Mock()
        ffmpeg.run.side_effect = subprocess.CalledProcessError(1, ["ffmpeg"], stderr=b"no frame")
        with pytest.raises(EncodeError) as excinfo:
            ThumbnailExtractor(ffmpeg).extract(tmp_path / "in.mp4", tmp_path / "thumbnail.jpg")
        assert excinfo.value.detail == "no frame"
