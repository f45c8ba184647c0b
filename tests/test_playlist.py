from hls.ladder import DEFAULT_LADDER, QualityProfile
from hls.ffmpeg import Rendition
from hls.playlist import MASTER_PLAYLIST, build_master_playlist, variant_uri, write_master_playlist


def _ladder_entries(aspect_ratio):
    return [(p, *p.dimensions(aspect_ratio)) for p in DEFAULT_LADDER]


def test_one_entry_per_rung_in_ladder_order():
    text = build_master_playlist(_ladder_entries(16 / 9))
    lines = text.splitlines()

    assert lines[:2] == ["#EXTM3U", "#EXT-X-VERSION:3"]
    assert text.count("#EXT-X-STREAM-INF") == len(DEFAULT_LADDER)
    uris = [line for line in lines if not line.startswith("#")]
    assert uris == [f"{p.name}/segments/playlist.m3u8" for p in DEFAULT_LADDER]


def test_stream_info_line():
    profile = QualityProfile("360p", 360, "500k", "64k")
    text = build_master_playlist([(profile, 640, 360)])

    assert text == (
        "#EXTM3U\n"
        "#EXT-X-VERSION:3\n"
        "#EXT-X-STREAM-INF:BANDWIDTH=564000,RESOLUTION=640x360\n"
        "360p/segments/playlist.m3u8\n"
    )


def test_output_is_deterministic():
    assert build_master_playlist(_ladder_entries(0.5625)) == build_master_playlist(_ladder_entries(0.5625))


def test_portrait_resolutions():
    text = build_master_playlist(_ladder_entries(9 / 16))
    assert "RESOLUTION=608x1080" in text
    assert "RESOLUTION=202x360" in text


def test_write_master_playlist(tmp_path):
    profile = DEFAULT_LADDER[2]
    renditions = [Rendition(profile=profile, width=1280, height=720, path=tmp_path / "720p" / "clip_720p.mp4")]

    path = write_master_playlist(tmp_path, renditions)

    assert path == tmp_path / MASTER_PLAYLIST
    assert path.read_bytes() == build_master_playlist([(profile, 1280, 720)]).encode()
    assert b"\r\n" not in path.read_bytes()
    assert variant_uri(profile) == "720p/segments/playlist.m3u8"
