"""Master playlist assembly."""

from pathlib import Path
from typing import Iterable, Sequence

from .ffmpeg import VARIANT_PLAYLIST, Rendition
from .ladder import QualityProfile

MASTER_PLAYLIST = "master.m3u8"
HLS_VERSION = 3


def variant_uri(profile: QualityProfile) -> str:
    """Path of a profile's variant playlist, relative to the master playlist."""
    return f"{profile.name}/segments/{VARIANT_PLAYLIST}"


def build_master_playlist(entries: Iterable[tuple[QualityProfile, int, int]]) -> str:
    """Render the master playlist for ``(profile, width, height)`` entries.

    Entries are written in the order given (ladder order). Output depends only
    on the entries, so identical inputs give byte-identical playlists.
    """
    lines = ["#EXTM3U", f"#EXT-X-VERSION:{HLS_VERSION}"]
    for profile, width, height in entries:
        lines.append(f"#EXT-X-STREAM-INF:BANDWIDTH={profile.bandwidth},RESOLUTION={width}x{height}")
        lines.append(variant_uri(profile))
    return "\n".join(lines) + "\n"


def write_master_playlist(output_dir: Path, renditions: Sequence[Rendition]) -> Path:
    content = build_master_playlist((r.profile, r.width, r.height) for r in renditions)
    path = Path(output_dir) / MASTER_PLAYLIST
    # newline="" keeps "\n" line endings on every platform
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    return path
