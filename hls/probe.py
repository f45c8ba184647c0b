"""ffprobe wrapper: stream geometry needed to drive scaling decisions."""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ProbeError, tail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaInfo:
    width: int
    height: int
    duration: float
    codec: Optional[str]
    bitrate: Optional[int]
    frame_rate: float
    sample_aspect_ratio: float = 1.0

    @property
    def aspect_ratio(self) -> float:
        """Display aspect ratio (storage ratio corrected for non-square pixels)."""
        return (self.width * self.sample_aspect_ratio) / self.height


def parse_ratio(value, *, sep: str = "/") -> float:
    """Parse "num/den" (or a plain number) into a float. Bad input gives 0.0."""
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        if sep in text:
            num, den = text.split(sep, 1)
            num_f, den_f = float(num), float(den)
            if den_f == 0:
                return 0.0
            return num_f / den_f
        return float(text)
    except ValueError:
        return 0.0


def parse_frame_rate(value) -> float:
    """ffprobe reports r_frame_rate as "30000/1001"; never eval it."""
    return parse_ratio(value, sep="/")


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def media_info_from_probe(data: dict) -> MediaInfo:
    """Pick the first usable video stream out of ffprobe's JSON."""
    streams = data.get("streams") or []
    fmt = data.get("format") or {}

    for stream in streams:
        if stream.get("codec_type") != "video":
            continue
        # Cover art is reported as a video stream; skip it.
        if (stream.get("disposition") or {}).get("attached_pic"):
            continue
        width = _to_int(stream.get("width")) or 0
        height = _to_int(stream.get("height")) or 0
        if width <= 0 or height <= 0:
            continue

        sar = parse_ratio(stream.get("sample_aspect_ratio"), sep=":") or 1.0
        frame_rate = parse_frame_rate(stream.get("r_frame_rate")) or parse_frame_rate(stream.get("avg_frame_rate"))
        return MediaInfo(
            width=width,
            height=height,
            duration=_to_float(stream.get("duration")) or _to_float(fmt.get("duration")),
            codec=stream.get("codec_name"),
            bitrate=_to_int(stream.get("bit_rate")) or _to_int(fmt.get("bit_rate")),
            frame_rate=frame_rate,
            sample_aspect_ratio=sar,
        )

    raise ProbeError("No decodable video stream found")


class MediaProber:
    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    def build_command(self, path) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    def probe(self, path: Path) -> MediaInfo:
        cmd = self.build_command(path)
        try:
            result = subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except subprocess.CalledProcessError as e:
            raise ProbeError(f"ffprobe failed for {Path(path).name}", detail=tail(e.stderr)) from e
        except OSError as e:
            raise ProbeError(f"Could not run {self.ffprobe_path}: {e}") from e

        try:
            data = json.loads(result.stdout or b"{}")
        except json.JSONDecodeError as e:
            raise ProbeError("ffprobe returned invalid JSON") from e

        info = media_info_from_probe(data)
        logger.info(
            "Probed %s: %dx%d %.2fs %s @ %.3ffps",
            Path(path).name, info.width, info.height, info.duration, info.codec, info.frame_rate,
        )
        return info
