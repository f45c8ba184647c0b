"""Quality ladder: the renditions every source is packaged into."""

import math
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from django.core.exceptions import ImproperlyConfigured

_BITRATE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)\s*$")
_SUFFIX_SCALE = {"": 1, "k": 1_000, "m": 1_000_000}


def parse_bitrate(value) -> int:
    """Convert an ffmpeg-style bitrate ("500k", "2.5M", 128000) to bits/sec."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid bitrate: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    m = _BITRATE_RE.match(str(value))
    if not m:
        raise ValueError(f"Invalid bitrate: {value!r}")
    number, suffix = m.groups()
    return int(round(float(number) * _SUFFIX_SCALE[suffix.lower()]))


def target_width(max_height: int, aspect_ratio: float) -> int:
    """Width for ``max_height`` that keeps ``aspect_ratio`` and is even.

    libx264 with yuv420p needs even dimensions. The exact width is rounded to
    the nearest even integer, odd values going up, so the result never drifts
    more than one pixel from ``max_height * aspect_ratio``.
    """
    if max_height <= 0:
        raise ValueError("max_height must be positive")
    if not aspect_ratio or aspect_ratio <= 0 or math.isnan(aspect_ratio):
        raise ValueError(f"Invalid aspect ratio: {aspect_ratio!r}")
    exact = max_height * aspect_ratio
    width = 2 * int(math.floor(exact / 2.0 + 0.5))
    return max(2, width)


@dataclass(frozen=True)
class QualityProfile:
    name: str
    max_height: int
    video_bitrate: str
    audio_bitrate: str

    @property
    def bandwidth(self) -> int:
        """Advertised peak bandwidth in bits/sec (video + audio)."""
        return parse_bitrate(self.video_bitrate) + parse_bitrate(self.audio_bitrate)

    def dimensions(self, aspect_ratio: float) -> tuple[int, int]:
        return target_width(self.max_height, aspect_ratio), self.max_height


DEFAULT_LADDER: tuple[QualityProfile, ...] = (
    QualityProfile("360p", 360, "500k", "64k"),
    QualityProfile("480p", 480, "800k", "96k"),
    QualityProfile("720p", 720, "2500k", "128k"),
    QualityProfile("1080p", 1080, "5000k", "192k"),
)


def _profile_from_dict(raw: dict) -> QualityProfile:
    try:
        profile = QualityProfile(
            name=str(raw["name"]),
            max_height=int(raw["max_height"]),
            video_bitrate=str(raw["video_bitrate"]),
            audio_bitrate=str(raw["audio_bitrate"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ImproperlyConfigured(f"Invalid quality profile {raw!r}: {exc}")

    if profile.max_height <= 0 or profile.max_height % 2:
        raise ImproperlyConfigured(f"{profile.name}: max_height must be a positive even number")
    try:
        profile.bandwidth
    except ValueError as exc:
        raise ImproperlyConfigured(f"{profile.name}: {exc}")
    return profile


def load_ladder(raw: Optional[Iterable[dict]] = None) -> tuple[QualityProfile, ...]:
    """Build the ladder from settings; ``None`` means the built-in default."""
    if raw is None:
        return DEFAULT_LADDER

    profiles = tuple(_profile_from_dict(item) for item in raw)
    if not profiles:
        raise ImproperlyConfigured("Quality ladder must contain at least one profile")

    names = [p.name for p in profiles]
    if len(set(names)) != len(names):
        raise ImproperlyConfigured(f"Duplicate quality names in ladder: {names}")
    return profiles
