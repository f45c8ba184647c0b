"""ffmpeg stages: thumbnail, per-quality renditions and HLS segmenting.

All commands are built as argument lists and run without a shell.
"""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from PIL import Image, UnidentifiedImageError

from .errors import EncodeError, SegmentError, tail
from .ladder import QualityProfile

logger = logging.getLogger(__name__)

PRESET = "fast"
CRF = 23
THUMBNAIL_MAX_SIZE = (640, 640)
SEGMENT_PATTERN = "segment_%03d.ts"
VARIANT_PLAYLIST = "playlist.m3u8"


class FFmpeg:
    """Runs the ffmpeg binary. Raises CalledProcessError / OSError as-is."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def command(self, args: Sequence[str]) -> list[str]:
        return [self.ffmpeg_path, "-hide_banner", "-nostdin", "-y", *[str(a) for a in args]]

    def run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        cmd = self.command(args)
        logger.debug("Running %s", cmd)
        return subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)


@dataclass
class Rendition:
    profile: QualityProfile
    width: int
    height: int
    path: Path
    segment_paths: list[Path] = field(default_factory=list)
    variant_playlist_path: Optional[Path] = None

    @property
    def bandwidth(self) -> int:
        return self.profile.bandwidth


def _segment_index(path: Path):
    # segment_999.ts < segment_1000.ts once the counter outgrows its padding
    suffix = path.stem.rsplit("_", 1)[-1]
    return (int(suffix) if suffix.isdigit() else -1, path.name)


def _describe(exc: Exception) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        return tail(exc.stderr) or str(exc)
    return str(exc)


class ThumbnailExtractor:
    """Grab one frame and normalise it to a bounded JPEG with Pillow."""

    def __init__(self, ffmpeg: FFmpeg, *, at_seconds: float = 1.0, max_size=THUMBNAIL_MAX_SIZE):
        self.ffmpeg = ffmpeg
        self.at_seconds = at_seconds
        self.max_size = max_size

    def seek_position(self, duration: float) -> float:
        # Clips shorter than the seek point would produce no frame.
        if duration and duration <= self.at_seconds:
            return round(duration / 2, 3)
        return self.at_seconds

    def build_args(self, input_path: Path, frame_path: Path, duration: float) -> list[str]:
        return [
            "-ss", f"{self.seek_position(duration):.3f}",
            "-i", str(input_path),
            "-frames:v", "1",
            "-an",
            str(frame_path),
        ]

    def extract(self, input_path: Path, output_path: Path, duration: float = 0.0) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        frame_path = output_path.with_suffix(".frame.png")

        try:
            self.ffmpeg.run(self.build_args(input_path, frame_path, duration))
        except (subprocess.CalledProcessError, OSError) as e:
            raise EncodeError("Thumbnail extraction failed", detail=_describe(e)) from e

        try:
            with Image.open(frame_path) as frame:
                img = frame.convert("RGB")
            img.thumbnail(self.max_size)
            img.save(output_path, format="JPEG", quality=90)
        except (OSError, UnidentifiedImageError) as e:
            raise EncodeError("Thumbnail frame could not be converted", detail=str(e)) from e
        finally:
            frame_path.unlink(missing_ok=True)

        logger.info("Generated thumbnail %s", output_path.name)
        return output_path


class Transcoder:
    def __init__(self, ffmpeg: FFmpeg, *, preset: str = PRESET, crf: int = CRF, keyframe_seconds: int = 1):
        self.ffmpeg = ffmpeg
        self.preset = preset
        self.crf = crf
        self.keyframe_seconds = keyframe_seconds

    def build_args(self, input_path: Path, output_path: Path, profile: QualityProfile, width: int, height: int) -> list[str]:
        return [
            "-i", str(input_path),
            "-vf", f"scale={width}:{height}",
            "-c:v", "libx264",
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-b:v", profile.video_bitrate,
            # A keyframe at every segment boundary lets the segmenter cut without re-encoding.
            "-force_key_frames", f"expr:gte(t,n_forced*{self.keyframe_seconds})",
            "-c:a", "aac",
            "-b:a", profile.audio_bitrate,
            "-movflags", "+faststart",
            str(output_path),
        ]

    def transcode(
        self,
        input_path: Path,
        output_dir: Path,
        base_name: str,
        profile: QualityProfile,
        aspect_ratio: float,
    ) -> Rendition:
        """Encode one ladder rung to ``<output_dir>/<base>_<quality>.mp4``."""
        width, height = profile.dimensions(aspect_ratio)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{base_name}_{profile.name}.mp4"

        logger.info("Transcoding %s at %dx%d", profile.name, width, height)
        try:
            self.ffmpeg.run(self.build_args(input_path, output_path, profile, width, height))
        except (subprocess.CalledProcessError, OSError) as e:
            raise EncodeError(f"Encoding {profile.name} failed", quality=profile.name, detail=_describe(e)) from e

        if not output_path.is_file():
            raise EncodeError(f"Encoder produced no output for {profile.name}", quality=profile.name)
        return Rendition(profile=profile, width=width, height=height, path=output_path)


class Segmenter:
    def __init__(self, ffmpeg: FFmpeg, *, segment_seconds: int = 1):
        self.ffmpeg = ffmpeg
        self.segment_seconds = segment_seconds

    def build_args(self, input_path: Path, segment_dir: Path) -> list[str]:
        seconds = str(self.segment_seconds)
        return [
            "-i", str(input_path),
            "-c", "copy",
            "-hls_time", seconds,
            "-hls_init_time", seconds,
            "-hls_playlist_type", "vod",
            "-hls_list_size", "0",
            "-hls_flags", "independent_segments",
            "-hls_segment_type", "mpegts",
            "-hls_allow_cache", "1",
            "-hls_segment_filename", str(segment_dir / SEGMENT_PATTERN),
            "-f", "hls",
            str(segment_dir / VARIANT_PLAYLIST),
        ]

    def segment(self, rendition: Rendition) -> Rendition:
        """Split a rendition into ``segments/segment_NNN.ts`` plus its variant playlist."""
        name = rendition.profile.name
        segment_dir = rendition.path.parent / "segments"
        segment_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Segmenting %s into %ds chunks", name, self.segment_seconds)
        try:
            self.ffmpeg.run(self.build_args(rendition.path, segment_dir))
        except (subprocess.CalledProcessError, OSError) as e:
            raise SegmentError(f"Segmenting {name} failed", quality=name, detail=_describe(e)) from e

        playlist = segment_dir / VARIANT_PLAYLIST
        segments = sorted(segment_dir.glob("segment_*.ts"), key=_segment_index)
        if not playlist.is_file():
            raise SegmentError(f"No variant playlist written for {name}", quality=name)
        if not segments:
            raise SegmentError(f"No segments written for {name}", quality=name)

        rendition.segment_paths = segments
        rendition.variant_playlist_path = playlist
        logger.info("Created %d HLS segments for %s", len(segments), name)
        return rendition
