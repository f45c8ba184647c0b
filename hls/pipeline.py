"""The HLS packaging pipeline for one job.

fetch -> probe -> thumbnail -> transcode every rung -> segment every rung
-> master playlist -> upload. Stages run strictly in sequence; nothing is
uploaded until every earlier stage succeeded for every quality.
"""

import logging
import posixpath
import re
from dataclasses import asdict, dataclass, field
from typing import Sequence
from urllib.parse import unquote, urlparse

from .ffmpeg import Rendition, Segmenter, ThumbnailExtractor, Transcoder
from .fetch import Fetcher
from .ladder import QualityProfile
from .playlist import MASTER_PLAYLIST, variant_uri, write_master_playlist
from .probe import MediaProber
from .s3 import Uploader, join_key
from .workspace import ScratchWorkspace

logger = logging.getLogger(__name__)

THUMBNAIL_NAME = "thumbnail.jpg"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def source_name(url: str) -> tuple[str, str]:
    """Return (base name, extension) of the file a URL points at."""
    path = unquote(urlparse(url).path)
    stem, ext = posixpath.splitext(posixpath.basename(path))
    stem = _UNSAFE_CHARS.sub("_", stem).strip("._") or "video"
    ext = ext.lower() if re.fullmatch(r"\.[A-Za-z0-9]{1,5}", ext or "") else ".mp4"
    return stem, ext


@dataclass
class RenditionOutput:
    name: str
    width: int
    height: int
    bandwidth: int
    playlist_key: str
    segments: int


@dataclass
class PipelineResult:
    master_playlist_key: str
    thumbnail_key: str
    renditions: list[RenditionOutput] = field(default_factory=list)
    uploaded: int = 0
    urls: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return asdict(self)


class HLSPipeline:
    def __init__(
        self,
        *,
        fetcher: Fetcher,
        prober: MediaProber,
        thumbnails: ThumbnailExtractor,
        transcoder: Transcoder,
        segmenter: Segmenter,
        uploader: Uploader,
        ladder: Sequence[QualityProfile],
    ):
        if not ladder:
            raise ValueError("ladder must contain at least one quality profile")
        self.fetcher = fetcher
        self.prober = prober
        self.thumbnails = thumbnails
        self.transcoder = transcoder
        self.segmenter = segmenter
        self.uploader = uploader
        self.ladder = tuple(ladder)

    def run(self, job, workspace: ScratchWorkspace) -> PipelineResult:
        base_name, _ = source_name(job.source_url)

        logger.info("Downloading %s", job.source_url)
        self.fetcher.fetch(job.source_url, workspace.input_path)

        info = self.prober.probe(workspace.input_path)
        aspect = info.aspect_ratio

        self.thumbnails.extract(workspace.input_path, workspace.output_dir / THUMBNAIL_NAME, duration=info.duration)

        # Every rung is encoded before any is segmented: a failure anywhere
        # leaves nothing half-built to publish.
        renditions: list[Rendition] = [
            self.transcoder.transcode(
                workspace.input_path,
                workspace.quality_dir(profile.name),
                base_name,
                profile,
                aspect,
            )
            for profile in self.ladder
        ]
        for rendition in renditions:
            self.segmenter.segment(rendition)

        write_master_playlist(workspace.output_dir, renditions)

        keys = self.uploader.publish(workspace.output_dir, job.destination_prefix)
        return self._result(job.destination_prefix, renditions, len(keys))

    def _result(self, prefix: str, renditions: Sequence[Rendition], uploaded: int) -> PipelineResult:
        store = self.uploader.store
        master_key = join_key(prefix, MASTER_PLAYLIST)
        thumb_key = join_key(prefix, THUMBNAIL_NAME)
        outputs = [
            RenditionOutput(
                name=r.profile.name,
                width=r.width,
                height=r.height,
                bandwidth=r.bandwidth,
                playlist_key=join_key(prefix, variant_uri(r.profile)),
                segments=len(r.segment_paths),
            )
            for r in renditions
        ]
        urls = {
            "master": store.url(master_key),
            "thumbnail": store.url(thumb_key),
            "qualities": {o.name: store.url(o.playlist_key) for o in outputs},
        }
        return PipelineResult(
            master_playlist_key=master_key,
            thumbnail_key=thumb_key,
            renditions=outputs,
            uploaded=uploaded,
            urls=urls,
        )
