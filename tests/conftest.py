import pytest

from hls.coordinator import WorkerCoordinator
from hls.ffmpeg import Segmenter, ThumbnailExtractor, Transcoder
from hls.ladder import DEFAULT_LADDER
from hls.models import Job
from hls.pipeline import HLSPipeline
from hls.s3 import Uploader

from .fakes import FakeFetcher, FakeFFmpeg, FakeObjectStore, FakeProber, FakeReporter, InMemoryJobStore


def make_job(**overrides) -> Job:
    fields = {
        "correlation_id": "42",
        "source_url": "https://cdn.example.com/reels/clip.mp4",
        "destination_prefix": "out/42",
    }
    fields.update(overrides)
    return Job(**fields)


def make_pipeline(*, ffmpeg=None, store=None, fetcher=None, prober=None, ladder=DEFAULT_LADDER) -> HLSPipeline:
    ffmpeg = ffmpeg or FakeFFmpeg()
    return HLSPipeline(
        fetcher=fetcher or FakeFetcher(),
        prober=prober or FakeProber(),
        thumbnails=ThumbnailExtractor(ffmpeg),
        transcoder=Transcoder(ffmpeg),
        segmenter=Segmenter(ffmpeg, segment_seconds=1),
        uploader=Uploader(store if store is not None else FakeObjectStore(), workers=2),
        ladder=ladder,
    )


@pytest.fixture
def job():
    return make_job()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def reporter():
    return FakeReporter()


@pytest.fixture
def scratch_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def build_coordinator(scratch_root, reporter):
    """Factory: coordinator over an in-memory store for the given jobs."""

    def _build(*jobs, pipeline=None, subscribers=None, max_stalled=1):
        store = InMemoryJobStore(*jobs)
        coordinator = WorkerCoordinator(
            store,
            pipeline or make_pipeline(),
            reporter,
            scratch_root=scratch_root,
            subscribers=subscribers,
            max_stalled=max_stalled,
        )
        return coordinator, store

    return _build
