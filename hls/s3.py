import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .errors import UploadError
from .playlist import MASTER_PLAYLIST

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".mp4": "video/mp4",
    ".jpg": "image/jpeg",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Manifests that must never outlive the renditions they point at.
STALE_MANIFESTS = (MASTER_PLAYLIST, "master.mpd")


def content_type_for(path) -> str:
    return CONTENT_TYPES.get(Path(str(path)).suffix.lower(), DEFAULT_CONTENT_TYPE)


def join_key(prefix: str, relative: str) -> str:
    rel = str(relative).replace("\\", "/").lstrip("/")  # Windows safety
    prefix = prefix.rstrip("/")
    return f"{prefix}/{rel}" if prefix else rel


def get_s3_client():
    """
    SDK client for server-side upload/delete.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # None for AWS, e.g. http://127.0.0.1:9000 for MinIO
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            max_pool_connections=32,  # upload workers x multipart concurrency
        ),
    )


def object_url(key: str, bucket: Optional[str] = None) -> str:
    """
    Public URL of an object: PUBLIC endpoint if set (MinIO/CDN), else the AWS virtual-host form.
    """
    bucket = bucket or settings.S3_BUCKET
    base = settings.S3_PUBLIC_ENDPOINT
    if base:
        return f"{base.rstrip('/')}/{bucket}/{key}"
    return f"https://{bucket}.s3.amazonaws.com/{key}"


class ObjectStore:
    """Thin wrapper around one bucket."""

    def __init__(self, client=None, bucket: Optional[str] = None, *, part_size: int = 5 * 1024 ** 2, part_concurrency: int = 4):
        self.client = client or get_s3_client()
        self.bucket = bucket or settings.S3_BUCKET
        # Large files go multipart; memory stays bounded by part_size x part_concurrency.
        self.transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=part_concurrency,
            use_threads=True,
        )

    def upload_file(self, local_path, key: str, content_type: Optional[str] = None) -> None:
        extra = {"ContentType": content_type} if content_type else None
        self.client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra, Config=self.transfer_config)

    def delete_object(self, key: str) -> None:
        # S3 delete is idempotent: a missing key is not an error.
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def url(self, key: str) -> str:
        return object_url(key, self.bucket)


class Uploader:
    """Publishes a finished output tree under a destination prefix."""

    def __init__(self, store: ObjectStore, *, workers: int = 4, publish_mp4: bool = True):
        self.store = store
        self.workers = max(1, workers)
        self.publish_mp4 = publish_mp4

    def collect(self, output_dir: Path) -> list[Path]:
        """Files to publish, master playlist last."""
        base = Path(output_dir)
        files = sorted(p for p in base.rglob("*") if p.is_file())
        if not self.publish_mp4:
            files = [p for p in files if p.suffix.lower() != ".mp4"]
        master = base / MASTER_PLAYLIST
        if master in files:
            files.remove(master)
            files.append(master)
        return files

    def delete_stale_manifests(self, prefix: str) -> None:
        for name in STALE_MANIFESTS:
            key = join_key(prefix, name)
            try:
                self.store.delete_object(key)
            except (BotoCoreError, ClientError) as e:
                raise UploadError(f"Could not remove stale manifest {key}", key=key, detail=str(e)) from e
            logger.info("Removed any existing %s", key)

    def _upload_one(self, path: Path, base: Path, prefix: str) -> str:
        key = join_key(prefix, path.relative_to(base).as_posix())
        try:
            self.store.upload_file(path, key, content_type=content_type_for(path))
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            raise UploadError(f"Upload of {key} failed", key=key, detail=str(e)) from e
        logger.debug("Uploaded %s", key)
        return key

    def publish(self, output_dir: Path, prefix: str) -> list[str]:
        """Upload every file under ``output_dir`` to ``prefix/<relative path>``.

        Renditions, segments and the thumbnail go up in parallel; the master
        playlist only after all of them landed. The first failure cancels
        what has not started and raises UploadError.
        """
        base = Path(output_dir)
        files = self.collect(base)
        self.delete_stale_manifests(prefix)

        master = base / MASTER_PLAYLIST
        body = [p for p in files if p != master]
        keys: list[str] = []

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="hls-upload") as pool:
            futures = [pool.submit(self._upload_one, p, base, prefix) for p in body]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for f in pending:
                f.cancel()
            for f in futures:
                if f.done() and not f.cancelled() and f.exception() is not None:
                    raise f.exception()
            keys.extend(f.result() for f in futures)

        if master in files:
            keys.append(self._upload_one(master, base, prefix))

        logger.info("Published %d objects under %s/", len(keys), prefix.rstrip("/"))
        return keys
