import json
import os
from pathlib import Path

from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ImproperlyConfigured(f"{name} must be an integer, got {raw!r}")

def env_json(name: str, default=None):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ImproperlyConfigured(f"{name} is not valid JSON: {exc}")

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# Only the worker process and migrations use Django here, but keep the same
# rule: production needs a real secret.
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",") if h.strip()]

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.contenttypes",

    # Third-party
    "rest_framework",

    # Local
    "hls",
]

# -----------------------------------------------------
# Database (Postgres if DB_* env vars set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "reel_pipeline"),
            "USER": env("DB_USER", "reel_user"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST", "127.0.0.1"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(env("DB_CONN_MAX_AGE", "60")),  # keep-alive
            "OPTIONS": {
                **({"sslmode": os.getenv("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {})
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

# -----------------------------------------------------
# Django REST Framework (serializers only, no views)
# -----------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "UNAUTHENTICATED_USER": None,
}

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "job_context": {"()": "hls.log.JobContextFilter"},
    },
    "formatters": {
        "job": {
            "format": "%(asctime)s %(levelname)s %(name)s [job=%(job_id)s reel=%(correlation_id)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "filters": ["job_context"],
            "formatter": "job",
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "botocore": {"level": "WARNING"},
        "s3transfer": {"level": "WARNING"},
        "urllib3": {"level": "WARNING"},
    },
}

# -----------------------------------------------------
# Celery / Redis
# -----------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", "redis://127.0.0.1:6379/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", "redis://127.0.0.1:6379/0")
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = env_int("CELERY_TASK_TIME_LIMIT", 60 * 60)  # seconds
CELERY_TASK_SOFT_TIME_LIMIT = env_int(
    "CELERY_TASK_SOFT_TIME_LIMIT", CELERY_TASK_TIME_LIMIT - min(300, CELERY_TASK_TIME_LIMIT // 10)
)
CELERY_TASK_ACKS_LATE = True
# A hard kill must be redelivered, not acked; the soft limit ends the attempt cleanly first.
CELERY_TASK_ACKS_ON_FAILURE_OR_TIMEOUT = False
CELERY_TASK_REJECT_ON_WORKER_LOST = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_WORKER_CONCURRENCY = env_int("CELERY_WORKER_CONCURRENCY", 1)
CELERY_TASK_DEFAULT_QUEUE = env("CELERY_TASK_DEFAULT_QUEUE", "video-processing-reel")
# Redis redelivers unacked messages after this window (stalled job recovery).
CELERY_BROKER_TRANSPORT_OPTIONS = {
    "visibility_timeout": env_int("CELERY_VISIBILITY_TIMEOUT", CELERY_TASK_TIME_LIMIT + 600),
}

# -----------------------------------------------------
# Default PK type
# -----------------------------------------------------
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------------------
# S3 / MinIO (env-driven; no hardcoded secrets)
# -----------------------------------------------------
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None  # None means AWS
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_BUCKET = os.getenv("S3_BUCKET", "media-local")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")

# -----------------------------------------------------
# Encoder binaries
# -----------------------------------------------------
FFMPEG_PATH = env("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = env("FFPROBE_PATH", "ffprobe")

# -----------------------------------------------------
# HLS packaging
# -----------------------------------------------------
HLS_QUALITY_LADDER = env_json("HLS_QUALITY_LADDER")  # None -> built-in 360p..1080p ladder
HLS_SEGMENT_SECONDS = env_int("HLS_SEGMENT_SECONDS", 1)
HLS_SCRATCH_ROOT = Path(env("HLS_SCRATCH_ROOT", str(BASE_DIR / "scratch")))
HLS_PUBLISH_RENDITION_MP4 = env_bool("HLS_PUBLISH_RENDITION_MP4", True)

HLS_FETCH_TIMEOUT = env_int("HLS_FETCH_TIMEOUT", 60)  # seconds
HLS_MAX_SOURCE_BYTES = env_int("HLS_MAX_SOURCE_BYTES", 2 * 1024 ** 3)

HLS_UPLOAD_WORKERS = env_int("HLS_UPLOAD_WORKERS", 4)
HLS_UPLOAD_PART_SIZE = env_int("HLS_UPLOAD_PART_SIZE", 5 * 1024 ** 2)

HLS_JOB_MAX_ATTEMPTS = env_int("HLS_JOB_MAX_ATTEMPTS", 3)
HLS_JOB_BACKOFF_MS = env_int("HLS_JOB_BACKOFF_MS", 1000)
HLS_DISCARD_COMPLETED = env_bool("HLS_DISCARD_COMPLETED", True)
# A job whose worker dies more often than this has the loss counted as a failed attempt.
HLS_MAX_STALLED = env_int("HLS_MAX_STALLED", 1)

# -----------------------------------------------------
# Status callback (system of record)
# -----------------------------------------------------
MAIN_SERVER_URL = os.getenv("MAIN_SERVER_URL", "").rstrip("/")
HLS_STATUS_CALLBACK_URL = os.getenv("HLS_STATUS_CALLBACK_URL") or (
    f"{MAIN_SERVER_URL}/reels/internal/update" if MAIN_SERVER_URL else ""
)
HLS_STATUS_TIMEOUT = env_int("HLS_STATUS_TIMEOUT", 10)
