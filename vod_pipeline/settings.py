from pathlib import Path
import os
import tempfile
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

def env_list(name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]

_SIZE_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}

def env_size(name: str, default: str) -> int:
    """Parse sizes such as '4GB' or '512MB' into bytes; '0' disables the limit."""
    raw = str(os.getenv(name, default)).strip().upper()
    number = raw.rstrip("KMGB")
    unit = raw[len(number):]
    if unit not in _SIZE_UNITS or not number.replace(".", "", 1).isdigit():
        raise ImproperlyConfigured(f"Invalid size for {name}: {raw!r}")
    return int(float(number) * _SIZE_UNITS[unit])

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# Production deployments must override this through .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

ALLOWED_HOSTS = env_list("ALLOWED_HOSTS", "127.0.0.1,localhost,testserver")

# -----------------------------------------------------
# Applications (JSON API + ingest worker; no admin, no sessions)
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "api",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "vod_pipeline.urls"
WSGI_APPLICATION = "vod_pipeline.wsgi.application"

# -----------------------------------------------------
# Catalog database (Postgres when DB_HOST is set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "vod_pipeline"),
            "USER": env("DB_USER", "vod_user"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(env("DB_CONN_MAX_AGE", "60")),
            "OPTIONS": {"sslmode": os.getenv("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {},
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
# Cache (trigger de-duplication; Redis when configured)
# -----------------------------------------------------
if os.getenv("REDIS_CACHE_URL"):
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": env("REDIS_CACHE_URL"),
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "vod-pipeline",
        }
    }

TIME_ZONE = "UTC"
USE_TZ = True

# -----------------------------------------------------
# Django REST Framework
# -----------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
}

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}

# -----------------------------------------------------
# S3 / MinIO (env-driven; no hardcoded secrets)
# -----------------------------------------------------
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or "http://127.0.0.1:9000"
# base of every published URL; what players reach, not what the worker reaches
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_BUCKET = os.getenv("S3_BUCKET", "media-local")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
S3_PRESIGN_EXPIRE_SECONDS = int(os.getenv("S3_PRESIGN_EXPIRE_SECONDS", "900"))

# -----------------------------------------------------
# Ingest pipeline (fixed at deployment, never per job)
# -----------------------------------------------------
HLS_SEGMENT_SECONDS = int(env("HLS_SEGMENT_SECONDS", "10"))
INGEST_JOB_TIMEOUT_SECONDS = int(env("INGEST_JOB_TIMEOUT_SECONDS", "540"))
TRANSCODE_MEMORY_LIMIT_BYTES = env_size("TRANSCODE_MEMORY_LIMIT", "4GB")
INGEST_REGION = env("INGEST_REGION", S3_REGION)

INGEST_INCOMING_PREFIX = env("INGEST_INCOMING_PREFIX", "uploads/")
INGEST_PUBLISHED_PREFIX = env("INGEST_PUBLISHED_PREFIX", "published/")
INGEST_TMP_DIR = env("INGEST_TMP_DIR", tempfile.gettempdir())
INGEST_DEDUPE_TTL_SECONDS = int(env("INGEST_DEDUPE_TTL_SECONDS", "3600"))
FFMPEG_BINARY = env("FFMPEG_BINARY", "ffmpeg")

INGEST_FETCH_ATTEMPTS = int(env("INGEST_FETCH_ATTEMPTS", "3"))
INGEST_PUBLISH_ATTEMPTS = int(env("INGEST_PUBLISH_ATTEMPTS", "3"))
INGEST_CATALOG_ATTEMPTS = int(env("INGEST_CATALOG_ATTEMPTS", "2"))
INGEST_RETRY_BACKOFF_SECONDS = float(env("INGEST_RETRY_BACKOFF_SECONDS", "0.5"))

# -----------------------------------------------------
# Celery / Redis
# -----------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", "redis://127.0.0.1:6379/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", "redis://127.0.0.1:6379/0")
CELERY_TASK_TRACK_STARTED = True
# hard ceiling slightly above the job budget so the orchestrator reports the timeout itself
CELERY_TASK_TIME_LIMIT = int(env("CELERY_TASK_TIME_LIMIT", str(INGEST_JOB_TIMEOUT_SECONDS + 60)))
CELERY_TASK_ROUTES = {
    "api.tasks.process_upload": {"queue": f"ingest.{INGEST_REGION}"},
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
