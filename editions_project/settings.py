"""
Django settings for the edition sequence service.

Everything environment-specific is read from environment variables; the
defaults give a local SQLite database suitable for development and tests.
Row locks (select_for_update) are only enforced on backends that support
them, so production should run on PostgreSQL.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-development-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [host for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "editions",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "editions_project.urls"
WSGI_APPLICATION = "editions_project.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": os.environ.get("EDITIONS_DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("EDITIONS_DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.environ.get("EDITIONS_DB_USER", ""),
        "PASSWORD": os.environ.get("EDITIONS_DB_PASSWORD", ""),
        "HOST": os.environ.get("EDITIONS_DB_HOST", ""),
        "PORT": os.environ.get("EDITIONS_DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

USE_TZ = True
TIME_ZONE = "UTC"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
        "rest_framework.parsers.MultiPartParser",
    ],
}

# Edition allocator
EDITIONS_ENFORCE_CAPACITY = _env_bool("EDITIONS_ENFORCE_CAPACITY", False)
EDITIONS_CERTIFICATE_BASE_URL = os.environ.get("EDITIONS_CERTIFICATE_BASE_URL", "")
EDITIONS_ACTIVE_FINANCIAL_STATUSES = ("paid", "authorized", "pending", "partially_paid")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "editions": {
            "handlers": ["console"],
            "level": os.environ.get("EDITIONS_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
