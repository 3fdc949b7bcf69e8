"""
Django settings for the card-ledger project.

- PostgreSQL through environment variables, SQLite fallback for development
- Scan scheduler defaults (crontab expression, timezone, enabled flag)
- Source transport timeouts and export location
"""

from pathlib import Path
import os

BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "DJANGO_SECRET_KEY",
    "django-insecure-card-ledger-development-key-change-me",
)

DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"

ALLOWED_HOSTS = (
    os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",")
    if os.getenv("DJANGO_ALLOWED_HOSTS")
    else (["*"] if DEBUG else [])
)


INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Local apps
    "ingest",
    "pipeline",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "cardledger.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]


# Database
# PostgreSQL via environment variables; SQLite fallback for local development.
# SQLite writers take the lock at BEGIN and wait on each other instead of failing,
# so concurrent entry-id reservations queue on the counter row.
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "CONN_MAX_AGE": 60,
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
            "OPTIONS": {
                "timeout": 20,
                "transaction_mode": "IMMEDIATE",
            },
            "TEST": {
                "NAME": BASE_DIR / "test_db.sqlite3",
            },
        }
    }


LANGUAGE_CODE = "en-us"

TIME_ZONE = os.getenv("CARDLEDGER_TIME_ZONE", "Africa/Tunis")

USE_I18N = True

USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Mail (scan summaries)
EMAIL_BACKEND = os.getenv("DJANGO_EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "card-ledger@localhost")


# Card ledger
CARDLEDGER_PHONE_PREFIX = os.getenv("CARDLEDGER_PHONE_PREFIX", "216")
CARDLEDGER_SOURCE_EXTENSION = os.getenv("CARDLEDGER_SOURCE_EXTENSION", ".csv")
CARDLEDGER_LIST_TIMEOUT = int(os.getenv("CARDLEDGER_LIST_TIMEOUT", "15"))
CARDLEDGER_DOWNLOAD_TIMEOUT = int(os.getenv("CARDLEDGER_DOWNLOAD_TIMEOUT", "30"))
CARDLEDGER_EXPORT_DIR = os.getenv("CARDLEDGER_EXPORT_DIR", str(BASE_DIR / "xml_output"))

CARDLEDGER_SCAN_SCHEDULE = os.getenv("CARDLEDGER_SCAN_SCHEDULE", "*/5 * * * *")
CARDLEDGER_SCAN_ENABLED = os.getenv("CARDLEDGER_SCAN_ENABLED", "true").lower() == "true"
CARDLEDGER_SCAN_TIMEZONE = os.getenv("CARDLEDGER_SCAN_TIMEZONE", TIME_ZONE)


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "ingest": {
            "handlers": ["console"],
            "level": os.getenv("CARDLEDGER_LOG_LEVEL", "INFO"),
        },
        "pipeline": {
            "handlers": ["console"],
            "level": os.getenv("CARDLEDGER_LOG_LEVEL", "INFO"),
        },
        "apscheduler": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}
