"""
Settings for the rental payments service.

One module for every environment. Values come from the process
environment through django-environ; a local .env file (ENV_FILE, default
../.env.development) is read when present.

Required in production:
    SECRET_KEY, DATABASE_URL, CELERY_BROKER_URL,
    STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
"""

import os
from datetime import timedelta
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development")
if Path(env_file).exists():
    environ.Env.read_env(env_file)


# =============================================================================
# Django
# =============================================================================

SECRET_KEY = env("SECRET_KEY", default="django-insecure-local-payments-key")
DEBUG = env("DEBUG")
ALLOWED_HOSTS = env("ALLOWED_HOSTS")

INSTALLED_APPS = [
    # Admin is the operator console for payments and webhook events
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "core",
    "applications",
    "payments",
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

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

# APP_DIRS picks up payments/templates/payments/emails/*
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

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = env("STATIC_URL", default="/static/")
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# =============================================================================
# Database
# =============================================================================

# PostgreSQL when deployed, SQLite for local runs and tests. Idempotency
# rests on unique constraints, which both enforce.
DATABASES = {
    "default": env.db("DATABASE_URL", default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"].setdefault("OPTIONS", {})["connect_timeout"] = 10


# =============================================================================
# Celery
# =============================================================================

CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 10 * 60
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=False)

CELERY_BEAT_SCHEDULE = {
    "payments-retry-failed-webhooks": {
        "task": "payments.tasks.retry_failed_webhooks",
        "schedule": timedelta(minutes=5),
    },
    "payments-reset-stuck-webhooks": {
        "task": "payments.tasks.reset_stuck_webhooks",
        "schedule": timedelta(minutes=15),
    },
}


# =============================================================================
# Stripe
# =============================================================================

STRIPE_SECRET_KEY = env("STRIPE_SECRET_KEY", default="")
STRIPE_WEBHOOK_SECRET = env("STRIPE_WEBHOOK_SECRET", default="")
STRIPE_API_TIMEOUT_SECONDS = env.int("STRIPE_API_TIMEOUT_SECONDS", default=10)
# Network-level retries inside the SDK; webhook retries are separate
STRIPE_MAX_RETRIES = env.int("STRIPE_MAX_RETRIES", default=3)


# =============================================================================
# Payments
# =============================================================================

PAYMENTS_CURRENCY = env("PAYMENTS_CURRENCY", default="usd")

# Bank debit only; confirmable intents on another rail are canceled
PAYMENTS_SETTLEMENT_RAIL = env("PAYMENTS_SETTLEMENT_RAIL", default="us_bank_account")

# Floor of the operating top-up band, capped at what is still owed
PAYMENTS_MIN_TOP_UP_CENTS = env.int("PAYMENTS_MIN_TOP_UP_CENTS", default=100_000)

PAYMENTS_WEBHOOK_MAX_RETRIES = env.int("PAYMENTS_WEBHOOK_MAX_RETRIES", default=5)

PAYMENTS_NOTIFICATION_SERVICE = env(
    "PAYMENTS_NOTIFICATION_SERVICE",
    default="payments.notifications.EmailNotificationService",
)


# =============================================================================
# Email (deposit receipts)
# =============================================================================

EMAIL_BACKEND = env("EMAIL_BACKEND", default="django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = env("EMAIL_HOST", default="localhost")
EMAIL_PORT = env.int("EMAIL_PORT", default=587)
EMAIL_USE_TLS = env.bool("EMAIL_USE_TLS", default=True)
EMAIL_HOST_USER = env("EMAIL_HOST_USER", default="")
EMAIL_HOST_PASSWORD = env("EMAIL_HOST_PASSWORD", default="")
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", default="noreply@example.com")
PAYMENTS_RECEIPT_FROM_EMAIL = env("PAYMENTS_RECEIPT_FROM_EMAIL", default=DEFAULT_FROM_EMAIL)


# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = env("LOG_LEVEL")

# web and celery workers write separate files
LOG_FILE_NAME = env("LOG_FILE_NAME", default="payments.log")
LOG_DIR = BASE_DIR / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

_HANDLERS = ["console", "file"]

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {process:d} {message}",
            "style": "{",
        },
        "file": {
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
        "file": {
            "level": "DEBUG",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_DIR / LOG_FILE_NAME,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {"handlers": _HANDLERS, "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": _HANDLERS, "level": LOG_LEVEL, "propagate": False},
        "django.request": {"handlers": _HANDLERS, "level": "ERROR", "propagate": False},
        "celery": {"handlers": _HANDLERS, "level": LOG_LEVEL, "propagate": False},
        "applications": {"handlers": _HANDLERS, "level": LOG_LEVEL, "propagate": False},
        "payments": {"handlers": _HANDLERS, "level": LOG_LEVEL, "propagate": False},
    },
}


# =============================================================================
# Production hardening
# =============================================================================

if not DEBUG:
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = env.bool("SESSION_COOKIE_SECURE", default=True)
    CSRF_COOKIE_SECURE = env.bool("CSRF_COOKIE_SECURE", default=True)
    SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
