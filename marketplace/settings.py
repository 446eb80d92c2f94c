"""
Django settings for marketplace project.

Values come from environment variables; defaults are suitable for local
development and the test suite (SQLite, log-only notifications, synthetic
payouts when no Campay token is configured).
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-dev-key-change-me")
DEBUG = env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "fulfillment.apps.FulfillmentConfig",
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

ROOT_URLCONF = "marketplace.urls"

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

WSGI_APPLICATION = "marketplace.wsgi.application"
ASGI_APPLICATION = "marketplace.asgi.application"

if os.environ.get("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.environ.get("POSTGRES_USER", "postgres"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Africa/Douala"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.environ.get("SMTP_PORT", "587"))
EMAIL_HOST_USER = os.environ.get("SMTP_USER", "")
EMAIL_HOST_PASSWORD = os.environ.get("SMTP_PASS", "")
EMAIL_USE_TLS = env_bool("SMTP_TLS", True)
DEFAULT_FROM_EMAIL = os.environ.get("SMTP_FROM", EMAIL_HOST_USER or "no-reply@marketplace.local")

FULFILLMENT = {
    "REFUND_AFTER_DAYS": int(os.environ.get("REFUND_AFTER_DAYS", "3")),
    "SWEEP_INTER_ORDER_DELAY": float(os.environ.get("SWEEP_INTER_ORDER_DELAY", "1.0")),
    "SWEEP_INTERVAL": int(os.environ.get("SWEEP_INTERVAL", str(2 * 60 * 60))),
    "REFUND_CLAIM_LEASE": int(os.environ.get("REFUND_CLAIM_LEASE", str(15 * 60))),
    "STOCK_NOTIFICATION_WINDOW": int(os.environ.get("STOCK_NOTIFICATION_WINDOW", str(60 * 60))),
    "LOW_STOCK_LEVELS": (0, 1),
    "LOW_STOCK_THRESHOLD": 5,
    "STOCK_CHECK_INTERVAL": int(os.environ.get("STOCK_CHECK_INTERVAL", str(6 * 60 * 60))),
    "STOCK_CHECK_DELAY": float(os.environ.get("STOCK_CHECK_DELAY", "1.0")),
    "OUTBOX_MAX_RETRIES": int(os.environ.get("OUTBOX_MAX_RETRIES", "5")),
    "NOTIFICATION_DISPATCHER": os.environ.get(
        "NOTIFICATION_DISPATCHER",
        "fulfillment.infra.notifications.LoggingNotificationDispatcher",
    ),
    "OPS_TOKEN": os.environ.get("OPS_TOKEN", ""),
    "ADMIN_USER_IDS": tuple(filter(None, os.environ.get("ADMIN_USER_IDS", "").split(","))),
}

CAMPAY = {
    "BASE_URL": os.environ.get("CAMPAY_BASE_URL", "https://demo.campay.net"),
    "TOKEN": os.environ.get("CAMPAY_TOKEN", ""),
    "SANDBOX": env_bool("CAMPAY_SANDBOX", True),
    "SANDBOX_MAX_AMOUNT": os.environ.get("CAMPAY_SANDBOX_MAX_AMOUNT", "100"),
    "COUNTRY_CODE": os.environ.get("CAMPAY_COUNTRY_CODE", "237"),
    "TIMEOUT": float(os.environ.get("CAMPAY_TIMEOUT", "15")),
    "MAX_RETRIES": int(os.environ.get("CAMPAY_MAX_RETRIES", "2")),
    "RETRY_DELAY": float(os.environ.get("CAMPAY_RETRY_DELAY", "1.0")),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "fulfillment.utils.logging.JsonFormatter",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.environ.get("LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django.db.backends": {
            "level": "WARNING",
        },
    },
}
