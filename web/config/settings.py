"""Django settings for the store backend.

Values are read from the environment with development defaults. The
orders app reads its tunables (payment window, discount, gateway
endpoints) from ``django.conf.settings`` at call time, so tests can
override them with pytest-django's ``settings`` fixture.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-secret-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "apps.catalog",
    "apps.orders",
    "apps.monitoring",
]

MIDDLEWARE = [
    "config.middleware.RequestIdMiddleware",
    "config.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

# Postgres when configured, SQLite otherwise (local runs and tests)
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("DB_HOST"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "NAME": os.getenv("DB_NAME", "orders"),
            "USER": os.getenv("DB_USER", "orders_user"),
            "PASSWORD": os.getenv("DB_PASSWORD", "orders-pass"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
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
USE_TZ = True
TIME_ZONE = "America/Argentina/Buenos_Aires"
LANGUAGE_CODE = "es-ar"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_THROTTLE_RATES": {
        "checkout": os.getenv("THROTTLE_CHECKOUT", "60/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "600/min"),
        "orders_admin": os.getenv("THROTTLE_ORDERS_ADMIN", "600/min"),
        "expiry_check": os.getenv("THROTTLE_EXPIRY_CHECK", "600/min"),
    },
    "UNAUTHENTICATED_USER": None,
}

# ---- Orders ----
TRANSFER_PAYMENT_WINDOW_MINUTES = int(os.getenv("TRANSFER_PAYMENT_WINDOW_MINUTES", "15"))
TRANSFER_DISCOUNT_RATE = os.getenv("TRANSFER_DISCOUNT_RATE", "0.10")
TRANSFER_BANK_DETAILS = {
    "cvu": os.getenv("TRANSFER_CVU", ""),
    "alias": os.getenv("TRANSFER_ALIAS", ""),
    "holder": os.getenv("TRANSFER_HOLDER", ""),
}
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")

# ---- Hosted checkout gateway ----
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", True)
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "http://gateway-sandbox:9002")
GATEWAY_ACCESS_TOKEN = os.getenv("GATEWAY_ACCESS_TOKEN", "")
GATEWAY_NOTIFICATION_URL = os.getenv(
    "GATEWAY_NOTIFICATION_URL", f"{API_BASE_URL}/api/payments/webhook/"
)
GATEWAY_STATEMENT_DESCRIPTOR = os.getenv("GATEWAY_STATEMENT_DESCRIPTOR", "DENIM ROSARIO")
GATEWAY_CURRENCY = os.getenv("GATEWAY_CURRENCY", "ARS")

HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "5.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30.0"))

# ---- Lifecycle event sinks ----
ORDER_EVENT_SINKS = [
    "apps.orders.notifications.LoggingNotifier",
    "apps.orders.tracking.ConversionTracker",
]
CONVERSION_PIXEL_ID = os.getenv("CONVERSION_PIXEL_ID", "")
CONVERSION_ACCESS_TOKEN = os.getenv("CONVERSION_ACCESS_TOKEN", "")
CONVERSION_API_VERSION = os.getenv("CONVERSION_API_VERSION", "v19.0")
CONVERSION_CURRENCY = os.getenv("CONVERSION_CURRENCY", "ARS")

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "config.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "orders": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
