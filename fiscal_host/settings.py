"""
Django settings for fiscal_host project.

Values come from environment variables with development defaults.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-secret-key")

DEBUG = os.environ.get("DJANGO_DEBUG", "true").lower() == "true"

ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",")


INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "funding",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "fiscal_host.urls"

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

ASGI_APPLICATION = "fiscal_host.asgi.application"


# Database
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
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
MEDIA_ROOT = os.environ.get("MEDIA_ROOT", str(BASE_DIR / "media"))
MEDIA_URL = os.environ.get("MEDIA_URL", "/media/")


# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "funding.utils.logging.JsonFormatter",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    },
    "loggers": {
        "funding": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}


# Platform
APP_ENV = os.environ.get("APP_ENV", "development")

WEBSITE_URL = os.environ.get("WEBSITE_URL", "http://localhost:3000")
API_URL = os.environ.get("API_URL", "http://localhost:8000")
PLATFORM_DOMAIN = os.environ.get("PLATFORM_DOMAIN", "opencollective.com")

# Account receiving platform tips and filing settlement invoices
PLATFORM_COLLECTIVE_SLUG = os.environ.get("PLATFORM_COLLECTIVE_SLUG", "opencollective")

FEES_DEFAULT_HOST_PERCENT = float(os.environ.get("FEES_DEFAULT_HOST_PERCENT", "5"))
FEES_DEFAULT_PLATFORM_PERCENT = float(os.environ.get("FEES_DEFAULT_PLATFORM_PERCENT", "5"))

# Who files the monthly settlement expense and where it gets paid
SETTLEMENT_EXPENSE_PROPERTIES = {
    "from_collective_slug": os.environ.get("SETTLEMENT_FROM_COLLECTIVE_SLUG", PLATFORM_COLLECTIVE_SLUG),
    "user_email": os.environ.get("SETTLEMENT_USER_EMAIL") or None,
}

SETTLEMENT_MINIMUM_AMOUNT = 1000


# Stripe
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_ACCOUNT_ID = os.environ.get("STRIPE_ACCOUNT_ID", "")
STRIPE_WEBHOOK_SIGNING_SECRET = os.environ.get("STRIPE_WEBHOOK_SIGNING_SECRET", "")


# PayPal
PAYPAL_LIVE_API_URL = "https://api.paypal.com"
PAYPAL_SANDBOX_API_URL = "https://api.sandbox.paypal.com"
PAYPAL_DEV_WEBHOOK_URL = "https://smee.io/opencollective-paypal-dev-testing"
PAYPAL_REQUEST_TIMEOUT = int(os.environ.get("PAYPAL_REQUEST_TIMEOUT", "30"))


# Email
EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = os.environ.get("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.environ.get("EMAIL_PORT", "25"))
EMAIL_HOST_USER = os.environ.get("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.environ.get("EMAIL_HOST_PASSWORD", "")
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "Open Collective <no-reply@opencollective.com>")
EMAIL_BCC = os.environ.get("EMAIL_BCC", "emailbcc@opencollective.com")
EMAIL_ONLY_RECIPIENT = os.environ.get("ONLY") or None
EMAIL_UNSUBSCRIBE_SECRET = os.environ.get("EMAIL_UNSUBSCRIBE_SECRET", "dev-unsubscribe-secret")
EMAIL_INTERNAL_DOMAINS = ("opencollective.com",)
