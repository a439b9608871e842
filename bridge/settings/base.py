from dotenv import load_dotenv
load_dotenv()

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "change-me")
DEBUG = os.getenv("DJANGO_DEBUG", "false").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "portpos",
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

ROOT_URLCONF = "bridge.urls"

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

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "Asia/Dhaka"
STATIC_URL = "/static/"

# PortPos gateway. Sandbox and live use separate hosts and separate keys.
PORTPOS = {
    "APP_KEY": os.getenv("PORTPOS_APP_KEY", ""),
    "SECRET_KEY": os.getenv("PORTPOS_SECRET_KEY", ""),
    "SANDBOX": os.getenv("PORTPOS_SANDBOX", "true").lower() in ("1", "true", "yes"),
    "INTEGRATION_METHOD": os.getenv("PORTPOS_INTEGRATION_METHOD", "redirect"),  # redirect | popup
    "CURRENCY": "BDT",
    "TIMEOUT": int(os.getenv("PORTPOS_TIMEOUT", "45")),
    "SITE_URL": os.getenv("PORTPOS_SITE_URL", "http://localhost:8000"),
    "SITE_NAME": os.getenv("PORTPOS_SITE_NAME", "Our Store"),
    "CHECKOUT_URL": os.getenv("PORTPOS_CHECKOUT_URL", "/checkout/"),
    "SUCCESS_URL": os.getenv("PORTPOS_SUCCESS_URL", "/checkout/success/"),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "portpos": {
            "handlers": ["console"],
            "level": os.getenv("PORTPOS_LOG_LEVEL", "INFO"),
            "propagate": True,
        },
    },
}
