from .base import *  # noqa
from .base import BASE_DIR, DB_ENGINE
from .base import REST_FRAMEWORK as BASE_REST_FRAMEWORK

DEBUG = False

# SQLite by default so the suite runs without external services; DATABASE_ENGINE=postgres
# keeps the PostgreSQL settings from base, which the row-locking race tests need
if DB_ENGINE.lower() != "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "test_db.sqlite3",
        }
    }

# Capture outgoing mail in memory
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# Manifest storage needs collectstatic; tests never serve static files
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

# Run post-commit work inline so assertions can observe it
BACKGROUND_TASKS_ASYNC = False

# Slightly relax throttling for tests to reduce flakiness
REST_FRAMEWORK = {**BASE_REST_FRAMEWORK}
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {
    **BASE_REST_FRAMEWORK.get("DEFAULT_THROTTLE_RATES", {}),
    "user": "10000/min",
    "anon": "10000/min",
    "cart": "1000/min",
    "cart_write": "1000/min",
    "checkout": "1000/min",
    "orders": "1000/min",
    "orders_write": "1000/min",
}
