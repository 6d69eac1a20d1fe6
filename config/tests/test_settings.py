import importlib

import config.settings.base as base_settings
import config.settings.test as test_settings


def _reload():
    importlib.reload(base_settings)
    importlib.reload(test_settings)


def test_test_settings_use_postgres_when_requested(monkeypatch):
    monkeypatch.setenv("DATABASE_ENGINE", "postgres")
    monkeypatch.setenv("DATABASE_NAME", "marketplace_ci")
    try:
        _reload()
        db = test_settings.DATABASES["default"]
        assert db["ENGINE"] == "django.db.backends.postgresql"
        assert db["NAME"] == "marketplace_ci"
    finally:
        monkeypatch.undo()
        _reload()


def test_test_settings_default_to_sqlite(monkeypatch):
    monkeypatch.delenv("DATABASE_ENGINE", raising=False)
    try:
        _reload()
        assert test_settings.DATABASES["default"]["ENGINE"] == "django.db.backends.sqlite3"
    finally:
        monkeypatch.undo()
        _reload()
