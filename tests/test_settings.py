import pytest

from tasklist.settings import get_settings


def test_defaults(monkeypatch):
    for name in ["TASKLIST_BACKEND", "TASKLIST_DATA_PATH", "CORS_ALLOW_ORIGINS", "LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)
    settings = get_settings()
    assert settings.persistence_backend == "json"
    assert settings.data_path == "./data/tasks.json"
    assert settings.cors_allow_origins == ["*"]
    assert settings.log_level == "INFO"


def test_sqlite_backend_from_env(monkeypatch):
    monkeypatch.setenv("TASKLIST_BACKEND", " SQLite ")
    monkeypatch.delenv("TASKLIST_DATA_PATH", raising=False)
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = get_settings()
    assert settings.persistence_backend == "sqlite"
    assert settings.data_path == "./data/tasks.db"
    assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]
    assert settings.log_level == "DEBUG"


def test_unknown_backend_is_an_error(monkeypatch):
    monkeypatch.setenv("TASKLIST_BACKEND", "postgres")
    with pytest.raises(ValueError):
        get_settings()
