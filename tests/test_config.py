import os

import pytest

from config import Settings, load_settings
from model import DEFAULT_PROJECT_STATUSES

ENV_VARS = (
    "DATABASE_URL",
    "DB_CREATE_SCHEMA",
    "HOST",
    "PORT",
    "API_PREFIX",
    "CORS_ORIGINS",
    "LOG_LEVEL",
    "LOG_FILE",
    "PROJECT_STATUSES",
    "SYSTEM_ACTOR_ID",
    "ROLLOVER_ENABLED",
    "ROLLOVER_DAY_OF_WEEK",
    "ROLLOVER_HOUR",
    "ROLLOVER_MINUTE",
    "MCP_ENABLED",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def no_env_file(tmp_path):
    return tmp_path / "absent.env"


def test_defaults(no_env_file):
    settings = load_settings(no_env_file)

    assert settings == Settings()
    assert settings.port == 3001
    assert settings.api_prefix == "/api"
    assert settings.project_statuses == DEFAULT_PROJECT_STATUSES
    assert not settings.uses_database


def test_environment_overrides(monkeypatch, no_env_file):
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://tracker@db/tracker")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("API_PREFIX", "/tracker/")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example,https://b.example")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("PROJECT_STATUSES", "idea,building,live")
    monkeypatch.setenv("ROLLOVER_ENABLED", "false")
    monkeypatch.setenv("ROLLOVER_HOUR", "6")
    monkeypatch.setenv("MCP_ENABLED", "0")

    settings = load_settings(no_env_file)

    assert settings.uses_database
    assert settings.port == 8080
    assert settings.api_prefix == "/tracker"
    assert settings.cors_origins == ("https://a.example", "https://b.example")
    assert settings.log_level == "DEBUG"
    assert settings.project_statuses == ("idea", "building", "live")
    assert settings.rollover_enabled is False
    assert settings.rollover_hour == 6
    assert settings.mcp_enabled is False


def test_env_file_is_read(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("SYSTEM_ACTOR_ID=scheduler-bot\nROLLOVER_MINUTE=15\n")
    try:
        settings = load_settings(env_file)
    finally:
        # read_env writes into os.environ
        os.environ.pop("SYSTEM_ACTOR_ID", None)
        os.environ.pop("ROLLOVER_MINUTE", None)

    assert settings.system_actor_id == "scheduler-bot"
    assert settings.rollover_minute == 15
