import pytest
from pydantic import ValidationError

from process_engine import config
from process_engine.config import Settings, load_settings

ENV_VARS = [
    "PROCESS_ENGINE_RECENT_FAILURES",
    "PROCESS_ENGINE_STEP_MAX_ATTEMPTS",
    "PROCESS_ENGINE_ROLLBACK_MAX_ATTEMPTS",
    "PROCESS_ENGINE_ROLLBACK_BACKOFF_SECONDS",
    "PROCESS_ENGINE_ROLLBACK_BACKOFF_MULTIPLIER",
    "PROCESS_ENGINE_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    # Never pick up a developer's local .env
    monkeypatch.setattr(config, "load_dotenv", lambda: False)


def test_defaults():
    settings = load_settings()

    assert settings == Settings()
    assert settings.recent_failures == 20
    assert settings.step_max_attempts == 2
    assert settings.rollback_max_attempts == 1
    assert settings.rollback_backoff_seconds == 0.0
    assert settings.log_level == "INFO"

def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PROCESS_ENGINE_RECENT_FAILURES", "50")
    monkeypatch.setenv("PROCESS_ENGINE_ROLLBACK_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("PROCESS_ENGINE_ROLLBACK_BACKOFF_SECONDS", "0.5")
    monkeypatch.setenv("PROCESS_ENGINE_LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.recent_failures == 50
    assert settings.rollback_max_attempts == 3
    assert settings.rollback_backoff_seconds == 0.5
    assert settings.log_level == "debug"

def test_empty_values_keep_defaults(monkeypatch):
    monkeypatch.setenv("PROCESS_ENGINE_STEP_MAX_ATTEMPTS", "")
    assert load_settings().step_max_attempts == 2

def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("PROCESS_ENGINE_RECENT_FAILURES", "0")
    with pytest.raises(ValidationError):
        load_settings()
