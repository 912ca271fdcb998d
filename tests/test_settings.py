import pytest

from vocab_review.app.settings import AppSettings


_ENV_VARS = (
    "APP_NAME",
    "APP_ENV",
    "LOG_LEVEL",
    "REVIEW_MAX_INTERVAL_DAYS",
    "REVIEW_MAX_PERSIST_FAILURES",
    "REVIEW_SOURCE_LANGUAGE",
    "REVIEW_TARGET_LANGUAGE",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    return monkeypatch


def test_from_env_applies_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = AppSettings.from_env()

    assert settings.app_name == "Vocabulary Review"
    assert settings.app_env == "development"
    assert settings.log_level == "INFO"
    assert settings.telegram_bot_token == "123:abc"
    assert settings.max_interval_days == 365
    assert settings.max_persist_failures == 3
    assert (settings.source_language, settings.target_language) == ("Dutch", "English")


def test_from_env_reads_overrides(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("LOG_LEVEL", "debug")
    clean_env.setenv("REVIEW_MAX_INTERVAL_DAYS", "180")
    clean_env.setenv("REVIEW_MAX_PERSIST_FAILURES", "5")
    clean_env.setenv("REVIEW_SOURCE_LANGUAGE", "German")

    settings = AppSettings.from_env()

    assert settings.log_level == "DEBUG"
    assert settings.max_interval_days == 180
    assert settings.max_persist_failures == 5
    assert settings.source_language == "German"


def test_from_env_requires_bot_token(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.delenv("TELEGRAM_BOT_TOKEN")

    with pytest.raises(RuntimeError, match="TELEGRAM_BOT_TOKEN"):
        AppSettings.from_env()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("REVIEW_MAX_INTERVAL_DAYS", "0"),
        ("REVIEW_MAX_INTERVAL_DAYS", "40000"),
        ("REVIEW_MAX_INTERVAL_DAYS", "a year"),
        ("REVIEW_MAX_PERSIST_FAILURES", "0"),
        ("REVIEW_MAX_PERSIST_FAILURES", "three"),
    ],
)
def test_from_env_rejects_invalid_limits(clean_env: pytest.MonkeyPatch, name: str, value: str) -> None:
    clean_env.setenv(name, value)

    with pytest.raises(RuntimeError, match=name):
        AppSettings.from_env()
