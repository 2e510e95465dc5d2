import pytest

from budget_categorizer.core import settings
from budget_categorizer.core.configuration import (
    load_ai_config,
    load_pipeline_config,
    load_recurring_config,
    resolve_value,
)


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("AI_CONFIDENCE_THRESHOLD", "TRANSFER_WINDOW_DAYS", "TRANSFER_AMOUNT_EPSILON", "AI_BATCH_SIZE"):
        monkeypatch.delenv(key, raising=False)

    pipeline = load_pipeline_config()
    assert pipeline.ai_confidence_threshold == 0.6
    assert pipeline.transfer_window_days == 3
    assert pipeline.transfer_amount_epsilon == 0.01
    assert load_ai_config().batch_size == 50


def test_overrides_and_invalid_values(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    monkeypatch.setenv("TRANSFER_WINDOW_DAYS", "5")
    monkeypatch.setenv("AI_CONFIDENCE_THRESHOLD", "1.5")
    monkeypatch.setenv("RECURRING_MIN_OCCURRENCES", "lots")

    with caplog.at_level("WARNING"):
        assert load_pipeline_config().transfer_window_days == 5
        assert resolve_value("AI_CONFIDENCE_THRESHOLD") == 0.6
        assert load_recurring_config().min_occurrences == 3

    assert "Invalid AI_CONFIDENCE_THRESHOLD" in caplog.text


def test_ai_disabled_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert not load_ai_config().enabled
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert load_ai_config().enabled


def test_read_config_file(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "# comment\nAI_BATCH_SIZE: 25\nOPENAI_MODEL: \"gpt-4o\"  # inline\nEMPTY:\n",
        encoding="utf-8",
    )
    assert settings.read_config_file(str(path)) == {"AI_BATCH_SIZE": "25", "OPENAI_MODEL": "gpt-4o"}


def test_secrets_are_masked() -> None:
    assert settings.mask_database_url("postgresql://app:s3cret@db:5432/budget") == "postgresql://app:****@db:5432/budget"
    assert settings._mask_env_value("OPENAI_API_KEY", "sk-abcdefgh") == "sk...gh"
    assert settings._mask_env_value("OPENAI_MODEL", "gpt-4o-mini") == "gpt-4o-mini"
