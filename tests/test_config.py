from __future__ import annotations

import pytest

from safe_output_gate import config


def test_env_int_uses_default_for_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_VALUE", "")
    assert config._env_int("TEST_INT_VALUE", 7) == 7


def test_env_int_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT_INVALID", "not_a_number")
    assert config._env_int("TEST_INT_INVALID", 42) == 42


def test_env_float_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_INVALID", "not_a_float")
    assert config._env_float("TEST_FLOAT_INVALID", 2.5) == 2.5


def test_env_optional_bool(monkeypatch: pytest.MonkeyPatch) -> None:
    assert config._env_optional_bool("TEST_BOOL_UNSET") is None
    monkeypatch.setenv("TEST_BOOL_SET", "TRUE")
    assert config._env_optional_bool("TEST_BOOL_SET") is True
    monkeypatch.setenv("TEST_BOOL_SET", "no")
    assert config._env_optional_bool("TEST_BOOL_SET") is False


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)

    settings = config.load_settings()

    assert settings.execution.max_attempts == 3
    assert settings.execution.fail_fast is False
    assert settings.workflow.staged is None
    assert settings.workflow.token is None
    assert settings.workflow.api_url == "https://api.github.com"


def test_workflow_values_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    monkeypatch.setenv("GITHUB_REPOSITORY", "octo/widgets")
    monkeypatch.setenv("GITHUB_RUN_ID", "77")
    monkeypatch.setenv("GITHUB_SERVER_URL", "https://github.example.com/")
    monkeypatch.setenv("GH_AW_SAFE_OUTPUTS_STAGED", "true")
    monkeypatch.setenv("GITHUB_TOKEN", "fallback")
    monkeypatch.setenv("GH_AW_GITHUB_TOKEN", "preferred")

    settings = config.load_settings()

    assert settings.workflow.staged is True
    assert settings.workflow.token == "preferred"
    assert settings.workflow.run_url == "https://github.example.com/octo/widgets/actions/runs/77"


def test_run_url_requires_repository_and_run_id() -> None:
    assert config.WorkflowSettings(repository="octo/widgets").run_url is None


def test_load_settings_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    assert config.load_settings() is config.load_settings()


def test_load_settings_raises_runtime_error_on_validation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    # Minimum is 1.
    monkeypatch.setenv("SAFE_OUTPUTS_MAX_ATTEMPTS", "0")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()


def test_retry_max_must_not_be_below_base(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    monkeypatch.setenv("SAFE_OUTPUTS_RETRY_BASE_SECONDS", "5")
    monkeypatch.setenv("SAFE_OUTPUTS_RETRY_MAX_SECONDS", "1")

    with pytest.raises(RuntimeError, match="SAFE_OUTPUTS_RETRY_MAX_SECONDS"):
        config.load_settings()
