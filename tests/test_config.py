"""Tests for config.py: YAML loading, role settings and LLM config building."""

from __future__ import annotations

import pytest

from sous_chef.config import (
    _resolve_env_vars,
    build_role_llm_config,
    load_config,
    require_credentials,
    resolve_agent_settings,
)
from sous_chef.errors import ConfigurationError
from sous_chef.models import AgentRole, AzureConfig, ModelConfig, ModelEndpointOverride, ProjectConfig


class TestResolveEnvVars:
    def test_string_replacement(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert _resolve_env_vars("${TEST_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        assert _resolve_env_vars("${NONEXISTENT_VAR}") == ""

    def test_nested(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        result = _resolve_env_vars({"azure": {"api_key": "${MY_KEY}"}, "tags": ["${MY_KEY}", 3]})
        assert result == {"azure": {"api_key": "secret"}, "tags": ["secret", 3]}


class TestLoadConfig:
    def test_load_sample_config(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("SOUS_CHEF_TEST_KEY", "test-key")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://test.openai.azure.com/")
        config = load_config(sample_config_path)
        assert config.project_name == "Weeknight Kitchen"
        assert config.azure.api_key == "test-key"
        assert config.azure.api_version == "2024-06-01"
        assert config.azure.endpoint == "https://test.openai.azure.com"
        assert config.temperatures["planning"] == 0.2
        assert config.max_attempts == 4
        assert config.run_timeout == 120

    def test_env_fallback_for_empty_key(self, sample_config_path, monkeypatch):
        monkeypatch.delenv("SOUS_CHEF_TEST_KEY", raising=False)
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "fallback-key")
        config = load_config(sample_config_path)
        assert config.azure.api_key == "fallback-key"

    def test_missing_config_raises(self):
        with pytest.raises(FileNotFoundError):
            load_config("nonexistent.yaml")


class TestResolveAgentSettings:
    def test_defaults(self):
        settings = resolve_agent_settings(ProjectConfig())
        assert settings[AgentRole.PLANNING].temperature == 0.3
        assert settings[AgentRole.SPECIALIST].max_output_tokens == 4096
        assert settings[AgentRole.SYNTHESIS].model == "gpt-4.1-mini"

    def test_role_model_override(self):
        config = ProjectConfig(models=ModelConfig(synthesis="gpt-4.1"))
        settings = resolve_agent_settings(config)
        assert settings[AgentRole.SYNTHESIS].model == "gpt-4.1"
        assert settings[AgentRole.PLANNING].model == "gpt-4.1-mini"

    def test_unknown_role_rejected(self):
        config = ProjectConfig(
            temperatures={"planning": 0.3, "specialist": 0.6, "synthesis": 0.5, "sommelier": 0.9}
        )
        with pytest.raises(ConfigurationError, match="sommelier"):
            resolve_agent_settings(config)

    def test_missing_role_rejected(self):
        config = ProjectConfig(max_output_tokens={"planning": 100, "specialist": 100})
        with pytest.raises(ConfigurationError, match="synthesis"):
            resolve_agent_settings(config)


class TestBuildRoleLlmConfig:
    def test_azure_openai_endpoint(self):
        config = ProjectConfig(
            azure=AzureConfig(api_key="k", api_version="2024-06-01", endpoint="https://x.openai.azure.com"),
            timeout=60,
        )
        llm_config = build_role_llm_config(AgentRole.PLANNING, config)
        entry = llm_config["config_list"][0]
        assert entry["api_type"] == "azure"
        assert entry["azure_deployment"] == "gpt-4.1-mini"
        assert entry["api_version"] == "2024-06-01"
        assert llm_config["timeout"] == 60
        assert llm_config["seed"] == 42

    def test_openai_compatible_endpoint(self):
        config = ProjectConfig(azure=AzureConfig(api_key="k", endpoint="https://models.example.com/v1"))
        entry = build_role_llm_config(AgentRole.SPECIALIST, config)["config_list"][0]
        assert entry["base_url"] == "https://models.example.com/v1"
        assert "api_type" not in entry

    def test_model_override(self):
        config = ProjectConfig(
            azure=AzureConfig(api_key="azure-key", endpoint="https://x.openai.azure.com"),
            models=ModelConfig(
                synthesis="claude-sonnet",
                overrides={
                    "claude-sonnet": ModelEndpointOverride(
                        endpoint="https://proxy.example.com/", api_key="other", api_type="anthropic"
                    )
                },
            ),
        )
        entry = build_role_llm_config(AgentRole.SYNTHESIS, config)["config_list"][0]
        assert entry == {
            "model": "claude-sonnet",
            "api_key": "other",
            "api_type": "anthropic",
            "base_url": "https://proxy.example.com",
        }


class TestRequireCredentials:
    def test_missing(self):
        with pytest.raises(ConfigurationError) as exc:
            require_credentials(ProjectConfig())
        assert exc.value.operational is False
        assert "azure.api_key" in exc.value.message

    def test_present(self):
        config = ProjectConfig(azure=AzureConfig(api_key="k", endpoint="https://x.openai.azure.com"))
        require_credentials(config)
