"""Configuration loader and LLM config builder.

Reads project settings from a YAML config file with ``${ENV_VAR}`` interpolation.
The resulting ``ProjectConfig`` is passed explicitly to the pipeline; nothing
here is read at import time except ``.env``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import AgentRole, AgentSettings, AzureConfig, ModelEndpointOverride, ProjectConfig

load_dotenv()

# ---------------------------------------------------------------------------
# YAML loading with ${ENV_VAR} interpolation
# ---------------------------------------------------------------------------

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${ENV_VAR}`` references in strings."""
    if isinstance(value, str):
        def _replace(m: re.Match) -> str:
            return os.environ.get(m.group(1), "")
        return _ENV_RE.sub(_replace, value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def apply_azure_fallbacks(config: ProjectConfig) -> ProjectConfig:
    """Fill empty azure credentials from environment variables and normalise endpoint."""
    if not config.azure.api_key:
        config.azure.api_key = os.getenv("AZURE_OPENAI_API_KEY", "")
    if not config.azure.api_version:
        config.azure.api_version = os.getenv("AZURE_OPENAI_API_VERSION", "")
    if not config.azure.endpoint:
        config.azure.endpoint = os.getenv("AZURE_OPENAI_ENDPOINT", "")
    config.azure.endpoint = config.azure.endpoint.rstrip("/")
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Load a ``ProjectConfig`` from a YAML file.

    Environment variables referenced as ``${VAR_NAME}`` are resolved.
    If ``azure`` fields are empty after resolution, they fall back to
    well-known environment variables (``AZURE_OPENAI_*``).
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    resolved = _resolve_env_vars(raw)
    config = ProjectConfig.model_validate(resolved)
    return apply_azure_fallbacks(config)


def require_credentials(config: ProjectConfig) -> None:
    """Fail fast when no usable endpoint or API key is configured."""
    missing: list[str] = []
    if not config.azure.api_key and not any(o.api_key for o in config.models.overrides.values()):
        missing.append("azure.api_key (AZURE_OPENAI_API_KEY)")
    if not config.azure.endpoint and not config.models.overrides:
        missing.append("azure.endpoint (AZURE_OPENAI_ENDPOINT)")
    if missing:
        raise ConfigurationError(
            f"Missing LLM credentials: {', '.join(missing)}. Check your .env file.",
            context={"missing": missing},
        )


# ---------------------------------------------------------------------------
# Per-role settings
# ---------------------------------------------------------------------------

def _role_model(role: AgentRole, config: ProjectConfig) -> str:
    models = config.models
    role_map: dict[AgentRole, str | None] = {
        AgentRole.PLANNING: models.planning,
        AgentRole.SPECIALIST: models.specialist,
        AgentRole.SYNTHESIS: models.synthesis,
    }
    return role_map.get(role) or models.default


def resolve_agent_settings(config: ProjectConfig) -> dict[AgentRole, AgentSettings]:
    """Resolve model, temperature and output budget for every role.

    Raises:
        ConfigurationError: if a temperature or max-token table names a role
            that does not exist, or leaves a role without a value.
    """
    known = {role.value for role in AgentRole}
    for table_name, table in (
        ("temperatures", config.temperatures),
        ("max_output_tokens", config.max_output_tokens),
    ):
        unknown = sorted(set(table) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown agent role(s) in {table_name}: {', '.join(unknown)}. "
                f"Valid roles: {', '.join(sorted(known))}",
                context={"table": table_name, "unknown": unknown},
            )
        missing = sorted(known - set(table))
        if missing:
            raise ConfigurationError(
                f"No {table_name} entry for role(s): {', '.join(missing)}",
                context={"table": table_name, "missing": missing},
            )

    return {
        role: AgentSettings(
            role=role,
            model=_role_model(role, config),
            temperature=config.temperatures[role.value],
            max_output_tokens=config.max_output_tokens[role.value],
        )
        for role in AgentRole
    }


# ---------------------------------------------------------------------------
# LLM config builder
# ---------------------------------------------------------------------------

def _is_azure_openai_endpoint(endpoint: str) -> bool:
    """Return True for Azure OpenAI endpoints, False for Azure AI Model Inference."""
    lower = endpoint.lower()
    return "openai.azure.com" in lower or "cognitiveservices.azure.com" in lower


def _build_single_entry(
    model: str,
    azure: AzureConfig,
    override: ModelEndpointOverride | None = None,
) -> dict[str, Any]:
    """Build a single AG2 config_list entry for the given model.

    When an override specifies ``api_type`` (e.g. ``"anthropic"``), that type
    is used directly with the override endpoint as ``base_url``.

    Otherwise Azure OpenAI endpoints (``openai.azure.com``,
    ``cognitiveservices.azure.com``) use ``api_type: "azure"`` with
    deployment-based routing, and other endpoints are treated as
    OpenAI-compatible via ``base_url``.
    """
    api_key = azure.api_key
    api_version = azure.api_version
    endpoint = azure.endpoint
    forced_api_type: str | None = None

    if override:
        endpoint = override.endpoint.rstrip("/")
        if override.api_key:
            api_key = override.api_key
        if override.api_version:
            api_version = override.api_version
        forced_api_type = override.api_type

    entry: dict[str, Any] = {
        "model": model,
        "api_key": api_key,
    }

    if forced_api_type:
        entry["api_type"] = forced_api_type
        entry["base_url"] = endpoint
    elif endpoint and _is_azure_openai_endpoint(endpoint):
        entry.update({
            "api_type": "azure",
            "azure_endpoint": endpoint,
            "api_version": api_version,
            "azure_deployment": model,
        })
    elif endpoint:
        entry["base_url"] = endpoint
    return entry


def build_role_llm_config(role: AgentRole, config: ProjectConfig) -> dict[str, Any]:
    """Return an AG2-compatible ``llm_config`` dict for the given *role*.

    If ``config.models.overrides`` contains an entry for the chosen model name,
    that entry's endpoint / api_key / api_version take precedence over the
    global ``config.azure`` values.
    """
    chosen = _role_model(role, config)
    override = config.models.overrides.get(chosen)
    entry = _build_single_entry(chosen, config.azure, override=override)
    return {
        "config_list": [entry],
        "timeout": config.timeout,
        "seed": config.seed,
    }
