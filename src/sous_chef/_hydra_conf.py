"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hydra.core.config_store import ConfigStore


@dataclass
class AzureConf:
    api_key: str = "${oc.env:AZURE_OPENAI_API_KEY,''}"
    api_version: str = "${oc.env:AZURE_OPENAI_API_VERSION,''}"
    endpoint: str = "${oc.env:AZURE_OPENAI_ENDPOINT,''}"


@dataclass
class ModelEndpointOverrideConf:
    endpoint: str = ""
    api_key: str | None = None
    api_version: str | None = None
    api_type: str | None = None


@dataclass
class ModelConf:
    default: str = "gpt-4.1-mini"
    planning: str | None = None
    specialist: str | None = None
    synthesis: str | None = None
    overrides: dict[str, ModelEndpointOverrideConf] = field(default_factory=dict)


@dataclass
class SousChefConf:
    # --- CLI-only fields ---
    mode: str = "run"                     # run | plan | validate
    brief: str | None = None              # path to a JSON or YAML brief
    verbose: bool = False
    quiet: bool = False
    show_prompts: bool = False

    # --- ProjectConfig fields ---
    project_name: str = "sous-chef"
    output_dir: str = "output/"
    prompts_dir: str | None = None

    # Azure OpenAI
    azure: AzureConf = field(default_factory=AzureConf)
    models: ModelConf = field(default_factory=ModelConf)
    temperatures: dict[str, float] = field(default_factory=lambda: {
        "planning": 0.3,
        "specialist": 0.6,
        "synthesis": 0.5,
    })
    max_output_tokens: dict[str, int] = field(default_factory=lambda: {
        "planning": 2048,
        "specialist": 4096,
        "synthesis": 16384,
    })

    # Tuning
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    run_timeout: float | None = 300.0
    min_specialist_results: int = 1
    timeout: int = 120
    seed: int = 42


# Keys in SousChefConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "brief", "verbose", "quiet", "show_prompts",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore.

    Two entries are stored:
    - ``sous_chef_schema``: referenced by user config files via ``defaults: [sous_chef_schema]``
    - ``config``: fallback when no ``--config-dir`` is provided
    """
    cs = ConfigStore.instance()
    cs.store(name="sous_chef_schema", node=SousChefConf)
    cs.store(name="config", node=SousChefConf)
