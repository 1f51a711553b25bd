"""Tests for the Hydra-based CLI (cli.py)."""

from __future__ import annotations

from pathlib import Path

import pytest
from hydra import compose, initialize_config_dir
from omegaconf import OmegaConf

import sous_chef
from sous_chef import cli
from sous_chef._hydra_conf import CLI_ONLY_KEYS, SousChefConf, register_configs
from sous_chef.cli import _MODE_DISPATCH, _load_brief, _output_stem, _to_project_config
from sous_chef.models import ExecutionLog, ProjectConfig, Recipe, RecipeResult

from conftest import FIXTURES_DIR, RECIPE

CONF_DIR = str(Path(sous_chef.__file__).resolve().parent / "conf")


class TestDefaultConfig:
    """Verify the package's conf/config.yaml loads correctly."""

    def test_default_config_loads(self):
        register_configs()
        with initialize_config_dir(config_dir=CONF_DIR, version_base=None):
            cfg = compose(config_name="config")
            assert cfg.mode == "run"
            assert cfg.brief is None
            assert cfg.min_specialist_results == 1

    def test_default_config_converts_to_project_config(self, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "test")
        monkeypatch.setenv("AZURE_OPENAI_API_VERSION", "2024-01-01")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://test.openai.azure.com/")

        register_configs()
        with initialize_config_dir(config_dir=CONF_DIR, version_base=None):
            cfg = compose(config_name="config", overrides=["models.synthesis=gpt-4.1", "max_attempts=5"])
            pc = _to_project_config(cfg)
        assert isinstance(pc, ProjectConfig)
        assert pc.project_name == "sous-chef"
        assert pc.models.synthesis == "gpt-4.1"
        assert pc.max_attempts == 5
        assert pc.azure.api_key == "test"
        assert pc.azure.endpoint == "https://test.openai.azure.com"


class TestModeDispatch:
    def test_all_modes_present(self):
        assert set(_MODE_DISPATCH) == {"run", "plan", "validate"}

    def test_all_modes_are_callable(self):
        for name, handler in _MODE_DISPATCH.items():
            assert callable(handler), f"Handler for mode {name!r} is not callable"


class TestLoadBrief:
    def test_yaml_brief(self):
        cfg = OmegaConf.create({"brief": str(FIXTURES_DIR / "brief.yaml")})
        data = _load_brief(cfg)
        assert data["title"] == "Spring Herb Risotto"

    def test_json_brief(self):
        cfg = OmegaConf.create({"brief": str(FIXTURES_DIR / "invalid_brief.json")})
        assert _load_brief(cfg)["scope"] == "banquet"

    def test_missing_file_exits(self, tmp_path):
        cfg = OmegaConf.create({"brief": str(tmp_path / "nope.yaml")})
        with pytest.raises(SystemExit):
            _load_brief(cfg)


class TestCliOnlyKeys:
    """CLI_ONLY_KEYS should match the extra fields in SousChefConf."""

    def test_cli_keys_not_in_project_config(self):
        pc_fields = set(ProjectConfig.model_fields.keys())
        for key in CLI_ONLY_KEYS:
            assert key not in pc_fields, f"CLI-only key {key!r} found in ProjectConfig"

    def test_remaining_keys_are_project_config_fields(self):
        conf_fields = {f.name for f in SousChefConf.__dataclass_fields__.values()}
        assert conf_fields - CLI_ONLY_KEYS == set(ProjectConfig.model_fields.keys())


class TestRunModeOutput:
    """Output files stay inside output_dir whatever id the model picks."""

    @pytest.mark.parametrize("recipe_id, stem", [
        ("herb-risotto", "herb-risotto"),
        ("../../escaped", "escaped"),
        ("soups/minestrone v2", "soups-minestrone-v2"),
        ("///", "recipe"),
    ])
    def test_output_stem(self, recipe_id, stem):
        assert _output_stem(recipe_id) == stem

    def test_hostile_id_written_inside_output_dir(self, tmp_path, monkeypatch):
        out = tmp_path / "nested" / "out"
        recipe = Recipe.model_validate(dict(RECIPE, id="../../escaped"))
        result = RecipeResult(recipe=recipe, log=ExecutionLog(start_time="t0", total_duration_ms=1))

        class StubPipeline:
            def run_sync(self, brief, on_event=None):
                return result

        monkeypatch.setattr(
            cli, "_build_pipeline",
            lambda cfg: (ProjectConfig(output_dir=str(out)), StubPipeline()),
        )
        cfg = OmegaConf.create({"brief": str(FIXTURES_DIR / "brief.yaml"), "quiet": True})
        cli._run_mode(cfg)

        assert sorted(p.name for p in out.iterdir()) == ["escaped.json", "escaped.log.json"]
        assert not (tmp_path / "escaped.json").exists()
