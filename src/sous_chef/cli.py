"""CLI entry point using Hydra.

Usage examples:
  sous-chef brief=briefs/ratatouille.yaml
  sous-chef mode=plan brief=briefs/ratatouille.yaml verbose=true
  sous-chef mode=validate brief=briefs/ratatouille.json
  sous-chef --config-dir my_kitchen --config-name config mode=run brief=brief.yaml
"""

from __future__ import annotations

import asyncio
import json
import re
import sys
import warnings
from pathlib import Path
from typing import Any

import hydra
import yaml
from omegaconf import DictConfig, OmegaConf

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_azure_fallbacks
from .errors import BriefValidationError, PipelineFailure, SousChefError
from .logging_config import (
    RichEventPrinter,
    console,
    execution_log_table,
    setup_logging,
    task_map_table,
)
from .models import ProjectConfig

register_configs()

# Suppress Hydra 1.1 deprecation warning about automatic schema matching.
warnings.filterwarnings("ignore", category=UserWarning, message=r"(?s).*ConfigStore schema.*")

# ---------------------------------------------------------------------------
# Hydra DictConfig -> Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra DictConfig to a Pydantic ProjectConfig."""
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return apply_azure_fallbacks(config)


def _load_brief(cfg: DictConfig) -> dict[str, Any]:
    """Read the brief file named by ``brief=``; JSON is parsed as YAML."""
    brief_path = cfg.get("brief")
    if not brief_path:
        console.print("[red]No brief given. Pass brief=path/to/brief.yaml[/]")
        sys.exit(1)
    path = Path(brief_path)
    if not path.exists():
        console.print(f"[red]Brief file not found: {path}[/]")
        sys.exit(1)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        console.print(f"[red]Brief file {path} must contain a mapping[/]")
        sys.exit(1)
    return data


_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_-]+")


def _output_stem(recipe_id: str) -> str:
    """File stem for a recipe id; only letters, digits, `_` and `-` survive."""
    return _UNSAFE_FILENAME_RE.sub("-", recipe_id).strip("-") or "recipe"


def _print_violations(err: BriefValidationError) -> None:
    console.print("[bold red]Invalid brief:[/]")
    for v in err.violations:
        console.print(f"  [red]{v.path}[/]: {v.message}")


def _report_failure(err: PipelineFailure) -> None:
    label = "operational" if err.operational else "non-operational"
    console.print(f"\n[bold red]Recipe generation failed[/] ({err.kind}, {label}, phase={err.phase.value})")
    console.print(f"  [red]{err.message}[/]")
    console.print(execution_log_table(err.log))
    if not err.operational:
        console.print("[yellow]This looks like a configuration problem; fix it before retrying.[/]")


def _build_pipeline(cfg: DictConfig):
    from .pipeline import Pipeline

    config = _to_project_config(cfg)
    return config, Pipeline(config)


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _run_mode(cfg: DictConfig) -> None:
    brief = _load_brief(cfg)
    config, pipeline = _build_pipeline(cfg)
    printer = RichEventPrinter(show_prompts=cfg.get("show_prompts", False))

    console.print("[bold]Starting recipe generation...[/]")
    try:
        result = pipeline.run_sync(brief, on_event=printer if not cfg.get("quiet", False) else None)
    except BriefValidationError as e:
        _print_violations(e)
        sys.exit(1)
    except PipelineFailure as e:
        _report_failure(e)
        sys.exit(1)

    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = _output_stem(result.recipe.id)
    recipe_path = output_dir / f"{stem}.json"
    log_path = output_dir / f"{stem}.log.json"
    recipe_path.write_text(result.recipe.model_dump_json(indent=2), encoding="utf-8")
    log_path.write_text(result.log.model_dump_json(indent=2), encoding="utf-8")

    console.print(f"\n[bold green]Recipe complete:[/] {result.recipe.title}")
    console.print(f"  Recipe: {recipe_path}")
    console.print(f"  Log: {log_path}")
    console.print(execution_log_table(result.log))


def _plan_mode(cfg: DictConfig) -> None:
    brief = _load_brief(cfg)
    _config, pipeline = _build_pipeline(cfg)
    try:
        task_map = asyncio.run(pipeline.run_plan_only(brief))
    except BriefValidationError as e:
        _print_violations(e)
        sys.exit(1)
    except PipelineFailure as e:
        _report_failure(e)
        sys.exit(1)
    console.print(task_map_table(task_map))


def _validate_mode(cfg: DictConfig) -> None:
    from .models import validate_brief

    brief = _load_brief(cfg)
    try:
        accepted = validate_brief(brief)
    except BriefValidationError as e:
        _print_violations(e)
        sys.exit(1)
    console.print("[green]Brief is valid.[/]")
    console.print(json.dumps(accepted.model_dump(mode="json", exclude_none=True), indent=2))


_MODE_DISPATCH: dict[str, Any] = {
    "run": _run_mode,
    "plan": _plan_mode,
    "validate": _validate_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "run")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    try:
        handler(cfg)
    except SousChefError as e:
        # Raised before a run starts, e.g. missing credentials.
        console.print(f"[bold red]{type(e).__name__}:[/] {e.message}")
        sys.exit(1)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
