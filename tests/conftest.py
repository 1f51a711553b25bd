"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from sous_chef.llm import Generation, ModelInvoker
from sous_chef.models import CallOptions, ProjectConfig, TokenUsage
from sous_chef.pipeline import Pipeline
from sous_chef.tools.prompt_loader import DictPromptSource

FIXTURES_DIR = Path(__file__).parent / "fixtures"

BRIEF: dict[str, Any] = {
    "title": "X",
    "scope": "single_recipe",
    "creative_focus": "modern",
    "constraints": {"dietary": ["vegetarian"], "servings": 4},
}


def task_map_json(*names: str) -> str:
    return json.dumps({
        "specialists": [
            {"name": n, "responsibilities": [f"{n} duties"], "priority": i}
            for i, n in enumerate(names, 1)
        ],
        "estimated_complexity": "moderate",
    })


def specialist_json(name: str) -> str:
    return json.dumps({
        "specialist": name,
        "section": f"{name} section",
        "notes": f"notes from {name}",
    })


RECIPE: dict[str, Any] = {
    "id": "herb-risotto",
    "title": "Herb Risotto",
    "category": "main",
    "servings": 4,
    "difficulty": "medium",
    "prep_time": "10 minutes",
    "cook_time": "25 minutes",
    "total_time": "35 minutes",
    "introduction": "A green risotto.",
    "tips": ["Stir often"],
    "equipment": ["wide pan"],
    "ingredients": [{"item": "arborio rice", "amount": "300", "unit": "g"}],
    "instructions": [{"step": 1, "instruction": "Toast the rice."}],
    "nutrition": {"calories": 420},
}

TEMPLATES = {
    "sous-chef-planning": "Plan the brigade.\nCREATIVE BRIEF:\n{{creative_brief}}",
    "specialist": (
        "You are a specialist.\nCREATIVE BRIEF:\n{{creative_brief}}\n"
        "ROLE: {{specialist}}\nRESPONSIBILITIES:\n{{responsibilities}}"
    ),
    "sous-chef-synthesis": (
        "Merge the notes.\nCREATIVE BRIEF:\n{{creative_brief}}\n"
        "TASK MAP:\n{{task_map}}\nSPECIALIST NOTES:\n{{specialist_results}}"
    ),
}


def ok(text: str, tokens: int = 30) -> Generation:
    return Generation(
        text=text,
        finish_reason="stop",
        usage=TokenUsage(prompt_tokens=10, output_tokens=tokens - 10, total_tokens=tokens),
    )


class RateLimited(Exception):
    status_code = 429


class FakeGenerationService:
    """Scripted ``GenerationService``.

    ``script`` maps an agent name to a list of outcomes consumed in order; the
    last outcome repeats. An outcome is a ``Generation``, an exception to raise,
    or a float (seconds to hang before returning an empty stop).
    """

    def __init__(self, script: dict[str, list[Any]]) -> None:
        self.script = {k: list(v) for k, v in script.items()}
        self.calls: list[tuple[str, str, CallOptions]] = []

    def calls_for(self, agent: str) -> list[tuple[str, str, CallOptions]]:
        return [c for c in self.calls if c[0] == agent]

    async def generate(self, agent: str, prompt: str, options: CallOptions) -> Generation:
        self.calls.append((agent, prompt, options))
        queue = self.script[agent]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, float):
            await asyncio.sleep(outcome)
            return ok("{}")
        return outcome


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def brief() -> dict[str, Any]:
    return dict(BRIEF)


@pytest.fixture
def config() -> ProjectConfig:
    return ProjectConfig(project_name="Test", run_timeout=5.0)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_pipeline(config, sleeps):
    """Factory: build a Pipeline around a FakeGenerationService."""
    def _make(service: FakeGenerationService, **overrides: Any) -> Pipeline:
        cfg = config.model_copy(update=overrides)
        invoker = ModelInvoker(
            service, max_attempts=cfg.max_attempts, base_delay=cfg.retry_base_delay, sleep=sleeps
        )
        return Pipeline(cfg, prompt_source=DictPromptSource(TEMPLATES), invoker=invoker)
    return _make


@pytest.fixture
def sample_config_path() -> Path:
    return FIXTURES_DIR / "sample_config.yaml"
