"""Load and render prompt templates from ``.txt`` files."""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel

from ..errors import ConfigurationError, PromptNotFoundError

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

PLANNING_PROMPT = "sous-chef-planning"
SYNTHESIS_PROMPT = "sous-chef-synthesis"
GENERIC_SPECIALIST_PROMPT = "specialist"

_SPLIT_MARKERS = re.compile(
    r"^(?=RECIPE REQUEST:|CREATIVE BRIEF:|AVAILABLE SPECIALISTS:)", re.MULTILINE
)
_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class PromptSource(Protocol):
    """Anything that can return template text for a prompt name."""

    def load(self, name: str) -> str: ...


@dataclass
class PromptParts:
    system_instruction: str
    task_prompt: str


def _normalise(name: str) -> str:
    decomposed = unicodedata.normalize("NFD", name.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


class FilePromptSource:
    """Prompt templates stored as ``<name>.txt`` in a directory."""

    def __init__(self, prompts_dir: str | Path | None = None) -> None:
        self.prompts_dir = Path(prompts_dir) if prompts_dir else PROMPTS_DIR
        if not self.prompts_dir.is_dir():
            raise ConfigurationError(
                f"Prompt directory not found: {self.prompts_dir}",
                context={"prompts_dir": str(self.prompts_dir)},
            )

    def available(self) -> list[str]:
        return sorted(p.stem for p in self.prompts_dir.glob("*.txt"))

    def load(self, name: str) -> str:
        """Load template *name*, matching filenames case- and accent-insensitively."""
        # Specialist names come from model output; keep lookups inside prompts_dir.
        if Path(name).name != name or "\\" in name or name.startswith("."):
            raise PromptNotFoundError(name, available=self.available())
        path = self.prompts_dir / f"{name}.txt"
        if path.is_file():
            return path.read_text(encoding="utf-8")

        wanted = _normalise(name)
        for candidate in self.prompts_dir.glob("*.txt"):
            if _normalise(candidate.stem) == wanted:
                logger.debug("Prompt %r resolved to %s", name, candidate.name)
                return candidate.read_text(encoding="utf-8")

        raise PromptNotFoundError(name, available=self.available())


class DictPromptSource:
    """In-memory templates, keyed by prompt name."""

    def __init__(self, templates: dict[str, str]) -> None:
        self.templates = dict(templates)

    def load(self, name: str) -> str:
        try:
            return self.templates[name]
        except KeyError:
            raise PromptNotFoundError(name, available=sorted(self.templates)) from None


def split_system_instruction(template: str) -> PromptParts:
    """Split *template* at the first task marker.

    Everything before ``RECIPE REQUEST:``, ``CREATIVE BRIEF:`` or
    ``AVAILABLE SPECIALISTS:`` becomes the system instruction.
    """
    match = _SPLIT_MARKERS.search(template)
    if match and match.start() > 0:
        return PromptParts(
            system_instruction=template[:match.start()].strip(),
            task_prompt=template[match.start():].strip(),
        )
    return PromptParts(system_instruction="", task_prompt=template.strip())


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)
    elif isinstance(value, list):
        value = [
            v.model_dump(mode="json", exclude_none=True) if isinstance(v, BaseModel) else v
            for v in value
        ]
    return json.dumps(value, indent=2, ensure_ascii=False)


def render_prompt(template: str, variables: dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; non-strings are rendered as JSON."""
    def _replace(m: re.Match) -> str:
        key = m.group(1)
        if key not in variables:
            return m.group(0)
        return _as_text(variables[key])
    return _PLACEHOLDER_RE.sub(_replace, template)
