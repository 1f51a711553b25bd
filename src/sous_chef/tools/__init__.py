"""Deterministic tools for prompt rendering and structured-output recovery."""

from .json_extractor import extract_json, extract_json_detailed, validate_against
from .prompt_loader import FilePromptSource, render_prompt, split_system_instruction

__all__ = [
    "FilePromptSource",
    "extract_json",
    "extract_json_detailed",
    "render_prompt",
    "split_system_instruction",
    "validate_against",
]
