"""Recover a JSON object from noisy LLM output and validate it.

Fallback order:

1. strip fences, ``//`` and ``/* */`` comments, trailing commas
2. direct ``json.loads``
3. unwrap ``[obj]`` → ``obj`` (logged as a warning)
4. reject ``[a, b, ...]`` with ``WrappedArrayError``
5. validate against the pydantic schema, reporting every failed field
6. if step 2 failed, retry on the outermost ``{...}`` substring
7. otherwise raise ``ExtractionError`` with a bounded excerpt
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import ExtractionError, WrappedArrayError
from ..models import FieldViolation, violations_from

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*")
# String literals are matched first and kept so that '//' inside a URL survives.
_STRING = r'"(?:\\.|[^"\\])*"'
_COMMENT_RE = re.compile(rf"({_STRING})|//[^\n]*|/\*.*?\*/", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(rf"({_STRING})|,(\s*[}}\]])")

UNWRAP_WARNING = "LLM returned array instead of object, unwrapped single element"


@dataclass
class Extraction(Generic[T]):
    """Extracted value plus any corrections applied on the way."""
    value: Any
    warnings: list[str] = field(default_factory=list)


def clean_json_text(text: str) -> str:
    """Remove fences, comments and trailing commas outside string literals."""
    cleaned = _FENCE_RE.sub("", text)
    cleaned = _COMMENT_RE.sub(lambda m: m.group(1) or "", cleaned)
    cleaned = _TRAILING_COMMA_RE.sub(lambda m: m.group(1) or m.group(2), cleaned)
    return cleaned.strip()


def validate_against(value: Any, schema: type[T]) -> tuple[T | None, list[FieldViolation]]:
    """Validate *value* against *schema*.

    Returns ``(instance, [])`` on success or ``(None, violations)`` listing every
    failed field path.
    """
    try:
        return schema.model_validate(value), []
    except ValidationError as e:
        return None, violations_from(e)


def _coerce(parsed: Any, schema: type[T] | None, text: str, warnings: list[str]) -> Any:
    """Unwrap, shape-check and validate an already-parsed value."""
    if isinstance(parsed, list):
        if len(parsed) != 1:
            raise WrappedArrayError(len(parsed), text=text)
        logger.warning(UNWRAP_WARNING)
        warnings.append(UNWRAP_WARNING)
        parsed = parsed[0]

    if schema is None:
        return parsed

    instance, violations = validate_against(parsed, schema)
    if instance is None:
        summary = ", ".join(f"{v.path}: {v.message}" for v in violations)
        raise ExtractionError(
            f"JSON validation failed for {schema.__name__}: {summary}",
            text=text,
            violations=violations,
        )
    return instance


def extract_json_detailed(text: str, schema: type[T] | None = None) -> Extraction[T]:
    """Extract a value from *text*, returning it with any recorded warnings.

    Raises:
        WrappedArrayError: the output is an array of several elements.
        ExtractionError: nothing parseable was found, or schema validation failed.
    """
    warnings: list[str] = []
    cleaned = clean_json_text(text)

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as direct_err:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ExtractionError(
                f"No valid JSON found in response: {direct_err}", text=text
            ) from direct_err
        segment = cleaned[start:end + 1]
        try:
            parsed = json.loads(segment)
        except json.JSONDecodeError as segment_err:
            raise ExtractionError(
                f"JSON extraction failed: {segment_err}", text=text
            ) from segment_err
        logger.debug("Recovered JSON object from surrounding text (%d chars)", len(segment))

    return Extraction(value=_coerce(parsed, schema, text, warnings), warnings=warnings)


def extract_json(text: str, schema: type[T] | None = None) -> Any:
    """Extract a value from *text* and validate it against *schema* if given."""
    return extract_json_detailed(text, schema).value
