"""Tests for Pydantic models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from sous_chef.errors import BriefValidationError
from sous_chef.models import (
    Brief,
    Difficulty,
    ExecutionStep,
    Recipe,
    Scope,
    TaskMap,
    validate_brief,
    violations_from,
)

from conftest import BRIEF, RECIPE


class TestBrief:
    def test_valid(self):
        brief = validate_brief(BRIEF)
        assert brief.scope is Scope.SINGLE_RECIPE
        assert brief.constraints.servings == 4

    def test_passthrough(self):
        brief = Brief.model_validate(BRIEF)
        assert validate_brief(brief) is brief

    def test_frozen(self):
        brief = validate_brief(BRIEF)
        with pytest.raises(ValidationError):
            brief.title = "Other"

    def test_reports_every_violation(self):
        data = {
            "title": "",
            "scope": "banquet",
            "creative_focus": "modern",
            "constraints": {"servings": 0},
        }
        with pytest.raises(BriefValidationError) as exc:
            validate_brief(data)
        paths = [v.path for v in exc.value.violations]
        assert sorted(paths) == ["constraints.servings", "scope", "title"]
        assert exc.value.http_status == 400
        assert exc.value.operational is True

    def test_title_length(self):
        with pytest.raises(BriefValidationError):
            validate_brief(dict(BRIEF, title="x" * 201))

    def test_context_length(self):
        with pytest.raises(BriefValidationError):
            validate_brief(dict(BRIEF, additional_context="x" * 2001))

    def test_unknown_field_rejected(self):
        with pytest.raises(BriefValidationError) as exc:
            validate_brief(dict(BRIEF, cuisine="thai"))
        assert exc.value.violations[0].path == "cuisine"

    def test_not_a_mapping(self):
        with pytest.raises(BriefValidationError) as exc:
            validate_brief("make me dinner")
        assert exc.value.violations[0].path == "(root)"


class TestRecipe:
    @pytest.mark.parametrize("raw, expected", [
        ("Easy", Difficulty.EASY),
        ("beginner", Difficulty.EASY),
        ("medium", Difficulty.MEDIUM),
        ("Intermediate", Difficulty.MEDIUM),
        ("Advanced", Difficulty.HARD),
        ("hard", Difficulty.HARD),
    ])
    def test_difficulty_normalised(self, raw, expected):
        assert Recipe.model_validate(dict(RECIPE, difficulty=raw)).difficulty is expected

    def test_instruction_step_positive(self):
        bad = dict(RECIPE, instructions=[{"step": 0, "instruction": "Wait."}])
        with pytest.raises(ValidationError):
            Recipe.model_validate(bad)


class TestTaskMap:
    def test_requires_a_specialist(self):
        with pytest.raises(ValidationError):
            TaskMap.model_validate({"specialists": [], "estimated_complexity": "simple"})


class TestExecutionStep:
    def test_immutable(self):
        step = ExecutionStep(
            agent="a", action="planning", timestamp="t", duration_ms=1, success=True
        )
        with pytest.raises(ValidationError):
            step.success = False


def test_violations_from_nested_path():
    with pytest.raises(ValidationError) as exc:
        Brief.model_validate(dict(BRIEF, constraints={"servings": -1}))
    assert [v.path for v in violations_from(exc.value)] == ["constraints.servings"]
