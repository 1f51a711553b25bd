"""Pydantic models for the recipe generation pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import BriefValidationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AgentRole(str, Enum):
    PLANNING = "planning"
    SPECIALIST = "specialist"
    SYNTHESIS = "synthesis"


class PipelinePhase(str, Enum):
    PLANNING = "planning"
    SPECIALISTS = "specialists"
    SYNTHESIS = "synthesis"


class RunState(str, Enum):
    PLANNING = "planning"
    SPECIALISTS = "specialists"
    SYNTHESIS = "synthesis"
    COMPLETE = "complete"
    FAILED = "failed"


class Scope(str, Enum):
    SINGLE_RECIPE = "single_recipe"
    MENU = "menu"


class CreativeFocus(str, Enum):
    TRADITIONAL = "traditional"
    MODERN = "modern"
    FUSION = "fusion"


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class FieldViolation(BaseModel):
    """One failed schema constraint."""
    path: str = Field(..., description="Dotted field path, e.g. 'constraints.servings'")
    message: str = Field(..., description="Why the value was rejected")


# ---------------------------------------------------------------------------
# Input: the creative brief
# ---------------------------------------------------------------------------

class BriefConstraints(BaseModel):
    """Optional cooking constraints attached to a brief."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    dietary: list[str] | None = Field(default=None, description="Dietary restrictions")
    equipment: list[str] | None = Field(default=None, description="Available equipment")
    skill: SkillLevel | None = Field(default=None, description="Cook's skill level")
    time: str | None = Field(default=None, description="Time budget, e.g. '45 minutes'")
    servings: int | None = Field(default=None, gt=0, description="Number of servings")


class Brief(BaseModel):
    """The validated creative brief. Immutable once accepted."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(..., min_length=1, max_length=200, description="Dish or menu title")
    scope: Scope = Field(..., description="'single_recipe' or 'menu'")
    creative_focus: CreativeFocus = Field(..., description="'traditional', 'modern' or 'fusion'")
    constraints: BriefConstraints | None = Field(default=None)
    additional_context: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Phase 1: Planning
# ---------------------------------------------------------------------------

class SpecialistAssignment(BaseModel):
    """One specialist to consult during fan-out."""
    name: str = Field(..., description="Specialist identifier, e.g. 'patissier'")
    responsibilities: list[str] = Field(..., description="What this specialist covers")
    priority: int = Field(..., description="1 = most important")


class TaskMap(BaseModel):
    """Planning output: which specialists to fan out to."""
    specialists: list[SpecialistAssignment] = Field(
        ..., min_length=1, description="Ordered assignments"
    )
    estimated_complexity: Complexity = Field(..., description="Coarse complexity estimate")


# ---------------------------------------------------------------------------
# Phase 2: Specialists
# ---------------------------------------------------------------------------

class SpecialistResult(BaseModel):
    """One specialist's one-pager contribution."""
    specialist: str = Field(..., description="Specialist identifier")
    section: str = Field(..., description="Which part of the recipe this covers")
    notes: str = Field(..., description="Free-text contribution")


# ---------------------------------------------------------------------------
# Phase 3: Synthesis (the final recipe)
# ---------------------------------------------------------------------------

class Ingredient(BaseModel):
    item: str
    amount: str
    unit: str
    category: str | None = None
    notes: str | None = None


class Instruction(BaseModel):
    step: int = Field(..., gt=0)
    instruction: str
    timing: str | None = None
    temperature: str | None = None


class NutritionInfo(BaseModel):
    calories: float | None = None
    protein: str | None = None
    carbohydrates: str | None = None
    fat: str | None = None
    fiber: str | None = None
    sodium: str | None = None


_EASY_WORDS = frozenset({"easy", "beginner", "simple"})
_HARD_WORDS = frozenset({"hard", "advanced", "expert", "difficult"})


class Recipe(BaseModel):
    """The synthesized recipe."""
    id: str
    title: str
    category: str
    servings: int = Field(..., gt=0)
    difficulty: Difficulty
    prep_time: str
    cook_time: str
    total_time: str
    introduction: str
    historical_context: str | None = None
    tips: list[str]
    equipment: list[str]
    ingredients: list[Ingredient]
    instructions: list[Instruction]
    nutrition: NutritionInfo

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalise_difficulty(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        lower = value.strip().lower()
        if lower in _EASY_WORDS:
            return Difficulty.EASY
        if lower in _HARD_WORDS:
            return Difficulty.HARD
        return Difficulty.MEDIUM


# ---------------------------------------------------------------------------
# LLM calls
# ---------------------------------------------------------------------------

class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class CallOptions(BaseModel):
    """Per-call generation options."""
    role: AgentRole = Field(..., description="Which role's model/endpoint to use")
    temperature: float = Field(default=0.7)
    max_output_tokens: int = Field(default=4096, gt=0)
    system_instruction: str | None = Field(default=None)
    json_mode: bool = Field(default=True, description="Request structured (JSON) output")


class Attempt(BaseModel):
    """Outcome of one failed attempt inside the retry loop."""
    number: int
    timestamp: str
    duration_ms: int
    error: str
    retryable: bool = False


# ---------------------------------------------------------------------------
# Execution log
# ---------------------------------------------------------------------------

class ExecutionStep(BaseModel):
    """One record per invocation attempt. Never mutated after creation."""
    model_config = ConfigDict(frozen=True)

    agent: str
    action: str
    timestamp: str
    duration_ms: int
    success: bool
    error: str | None = None
    token_usage: TokenUsage | None = None


class ExecutionLog(BaseModel):
    """Ordered steps for one run."""
    steps: list[ExecutionStep] = Field(default_factory=list)
    start_time: str
    end_time: str | None = None
    total_duration_ms: int | None = None


class RecipeResult(BaseModel):
    """Top-level result of a successful run."""
    recipe: Recipe
    log: ExecutionLog


# ---------------------------------------------------------------------------
# Project Configuration (loaded from YAML)
# ---------------------------------------------------------------------------

class ModelEndpointOverride(BaseModel):
    """Per-model endpoint, used when a model is hosted elsewhere than ``azure``."""
    endpoint: str = Field(..., description="Base URL for this model")
    api_key: str | None = Field(default=None)
    api_version: str | None = Field(default=None)
    api_type: str | None = Field(default=None, description="Force an AG2 api_type, e.g. 'anthropic'")


class ModelConfig(BaseModel):
    """LLM model name per role."""
    default: str = Field(default="gpt-4.1-mini", description="Default model")
    planning: str | None = Field(default=None)
    specialist: str | None = Field(default=None)
    synthesis: str | None = Field(default=None)
    overrides: dict[str, ModelEndpointOverride] = Field(default_factory=dict)


class AzureConfig(BaseModel):
    """Azure OpenAI connection settings."""
    api_key: str = Field(default="", description="Azure OpenAI API key (or ${ENV_VAR})")
    api_version: str = Field(default="", description="API version")
    endpoint: str = Field(default="", description="Azure endpoint URL")


class AgentSettings(BaseModel):
    """Resolved model/temperature/output budget for one role."""
    model_config = ConfigDict(frozen=True)

    role: AgentRole
    model: str
    temperature: float
    max_output_tokens: int


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="sous-chef")
    output_dir: str = Field(default="output/", description="Where the CLI writes results")
    prompts_dir: str | None = Field(default=None, description="Custom prompt template directory")

    # Azure OpenAI
    azure: AzureConfig = Field(default_factory=AzureConfig)

    # Models
    models: ModelConfig = Field(default_factory=ModelConfig)
    temperatures: dict[str, float] = Field(
        default_factory=lambda: {"planning": 0.3, "specialist": 0.6, "synthesis": 0.5}
    )
    max_output_tokens: dict[str, int] = Field(
        default_factory=lambda: {"planning": 2048, "specialist": 4096, "synthesis": 16384}
    )

    # Pipeline settings
    max_attempts: int = Field(default=3, ge=1, description="Attempts per LLM call")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Backoff base delay in seconds")
    run_timeout: float | None = Field(default=300.0, description="Wall-clock deadline per run (seconds)")
    min_specialist_results: int = Field(
        default=1, ge=1, description="Surviving specialist results needed for synthesis"
    )
    timeout: int = Field(default=120, description="LLM call timeout in seconds")
    seed: int = Field(default=42, description="LLM seed for reproducibility")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def violations_from(exc: ValidationError) -> list[FieldViolation]:
    """Flatten a pydantic ``ValidationError`` into one entry per failed field."""
    violations: list[FieldViolation] = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ())) or "(root)"
        violations.append(FieldViolation(path=path, message=err.get("msg", "invalid")))
    return violations


def validate_brief(data: Any) -> Brief:
    """Validate raw input into a ``Brief``.

    Raises:
        BriefValidationError: with one entry per invalid field.
    """
    if isinstance(data, Brief):
        return data
    try:
        return Brief.model_validate(data)
    except ValidationError as e:
        raise BriefValidationError(violations_from(e)) from e
