"""Sous chef: plan, fan out to specialist agents, and synthesize a recipe."""

from .errors import (
    AggregateFailure,
    BriefValidationError,
    ConfigurationError,
    ExtractionError,
    InvocationError,
    PipelineFailure,
    RunTimeoutError,
    SousChefError,
    WrappedArrayError,
)
from .models import Brief, ExecutionLog, ProjectConfig, Recipe, RecipeResult, TaskMap
from .pipeline import Pipeline

__version__ = "0.1.0"

__all__ = [
    "AggregateFailure",
    "Brief",
    "BriefValidationError",
    "ConfigurationError",
    "ExecutionLog",
    "ExtractionError",
    "InvocationError",
    "Pipeline",
    "PipelineFailure",
    "ProjectConfig",
    "Recipe",
    "RecipeResult",
    "RunTimeoutError",
    "SousChefError",
    "TaskMap",
    "WrappedArrayError",
]
