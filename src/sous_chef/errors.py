"""Exception hierarchy for the recipe generation pipeline.

Every error carries an ``operational`` flag: ``True`` for expected runtime
conditions (rate limits, bad model output, invalid briefs) that a shell may
retry or report, ``False`` for programmer/operator mistakes that should halt.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import ExecutionLog, FieldViolation, PipelinePhase


class SousChefError(Exception):
    """Base class for all pipeline errors."""

    operational: bool = True
    http_status: int = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "operational": self.operational,
            "context": self.context,
            "timestamp": self.timestamp,
        }


class ConfigurationError(SousChefError):
    """Missing credential, template or malformed static configuration."""

    operational = False
    http_status = 500


class PromptNotFoundError(ConfigurationError):
    """A prompt template could not be located."""

    def __init__(self, name: str, *, available: list[str] | None = None) -> None:
        super().__init__(
            f"Prompt file not found: {name}.txt",
            context={"prompt": name, "available_prompts": available or []},
        )
        self.name = name


class BriefValidationError(SousChefError):
    """The caller supplied an invalid brief."""

    http_status = 400

    def __init__(self, violations: list[FieldViolation]) -> None:
        summary = ", ".join(f"{v.path}: {v.message}" for v in violations)
        super().__init__(
            f"Invalid creative brief: {summary}",
            context={"violations": [v.model_dump() for v in violations]},
        )
        self.violations = violations


class InvocationError(SousChefError):
    """A remote generation call failed or returned an abnormal completion."""

    http_status = 502

    def __init__(
        self,
        agent: str,
        cause: str,
        *,
        retryable: bool = False,
        attempts: list[Any] | None = None,
    ) -> None:
        super().__init__(
            f"LLM agent '{agent}' failed: {cause}",
            context={"agent": agent, "cause": cause, "attempts": len(attempts or [])},
        )
        self.agent = agent
        self.cause = cause
        self.retryable = retryable
        self.attempts = list(attempts or [])


class ExtractionError(SousChefError):
    """Model output could not be coerced into the requested schema."""

    http_status = 502
    excerpt_chars = 500

    def __init__(
        self,
        message: str,
        *,
        text: str = "",
        violations: list[FieldViolation] | None = None,
    ) -> None:
        excerpt = text[: self.excerpt_chars]
        super().__init__(
            message,
            context={
                "excerpt": excerpt,
                "violations": [v.model_dump() for v in violations or []],
            },
        )
        self.excerpt = excerpt
        self.violations = list(violations or [])


class WrappedArrayError(ExtractionError):
    """Model returned an array of several objects where one object was expected."""

    def __init__(self, element_count: int, *, text: str = "") -> None:
        super().__init__(
            f"JSON validation failed: expected object, received array with "
            f"{element_count} elements",
            text=text,
        )
        self.element_count = element_count


class AggregateFailure(SousChefError):
    """Too few specialists produced a usable contribution."""

    http_status = 502

    def __init__(self, attempted: list[str], *, succeeded: int = 0, required: int = 1) -> None:
        if succeeded == 0:
            message = "All specialists failed. Cannot proceed to synthesis."
        else:
            message = (
                f"Only {succeeded} specialist(s) succeeded, {required} required. "
                "Cannot proceed to synthesis."
            )
        super().__init__(
            f"{message} Attempted: {', '.join(attempted)}",
            context={"attempted_specialists": attempted, "succeeded": succeeded},
        )
        self.attempted = list(attempted)
        self.succeeded = succeeded


class RunTimeoutError(SousChefError):
    """The whole run exceeded its wall-clock deadline."""

    http_status = 504

    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Recipe generation timed out after {timeout:g}s. "
            "Try a simpler request or try again later.",
            context={"timeout": timeout},
        )
        self.timeout = timeout


class InternalError(SousChefError):
    """An unexpected exception escaped a pipeline stage."""

    operational = False
    http_status = 500


class PipelineFailure(SousChefError):
    """Terminal failure of a run, carrying the classified cause and partial log."""

    def __init__(
        self,
        cause: SousChefError,
        *,
        phase: PipelinePhase,
        log: ExecutionLog,
    ) -> None:
        super().__init__(
            cause.message,
            context={"phase": phase.value, "cause": type(cause).__name__, **cause.context},
        )
        self.cause = cause
        self.phase = phase
        self.log = log
        self.operational = cause.operational
        self.http_status = cause.http_status

    @property
    def kind(self) -> str:
        return type(self.cause).__name__
