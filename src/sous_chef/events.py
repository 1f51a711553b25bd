"""Debug events for run observability.

Events are purely observational. Listeners are called fire-and-forget: a
listener that raises is logged and ignored, and coroutine listeners are
scheduled as tasks that the pipeline never awaits.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, Field

from .models import PipelinePhase, TokenUsage

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 200
RESPONSE_PREVIEW_CHARS = 300


class _BaseEvent(BaseModel):
    timestamp: str
    request_id: str
    elapsed_ms: int = Field(..., description="Milliseconds since the run started")


class PhaseStartEvent(_BaseEvent):
    type: Literal["phase:start"] = "phase:start"
    phase: PipelinePhase
    context: dict[str, Any] | None = None


class PhaseCompleteEvent(_BaseEvent):
    type: Literal["phase:complete"] = "phase:complete"
    phase: PipelinePhase
    duration_ms: int
    success: bool


class LLMRequestEvent(_BaseEvent):
    type: Literal["llm:request"] = "llm:request"
    agent: str
    model: str
    temperature: float
    prompt_preview: str
    full_prompt: str
    is_parallel: bool = False


class LLMResponseEvent(_BaseEvent):
    type: Literal["llm:response"] = "llm:response"
    agent: str
    duration_ms: int
    success: bool
    token_usage: TokenUsage | None = None
    response_preview: str = ""
    full_response: str = ""
    attempts: int = 1
    error: str | None = None


class DataParsedEvent(_BaseEvent):
    type: Literal["data:parsed"] = "data:parsed"
    agent: str
    data_type: Literal["TaskMap", "SpecialistResult", "Recipe"]
    data: dict[str, Any]
    validation_success: bool = True
    warnings: list[str] = Field(default_factory=list)


class AgentErrorEvent(_BaseEvent):
    type: Literal["agent:error"] = "agent:error"
    agent: str
    error: str
    phase: PipelinePhase
    recoverable: bool


class RecipeCompleteEvent(_BaseEvent):
    type: Literal["recipe:complete"] = "recipe:complete"
    recipe: dict[str, Any]
    log: dict[str, Any]


class RecipeErrorEvent(_BaseEvent):
    type: Literal["recipe:error"] = "recipe:error"
    error: str
    error_type: str
    operational: bool
    phase: PipelinePhase
    partial_log: dict[str, Any] | None = None


DebugEvent = Annotated[
    Union[
        PhaseStartEvent,
        PhaseCompleteEvent,
        LLMRequestEvent,
        LLMResponseEvent,
        DataParsedEvent,
        AgentErrorEvent,
        RecipeCompleteEvent,
        RecipeErrorEvent,
    ],
    Field(discriminator="type"),
]

EventListener = Callable[[Any], Union[None, Awaitable[None]]]


class EventNotifier:
    """Stamps and delivers debug events for one run."""

    def __init__(self, run_id: str, on_event: EventListener | None = None) -> None:
        self.run_id = run_id
        self._on_event = on_event
        self._started = time.monotonic()
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._on_event is not None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def emit(self, event_cls: type[_BaseEvent], **fields: Any) -> _BaseEvent | None:
        """Build an event of *event_cls* and hand it to the listener."""
        if self._on_event is None:
            return None
        event = event_cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=self.run_id,
            elapsed_ms=self.elapsed_ms(),
            **fields,
        )
        try:
            result = self._on_event(event)
        except Exception:
            logger.exception("Debug listener failed on %s", event.type)  # type: ignore[attr-defined]
            return event

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._task_done)
        return event

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async debug listener failed: %s", task.exception())
