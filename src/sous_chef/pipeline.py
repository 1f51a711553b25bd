"""Pipeline: 3-phase orchestration for recipe generation.

Phase 1: PLANNING     one call produces a TaskMap of specialists
Phase 2: SPECIALISTS  one concurrent call per specialist, settle-all
Phase 3: SYNTHESIS    one call merges the surviving contributions into a Recipe

Each run owns its own ``ExecutionRecorder`` and ``EventNotifier``; runs share
nothing but the immutable configuration and the generation client.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Mapping, TypeVar

from pydantic import BaseModel

from .config import resolve_agent_settings
from .errors import (
    AggregateFailure,
    ExtractionError,
    InternalError,
    InvocationError,
    PipelineFailure,
    PromptNotFoundError,
    RunTimeoutError,
    SousChefError,
)
from .events import (
    PROMPT_PREVIEW_CHARS,
    RESPONSE_PREVIEW_CHARS,
    AgentErrorEvent,
    DataParsedEvent,
    EventListener,
    EventNotifier,
    LLMRequestEvent,
    LLMResponseEvent,
    PhaseCompleteEvent,
    PhaseStartEvent,
    RecipeCompleteEvent,
    RecipeErrorEvent,
)
from .llm import AG2GenerationService, GenerationService, ModelInvoker
from .models import (
    AgentRole,
    Brief,
    CallOptions,
    PipelinePhase,
    ProjectConfig,
    Recipe,
    RecipeResult,
    RunState,
    SpecialistAssignment,
    SpecialistResult,
    TaskMap,
    validate_brief,
)
from .recorder import ExecutionRecorder
from .tools.json_extractor import extract_json_detailed
from .tools.prompt_loader import (
    GENERIC_SPECIALIST_PROMPT,
    PLANNING_PROMPT,
    SYNTHESIS_PROMPT,
    FilePromptSource,
    PromptParts,
    PromptSource,
    render_prompt,
    split_system_instruction,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

PLANNING_AGENT = "sous_chef_planning"
SYNTHESIS_AGENT = "sous_chef_synthesis"

_RUN_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_run_id() -> str:
    """Return an id like ``req_1718000000000_k3j9x0a``."""
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(7))
    return f"req_{int(time.time() * 1000)}_{suffix}"


@dataclass
class _Run:
    """Mutable state for a single run."""
    run_id: str
    brief: Brief
    recorder: ExecutionRecorder
    notifier: EventNotifier
    state: RunState = RunState.PLANNING
    phase: PipelinePhase = PipelinePhase.PLANNING
    phase_started: float = field(default_factory=time.monotonic)

    def enter(self, phase: PipelinePhase) -> None:
        self.phase = phase
        self.state = RunState(phase.value)
        self.phase_started = time.monotonic()
        logger.info("PHASE: %s", phase.value.upper())
        self.notifier.emit(PhaseStartEvent, phase=phase)

    def phase_ms(self) -> int:
        return int((time.monotonic() - self.phase_started) * 1000)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class Pipeline:
    """Orchestrates planning, specialist fan-out and synthesis."""

    def __init__(
        self,
        config: ProjectConfig,
        *,
        service: GenerationService | None = None,
        prompt_source: PromptSource | None = None,
        invoker: ModelInvoker | None = None,
    ) -> None:
        self.config = config
        self.settings = resolve_agent_settings(config)
        self.prompt_source = prompt_source or FilePromptSource(config.prompts_dir)
        if invoker is None:
            invoker = ModelInvoker.from_config(service or AG2GenerationService(config), config)
        self.invoker = invoker

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    async def run(
        self,
        brief: Brief | Mapping[str, Any],
        on_event: EventListener | None = None,
    ) -> RecipeResult:
        """Generate a recipe for *brief*.

        Raises:
            BriefValidationError: *brief* is invalid; no run is started.
            PipelineFailure: the run failed; carries the cause and partial log.
        """
        run = self._start(brief, on_event)
        logger.info('Starting recipe generation: "%s" (%s)', run.brief.title, run.run_id)

        recipe = await self._guarded(run, self._execute(run))

        run.state = RunState.COMPLETE
        log = run.recorder.finalize()
        logger.info("Recipe complete in %.1fs", (log.total_duration_ms or 0) / 1000)
        run.notifier.emit(
            RecipeCompleteEvent,
            recipe=recipe.model_dump(mode="json"),
            log=log.model_dump(mode="json"),
        )
        return RecipeResult(recipe=recipe, log=log)

    def run_sync(
        self,
        brief: Brief | Mapping[str, Any],
        on_event: EventListener | None = None,
    ) -> RecipeResult:
        """Blocking wrapper around ``run`` for scripts and the CLI."""
        return asyncio.run(self.run(brief, on_event))

    async def run_plan_only(
        self,
        brief: Brief | Mapping[str, Any],
        on_event: EventListener | None = None,
    ) -> TaskMap:
        """Run only the planning phase and return the TaskMap."""
        run = self._start(brief, on_event)
        task_map = await self._guarded(run, self._run_planning(run))
        run.recorder.finalize()
        return task_map

    # -----------------------------------------------------------------------
    # Run lifecycle
    # -----------------------------------------------------------------------

    def _start(self, brief: Brief | Mapping[str, Any], on_event: EventListener | None) -> _Run:
        accepted = validate_brief(brief)
        run_id = new_run_id()
        return _Run(
            run_id=run_id,
            brief=accepted,
            recorder=ExecutionRecorder(),
            notifier=EventNotifier(run_id, on_event),
        )

    async def _guarded(self, run: _Run, work: Awaitable[T]) -> T:
        """Await *work* under the run deadline, converting failures."""
        timeout = self.config.run_timeout
        try:
            if timeout:
                return await asyncio.wait_for(work, timeout=timeout)
            return await work
        except asyncio.TimeoutError:
            abandoned = run.recorder.abandon_in_flight("timeout")
            logger.error(
                "Run %s exceeded %ss deadline with %d call(s) in flight",
                run.run_id, timeout, len(abandoned),
            )
            raise self._fail(run, RunTimeoutError(timeout or 0)) from None
        except SousChefError as e:
            raise self._fail(run, e) from e
        except Exception as e:
            logger.exception("Pipeline failed")
            raise self._fail(run, InternalError(f"{type(e).__name__}: {e}")) from e

    def _fail(self, run: _Run, error: SousChefError) -> PipelineFailure:
        phase = run.phase
        run.state = RunState.FAILED
        log = run.recorder.finalize()
        logger.error("Recipe generation failed in %s: %s", phase.value, error.message)
        run.notifier.emit(PhaseCompleteEvent, phase=phase, duration_ms=run.phase_ms(), success=False)
        run.notifier.emit(
            RecipeErrorEvent,
            error=error.message,
            error_type=type(error).__name__,
            operational=error.operational,
            phase=phase,
            partial_log=log.model_dump(mode="json"),
        )
        return PipelineFailure(error, phase=phase, log=log)

    async def _execute(self, run: _Run) -> Recipe:
        task_map = await self._run_planning(run)
        results = await self._run_specialists(run, task_map)
        return await self._run_synthesis(run, task_map, results)

    # -----------------------------------------------------------------------
    # Phase 1: Planning
    # -----------------------------------------------------------------------

    async def _run_planning(self, run: _Run) -> TaskMap:
        run.enter(PipelinePhase.PLANNING)
        parts = split_system_instruction(self.prompt_source.load(PLANNING_PROMPT))

        task_map = await self._call_agent(
            run,
            agent=PLANNING_AGENT,
            action="planning",
            role=AgentRole.PLANNING,
            parts=parts,
            variables={"creative_brief": run.brief},
            schema=TaskMap,
        )

        run.notifier.emit(
            PhaseCompleteEvent, phase=PipelinePhase.PLANNING, duration_ms=run.phase_ms(), success=True
        )
        logger.info(
            "Specialists assigned: %s (complexity: %s)",
            ", ".join(s.name for s in task_map.specialists),
            task_map.estimated_complexity.value,
        )
        return task_map

    # -----------------------------------------------------------------------
    # Phase 2: Specialists (parallel, settle-all)
    # -----------------------------------------------------------------------

    def _specialist_template(self, name: str) -> str:
        try:
            return self.prompt_source.load(name)
        except PromptNotFoundError:
            logger.debug("No dedicated prompt for %r, using generic specialist prompt", name)
            return self.prompt_source.load(GENERIC_SPECIALIST_PROMPT)

    async def _run_specialists(self, run: _Run, task_map: TaskMap) -> list[SpecialistResult]:
        run.enter(PipelinePhase.SPECIALISTS)
        assignments = task_map.specialists
        names = [a.name for a in assignments]

        # Templates are resolved up front: a missing one is fatal, not per-specialist.
        templates = [split_system_instruction(self._specialist_template(n)) for n in names]
        is_parallel = len(assignments) > 1

        outcomes = await asyncio.gather(
            *(
                self._run_specialist(run, assignment, parts, is_parallel)
                for assignment, parts in zip(assignments, templates)
            ),
            return_exceptions=True,
        )

        results: list[SpecialistResult] = []
        fatal: BaseException | None = None
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                fatal = fatal or outcome
            elif outcome is not None:
                results.append(outcome)
        if fatal is not None:
            raise fatal

        if len(results) < self.config.min_specialist_results:
            raise AggregateFailure(
                names, succeeded=len(results), required=self.config.min_specialist_results
            )

        run.notifier.emit(
            PhaseCompleteEvent, phase=PipelinePhase.SPECIALISTS, duration_ms=run.phase_ms(), success=True
        )
        logger.info("Collected %d/%d specialist contributions", len(results), len(assignments))
        return results

    async def _run_specialist(
        self,
        run: _Run,
        assignment: SpecialistAssignment,
        parts: PromptParts,
        is_parallel: bool,
    ) -> SpecialistResult | None:
        """One specialist call. Invocation and extraction failures become ``None``."""
        try:
            return await self._call_agent(
                run,
                agent=assignment.name,
                action="specialist_contribution",
                role=AgentRole.SPECIALIST,
                parts=parts,
                variables={
                    "creative_brief": run.brief,
                    "specialist": assignment.name,
                    "responsibilities": assignment.responsibilities,
                },
                schema=SpecialistResult,
                is_parallel=is_parallel,
            )
        except (InvocationError, ExtractionError) as e:
            logger.warning("%s failed: %s", assignment.name, e.message)
            run.notifier.emit(
                AgentErrorEvent,
                agent=assignment.name,
                error=e.message,
                phase=PipelinePhase.SPECIALISTS,
                recoverable=True,
            )
            return None

    # -----------------------------------------------------------------------
    # Phase 3: Synthesis
    # -----------------------------------------------------------------------

    async def _run_synthesis(
        self,
        run: _Run,
        task_map: TaskMap,
        results: list[SpecialistResult],
    ) -> Recipe:
        run.enter(PipelinePhase.SYNTHESIS)
        parts = split_system_instruction(self.prompt_source.load(SYNTHESIS_PROMPT))

        recipe = await self._call_agent(
            run,
            agent=SYNTHESIS_AGENT,
            action="synthesis",
            role=AgentRole.SYNTHESIS,
            parts=parts,
            variables={
                "creative_brief": run.brief,
                "task_map": task_map,
                "specialist_results": results,
            },
            schema=Recipe,
        )

        run.notifier.emit(
            PhaseCompleteEvent, phase=PipelinePhase.SYNTHESIS, duration_ms=run.phase_ms(), success=True
        )
        return recipe

    # -----------------------------------------------------------------------
    # Single agent call: render → invoke → extract, with recording
    # -----------------------------------------------------------------------

    async def _call_agent(
        self,
        run: _Run,
        *,
        agent: str,
        action: str,
        role: AgentRole,
        parts: PromptParts,
        variables: dict[str, Any],
        schema: type[M],
        is_parallel: bool = False,
    ) -> M:
        settings = self.settings[role]
        prompt = render_prompt(parts.task_prompt, variables)
        options = CallOptions(
            role=role,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            system_instruction=parts.system_instruction or None,
            json_mode=True,
        )

        run.notifier.emit(
            LLMRequestEvent,
            agent=agent,
            model=settings.model,
            temperature=settings.temperature,
            prompt_preview=prompt[:PROMPT_PREVIEW_CHARS],
            full_prompt=prompt,
            is_parallel=is_parallel,
        )
        handle = run.recorder.begin(agent, action)
        started = time.monotonic()

        try:
            completion = await self.invoker.invoke(agent, prompt, options)
        except InvocationError as e:
            earlier, last = e.attempts[:-1], e.attempts[-1:]
            run.recorder.record_failures(agent, action, earlier)
            run.recorder.complete(handle, success=False, error=last[0].error if last else e.cause)
            run.notifier.emit(
                LLMResponseEvent,
                agent=agent,
                duration_ms=int((time.monotonic() - started) * 1000),
                success=False,
                attempts=max(len(e.attempts), 1),
                error=e.message,
            )
            raise
        except SousChefError as e:
            run.recorder.complete(handle, success=False, error=e.message)
            raise

        run.recorder.record_failures(agent, action, completion.failed_attempts)
        run.notifier.emit(
            LLMResponseEvent,
            agent=agent,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=True,
            token_usage=completion.usage,
            response_preview=completion.text[:RESPONSE_PREVIEW_CHARS],
            full_response=completion.text,
            attempts=completion.attempt_count,
        )

        try:
            extraction = extract_json_detailed(completion.text, schema)
        except ExtractionError as e:
            run.recorder.complete(
                handle, success=False, error=e.message, token_usage=completion.usage
            )
            raise

        run.notifier.emit(
            DataParsedEvent,
            agent=agent,
            data_type=schema.__name__,
            data=extraction.value.model_dump(mode="json"),
            warnings=extraction.warnings,
        )
        run.recorder.complete(handle, success=True, token_usage=completion.usage)
        return extraction.value
