"""Model invoker: one remote generation call with bounded exponential-backoff retry.

The invoker never touches run state or emits debug events; it returns the
completion together with the failed attempts that preceded it so the caller
can record them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

import autogen
import openai

from .config import build_role_llm_config, require_credentials
from .errors import ConfigurationError, InvocationError
from .models import AgentRole, Attempt, CallOptions, ProjectConfig, TokenUsage

logger = logging.getLogger(__name__)

NORMAL_FINISH_REASONS = frozenset({"stop"})
RETRYABLE_STATUS_CODES = frozenset({429, 503})
_RETRYABLE_MARKERS = (
    "rate limit",
    "ratelimit",
    "quota",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "enotfound",
    "name or service not known",
    "503",
    "429",
)


@dataclass
class Generation:
    """Raw result of one remote call, before validation."""
    text: str | None
    finish_reason: str | None
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class Completion:
    """Validated result returned by ``ModelInvoker.invoke``."""
    text: str
    usage: TokenUsage
    duration_ms: int
    failed_attempts: list[Attempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.failed_attempts) + 1


class GenerationService(Protocol):
    """The remote generation endpoint."""

    async def generate(self, agent: str, prompt: str, options: CallOptions) -> Generation: ...


class AbnormalCompletionError(Exception):
    """The call returned, but without a normal completion."""


def is_retryable(error: BaseException) -> bool:
    """Classify *error* as transient (rate limit, quota, timeout, network)."""
    if isinstance(error, AbnormalCompletionError):
        return False
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    # APITimeoutError subclasses APIConnectionError.
    if isinstance(error, openai.APIConnectionError):
        return True
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def check_completion(generation: Generation) -> str:
    """Return the generated text, or raise if the completion is empty or abnormal."""
    if generation.text is None and generation.finish_reason is None:
        raise AbnormalCompletionError("No response candidate returned")
    reason = (generation.finish_reason or "").lower()
    if reason not in NORMAL_FINISH_REASONS:
        raise AbnormalCompletionError(
            f"Generation stopped with reason: {generation.finish_reason}. "
            "This may indicate content policy violation or other issue."
        )
    if generation.text is None:
        raise AbnormalCompletionError("No response candidate returned")
    if not generation.text.strip():
        raise AbnormalCompletionError("Model returned an empty completion")
    return generation.text


class ModelInvoker:
    """Calls a ``GenerationService`` with retry on transient failures."""

    def __init__(
        self,
        service: GenerationService,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        self.service = service
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls, service: GenerationService, config: ProjectConfig) -> ModelInvoker:
        return cls(service, max_attempts=config.max_attempts, base_delay=config.retry_base_delay)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following *attempt* (1-based)."""
        return self.base_delay * 2 ** (attempt - 1)

    async def invoke(self, agent: str, prompt: str, options: CallOptions) -> Completion:
        """Call the model, retrying retryable failures.

        Raises:
            InvocationError: on a non-retryable failure, an abnormal completion,
                or once the attempt budget is exhausted.
        """
        failed: list[Attempt] = []
        for attempt in range(1, self.max_attempts + 1):
            started = time.monotonic()
            timestamp = datetime.now(timezone.utc).isoformat()
            suffix = f" (attempt {attempt}/{self.max_attempts})" if attempt > 1 else ""
            logger.info("[%s] Calling %s model...%s", agent, options.role.value, suffix)

            try:
                generation = await self.service.generate(agent, prompt, options)
                text = check_completion(generation)
            except ConfigurationError:
                raise
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                retryable = is_retryable(e)
                failed.append(Attempt(
                    number=attempt,
                    timestamp=timestamp,
                    duration_ms=duration_ms,
                    error=str(e) or type(e).__name__,
                    retryable=retryable,
                ))
                if retryable and attempt < self.max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        "[%s] Retryable error (%dms): %s. Retrying in %.1fs...",
                        agent, duration_ms, e, delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.error("[%s] Error after %dms: %s", agent, duration_ms, e)
                raise InvocationError(
                    agent, str(e) or type(e).__name__, retryable=retryable, attempts=failed
                ) from e

            duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "[%s] Complete (%dms, %d tokens)", agent, duration_ms, generation.usage.total_tokens
            )
            return Completion(
                text=text,
                usage=generation.usage,
                duration_ms=duration_ms,
                failed_attempts=failed,
            )

        raise InvocationError(agent, "Max retries exceeded", attempts=failed)


# ---------------------------------------------------------------------------
# AG2-backed generation service
# ---------------------------------------------------------------------------

def _usage_from(response: Any) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
    )


class AG2GenerationService:
    """``GenerationService`` backed by ``autogen.OpenAIWrapper``.

    One client is built lazily per role from ``build_role_llm_config``. The
    blocking ``create`` call runs in a worker thread so concurrent specialist
    calls overlap on the event loop.
    """

    def __init__(self, config: ProjectConfig) -> None:
        require_credentials(config)
        self.config = config
        self._clients: dict[AgentRole, autogen.OpenAIWrapper] = {}

    def _client(self, role: AgentRole) -> autogen.OpenAIWrapper:
        if role not in self._clients:
            self._clients[role] = autogen.OpenAIWrapper(**build_role_llm_config(role, self.config))
        return self._clients[role]

    def _create(self, prompt: str, options: CallOptions) -> Generation:
        messages: list[dict[str, str]] = []
        if options.system_instruction:
            messages.append({"role": "system", "content": options.system_instruction})
        messages.append({"role": "user", "content": prompt})

        params: dict[str, Any] = {
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_output_tokens,
            "cache_seed": None,
        }
        if options.json_mode:
            params["response_format"] = {"type": "json_object"}

        response = self._client(options.role).create(**params)
        choices = getattr(response, "choices", None) or []
        if not choices:
            return Generation(text=None, finish_reason=None, usage=_usage_from(response))
        choice = choices[0]
        return Generation(
            text=choice.message.content,
            finish_reason=choice.finish_reason,
            usage=_usage_from(response),
        )

    async def generate(self, agent: str, prompt: str, options: CallOptions) -> Generation:
        return await asyncio.to_thread(self._create, prompt, options)
