"""Execution recorder: append-only step log for one run."""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from .models import Attempt, ExecutionLog, ExecutionStep, TokenUsage


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class InFlight:
    """Handle for a step that has started but not yet resolved."""
    key: int
    agent: str
    action: str
    started: float


class ExecutionRecorder:
    """Accumulates ``ExecutionStep`` records for a single run.

    All mutation happens on the event loop thread, so appends from
    concurrently running specialist tasks never interleave.
    """

    def __init__(self) -> None:
        self._started = time.monotonic()
        self._log = ExecutionLog(start_time=_now_iso())
        self._in_flight: dict[int, InFlight] = {}
        self._keys = itertools.count()

    @property
    def log(self) -> ExecutionLog:
        return self._log

    @property
    def steps(self) -> list[ExecutionStep]:
        return list(self._log.steps)

    @property
    def finalized(self) -> bool:
        return self._log.total_duration_ms is not None

    def begin(self, agent: str, action: str) -> InFlight:
        handle = InFlight(next(self._keys), agent, action, time.monotonic())
        self._in_flight[handle.key] = handle
        return handle

    def complete(
        self,
        handle: InFlight,
        *,
        success: bool,
        error: str | None = None,
        token_usage: TokenUsage | None = None,
    ) -> ExecutionStep | None:
        """Resolve *handle* into a step. Returns None if it was already resolved."""
        if self._in_flight.pop(handle.key, None) is None:
            return None
        return self._append(
            ExecutionStep(
                agent=handle.agent,
                action=handle.action,
                timestamp=_now_iso(),
                duration_ms=int((time.monotonic() - handle.started) * 1000),
                success=success,
                error=error,
                token_usage=token_usage,
            )
        )

    def record_failures(self, agent: str, action: str, attempts: list[Attempt]) -> None:
        """Append one failed step per failed attempt."""
        for attempt in attempts:
            self._append(
                ExecutionStep(
                    agent=agent,
                    action=action,
                    timestamp=attempt.timestamp,
                    duration_ms=attempt.duration_ms,
                    success=False,
                    error=attempt.error,
                )
            )

    def abandon_in_flight(self, error: str = "timeout") -> list[ExecutionStep]:
        """Record every unresolved step as failed with *error*."""
        abandoned = [
            self.complete(handle, success=False, error=error)
            for handle in list(self._in_flight.values())
        ]
        return [step for step in abandoned if step is not None]

    def finalize(self) -> ExecutionLog:
        """Set end time and total duration. Idempotent."""
        if not self.finalized:
            self._log.end_time = _now_iso()
            self._log.total_duration_ms = int((time.monotonic() - self._started) * 1000)
        return self._log

    def _append(self, step: ExecutionStep) -> ExecutionStep:
        self._log.steps.append(step)
        return step
