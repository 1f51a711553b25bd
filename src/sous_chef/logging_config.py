"""Rich console setup and debug-event rendering."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

if TYPE_CHECKING:
    from .models import ExecutionLog, TaskMap

console = Console()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logger with Rich handler."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


logger = logging.getLogger("sous_chef")


# ---------------------------------------------------------------------------
# Debug event printer
# ---------------------------------------------------------------------------


class RichEventPrinter:
    """Debug-event listener that renders lifecycle events on the console."""

    def __init__(self, *, show_prompts: bool = False) -> None:
        self.show_prompts = show_prompts
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)
        handler = getattr(self, "_on_" + event.type.replace(":", "_"), None)
        if handler is not None:
            handler(event)

    def _stamp(self, event: Any) -> str:
        return f"[dim]+{event.elapsed_ms / 1000:6.2f}s[/]"

    def _on_phase_start(self, event: Any) -> None:
        console.rule(f"[bold blue]{event.phase.value.upper()}[/]")

    def _on_phase_complete(self, event: Any) -> None:
        status = "[green]OK[/]" if event.success else "[red]FAILED[/]"
        console.print(f"  {self._stamp(event)} Phase {event.phase.value}: {status} ({event.duration_ms}ms)")

    def _on_llm_request(self, event: Any) -> None:
        parallel = " [magenta](parallel)[/]" if event.is_parallel else ""
        console.print(
            f"  {self._stamp(event)} [cyan]{event.agent}[/] → {event.model} "
            f"(t={event.temperature}){parallel}"
        )
        if self.show_prompts:
            console.print(f"    [dim]{event.prompt_preview}[/]")

    def _on_llm_response(self, event: Any) -> None:
        if event.success:
            tokens = event.token_usage.total_tokens if event.token_usage else 0
            retries = f", {event.attempts} attempts" if event.attempts > 1 else ""
            console.print(
                f"  {self._stamp(event)} [cyan]{event.agent}[/] ✓ {event.duration_ms}ms, "
                f"{tokens} tokens{retries}"
            )
        else:
            console.print(f"  {self._stamp(event)} [cyan]{event.agent}[/] [red]✗ {event.error}[/]")

    def _on_data_parsed(self, event: Any) -> None:
        for warning in event.warnings:
            console.print(f"  [yellow]WARNING:[/] {event.agent}: {warning}")

    def _on_agent_error(self, event: Any) -> None:
        kind = "recoverable" if event.recoverable else "fatal"
        console.print(f"  [yellow]{event.agent} failed ({kind}):[/] {event.error}")

    def _on_recipe_complete(self, event: Any) -> None:
        console.print(f"  {self._stamp(event)} [bold green]Recipe complete[/]")

    def _on_recipe_error(self, event: Any) -> None:
        console.print(f"  {self._stamp(event)} [bold red]{event.error_type}:[/] {event.error}")


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def task_map_table(task_map: TaskMap) -> Table:
    """Render a TaskMap as a Rich table."""
    table = Table(title=f"Task Map ({task_map.estimated_complexity.value})", show_lines=True)
    table.add_column("Priority", justify="right", style="dim")
    table.add_column("Specialist", style="cyan")
    table.add_column("Responsibilities")
    for spec in sorted(task_map.specialists, key=lambda s: s.priority):
        table.add_row(str(spec.priority), spec.name, "\n".join(spec.responsibilities))
    return table


def execution_log_table(log: ExecutionLog) -> Table:
    """Render an ExecutionLog as a Rich table."""
    total = f"{log.total_duration_ms}ms" if log.total_duration_ms is not None else "unfinished"
    table = Table(title=f"Execution Log ({total})")
    table.add_column("#", style="dim", width=4)
    table.add_column("Agent", style="cyan")
    table.add_column("Action")
    table.add_column("Duration", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Status")
    for i, step in enumerate(log.steps, 1):
        tokens = str(step.token_usage.total_tokens) if step.token_usage else "—"
        status = "[green]ok[/]" if step.success else f"[red]{step.error or 'failed'}[/]"
        table.add_row(str(i), step.agent, step.action, f"{step.duration_ms}ms", tokens, status)
    return table
