# display.py
# All terminal output for the process engine demo.
#
# This module owns presentation entirely. The engine never formats strings;
# run.py calls named functions here. Swap this file to change the entire UI.
#
# Colour language:
#   cyan    : pattern / routing events
#   yellow  : verification checkpoints and optional gaps
#   green   : success / compensated
#   red     : failures, halts, manual intervention
#   magenta : rollback internals

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from process_engine.models import (
    ExecutionSummary,
    Pattern,
    PlanProgressData,
    RollbackOutcome,
    StepStatus,
    VerificationMetricRecord,
)

console = Console()

_STEP_STYLE = {
    StepStatus.PENDING: ("·", "dim"),
    StepStatus.COMPLETED: ("✓", "bold green"),
    StepStatus.FAILED: ("✗", "bold red"),
    StepStatus.SKIPPED: ("↷", "dim white"),
    StepStatus.ROLLED_BACK: ("↺", "magenta"),
}

_ROLLBACK_STYLE = {
    RollbackOutcome.COMPENSATED: "green",
    RollbackOutcome.NOT_REQUIRED: "dim",
    RollbackOutcome.MANUAL_INTERVENTION: "bold red",
    RollbackOutcome.FAILED: "bold red",
}

_OUTCOME_COLOR = {
    "completed": "green",
    "completed_with_gaps": "yellow",
    "rolled_back": "magenta",
    "rollback_incomplete": "red",
    "failed": "red",
    "cancelled": "yellow",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: Any, max_len: int = 120) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(text) > max_len:
        return text[:max_len] + "…"
    return text


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(pattern_count: int, contract_count: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Process Engine[/bold cyan]\n"
            "[dim]Verified multi-step patterns with compensating rollback[/dim]\n\n"
            f"[dim]Patterns  :[/dim] [white]{pattern_count}[/white]\n"
            f"[dim]Contracts :[/dim] [white]{contract_count}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def run_start(title: str, pattern: Pattern, payload: dict[str, Any]) -> None:
    console.print()
    console.print(Rule(f"[cyan]{title}[/cyan]", style="cyan"))

    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("#", justify="center", width=4)
    table.add_column("Tool", style="bold white", width=24)
    table.add_column("Flags", style="dim white", width=16)
    table.add_column("Description", style="white")

    for step in pattern.steps:
        flags = [f for f, on in (("optional", step.optional), ("skip_if", step.skip_if),
                                 ("retry", step.retry_on_fail)) if on]
        table.add_row(str(step.order), step.tool, ", ".join(flags), step.description)

    console.print(
        Panel(
            table,
            title=_label(f"PATTERN: {pattern.id}", "cyan"),
            subtitle=f"[dim]Input: {_mono(payload, 80)}[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def progress(data: PlanProgressData) -> None:
    """Progress callback: one line per step event."""
    if data.status != "executing" or not data.steps:
        return
    step = data.steps[data.current_step_index]
    mark, style = _STEP_STYLE[step.status]
    line = f"  [{style}]{mark}[/{style}] [bold cyan]STEP {step.order}[/bold cyan]  [white]{step.tool}[/white]"
    if step.error:
        line += f"  [red]{_mono(step.error, 80)}[/red]"
    console.print(line)


def progress_card(data: PlanProgressData) -> None:
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("", width=2)
    table.add_column("Step", style="white")
    table.add_column("Note", style="dim white")

    for step in data.steps:
        mark, style = _STEP_STYLE[step.status]
        note = step.error or ("optional" if step.optional else "")
        table.add_row(f"[{style}]{mark}[/{style}]", step.description or step.tool, _mono(note, 60))

    summary = data.summary
    subtitle = ""
    if summary is not None:
        subtitle = (
            f"[dim]{summary.successful_steps}/{summary.total_steps} ok · "
            f"{summary.failed_steps} failed · {summary.skipped_steps} skipped · "
            f"{summary.rolled_back_steps} rolled back[/dim]"
        )

    console.print(
        Panel(
            table,
            title=_label(f"{data.plan_name.upper()}: {data.status.upper()}", "cyan"),
            subtitle=subtitle,
            border_style="cyan",
            padding=(0, 1),
        )
    )
    for action in data.recovery_actions:
        console.print(f"  [yellow]↳ {action}[/yellow]")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def execution_summary(summary: ExecutionSummary) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Tool", width=24)
    table.add_column("Status", justify="center", width=12)
    table.add_column("Result", style="dim white")

    for record in summary.steps:
        mark, style = _STEP_STYLE[record.status]
        detail = record.error if record.error else record.result
        table.add_row(
            str(record.order),
            record.tool,
            f"[{style}]{mark} {record.status.value}[/{style}]",
            _mono(detail, 60) if detail is not None else "",
        )

    console.print(
        Panel(
            table,
            title="[dim]EXECUTION SUMMARY[/dim]",
            subtitle=f"[dim]{summary.duration_ms:.1f} ms[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


def rollback_report(summary: ExecutionSummary) -> None:
    if not summary.rollbacks:
        return
    console.print()
    console.print(Rule("[magenta]ROLLBACK[/magenta]", style="magenta"))
    for attempt in summary.rollbacks:
        style = _ROLLBACK_STYLE[attempt.outcome]
        via = f" via {attempt.rollback_tool}" if attempt.rollback_tool else ""
        console.print(
            f"  [magenta]↺[/magenta] step {attempt.step_order} [white]{attempt.tool_name}[/white]"
            f"{via}  [{style}]{attempt.outcome.value}[/{style}]"
        )
    if summary.requires_manual_action:
        steps = ", ".join(f"{f.step_order} ({f.tool_name}: {f.reason})" for f in summary.rollback_failures)
        console.print(
            Panel(
                f"[bold red]Rollback incomplete.[/bold red]\n[white]Needs manual action: {steps}[/white]",
                title=_label("MANUAL INTERVENTION", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )


def metrics_table(records: list[VerificationMetricRecord]) -> None:
    console.print()
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold yellow", padding=(0, 1))
    table.add_column("Process", style="dim")
    table.add_column("Tool", style="white")
    table.add_column("Total", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg ms", justify="right")
    table.add_column("Failures by phase", style="yellow")
    table.add_column("Rollbacks", justify="right")

    for record in sorted(records, key=lambda r: (r.process_id, r.tool_name)):
        phases = ", ".join(f"{k}={v}" for k, v in record.failures_by_phase.items() if v)
        table.add_row(
            record.process_id,
            record.tool_name,
            str(record.total),
            f"{record.success_rate:.0%}",
            f"{record.avg_execution_time_ms:.2f}",
            phases,
            f"{record.rollback_successes}/{record.rollback_attempts}" if record.rollback_attempts else "",
        )

    console.print(
        Panel(table, title=_label("VERIFICATION METRICS", "yellow"), border_style="yellow", padding=(0, 1))
    )


def final_result(summary: ExecutionSummary) -> None:
    color = _OUTCOME_COLOR.get(summary.outcome, "white")
    lines = [f"[bold {color}]{summary.outcome}[/bold {color}]  [dim]run {summary.run_id}[/dim]"]
    if summary.missing_signals:
        lines.append(f"[dim]Signals not emitted:[/dim] [white]{', '.join(summary.missing_signals)}[/white]")
    if summary.missing_inputs:
        lines.append(f"[dim]Missing input:[/dim] [white]{', '.join(summary.missing_inputs)}[/white]")
    console.print()
    console.print(
        Panel(
            "\n".join(lines),
            title=_label("RESULT", color),
            border_style=color,
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
