# progress.py
# PlanProgressData snapshots for presentation layers (progress cards, CLIs).

from datetime import datetime

from process_engine.models import (
    ExecutionSummary,
    Pattern,
    PlanProgressData,
    PlanStepProgress,
    ProgressSummary,
    RunStatus,
    StepRecord,
    StepStatus,
)

_STATUS = {
    RunStatus.NOT_STARTED: "executing",
    RunStatus.RUNNING: "executing",
    RunStatus.COMPLETED: "completed",
    RunStatus.FAILED: "failed",
    RunStatus.ROLLED_BACK: "rolled_back",
    RunStatus.CANCELLED: "cancelled",
}


def build_progress(
    run_id: str,
    pattern: Pattern,
    records: list[StepRecord],
    status: RunStatus,
    current_step_index: int,
    started_at: datetime | None = None,
    duration_ms: float | None = None,
) -> PlanProgressData:
    descriptions = {s.order: s.description for s in pattern.steps}
    steps = [
        PlanStepProgress(
            order=r.order,
            tool=r.tool,
            description=descriptions.get(r.order, ""),
            status=r.status,
            optional=r.optional,
            error=r.error,
        )
        for r in records
    ]

    def count(*statuses: StepStatus) -> int:
        return sum(1 for r in records if r.status in statuses)

    return PlanProgressData(
        plan_id=run_id,
        plan_name=pattern.name or pattern.id,
        steps=steps,
        current_step_index=current_step_index,
        status=_STATUS[status],
        started_at=started_at,
        summary=ProgressSummary(
            total_steps=len(records),
            successful_steps=count(StepStatus.COMPLETED),
            failed_steps=count(StepStatus.FAILED),
            skipped_steps=count(StepStatus.SKIPPED),
            rolled_back_steps=count(StepStatus.ROLLED_BACK),
            duration_ms=duration_ms,
        ),
        recovery_actions=[r.recovery_suggestion for r in records if r.recovery_suggestion],
    )


def progress_from_summary(summary: ExecutionSummary, pattern: Pattern) -> PlanProgressData:
    """Final snapshot for a finished run."""
    return build_progress(
        summary.run_id,
        pattern,
        summary.steps,
        summary.status,
        current_step_index=len(summary.steps) - 1,
        started_at=summary.started_at,
        duration_ms=summary.duration_ms,
    )
