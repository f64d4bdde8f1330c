# executor.py
# Runs a Pattern step by step.
#
# Per run:  NotStarted → Running → {Completed | Failed | RolledBack | Cancelled}
#
# For each step, in ascending order:
#   1. skip_if true            → skipped, nothing invoked
#   2. resolve args            → templates against input / results / context
#   3. verify + invoke         → StepVerifier
#   4. passed                  → result stored under the step key
#   5. failed, optional        → recorded, run continues
#      failed, required        → stop, unwind completed steps in reverse
#
# Steps are strictly sequential: step N's arguments may read step N-1's
# result. Separate runs share nothing but the metrics collector, so any
# number of them can be awaited concurrently.

import asyncio
import inspect
import logging
import re
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from process_engine.models import (
    ExecutionContext,
    ExecutionSummary,
    FailurePhase,
    Pattern,
    PatternStep,
    PlanProgressData,
    RollbackOutcome,
    RunStatus,
    StepOutcome,
    StepRecord,
    StepStatus,
    VerificationResult,
)
from process_engine.progress import build_progress
from process_engine.rollback import RollbackCoordinator, RollbackReport
from process_engine.templates import evaluate_condition, resolve_all
from process_engine.verifier import StepVerifier

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PlanProgressData], None | Awaitable[None]]

_INPUT_REF = re.compile(r"\{\{\s*input\.(\w+)")


def missing_inputs(pattern: Pattern, payload: dict[str, Any]) -> list[str]:
    """
    Input keys the first unconditional required step references but the
    caller did not supply. Only that step is inspected: later steps usually
    have fallbacks or read earlier results.
    """
    step = next((s for s in pattern.steps if not s.optional and not s.skip_if), None)
    if step is None:
        return []
    missing: list[str] = []
    for template in step.args.values():
        if not isinstance(template, str):
            continue
        if "||" in template:
            continue
        for name in _INPUT_REF.findall(template):
            if payload.get(name) in (None, "") and name not in missing:
                missing.append(name)
    return missing


class _Run:
    """Mutable bookkeeping for one run. Never shared."""

    def __init__(self, pattern: Pattern, ctx: ExecutionContext, run_id: str) -> None:
        self.pattern = pattern
        self.ctx = ctx
        self.run_id = run_id
        self.steps = sorted(pattern.steps, key=lambda s: s.order)
        self.records = [
            StepRecord(order=s.order, tool=s.tool, key=s.key, optional=s.optional) for s in self.steps
        ]
        self.verifications: list[VerificationResult] = []
        self.completed: list[StepRecord] = []
        self.signals: list[str] = []
        self.status = RunStatus.NOT_STARTED
        self.rollback = RollbackReport()
        self.started_at = datetime.now(timezone.utc)
        self.started = time.perf_counter()


class PatternExecutor:
    def __init__(
        self,
        verifier: StepVerifier,
        rollback: RollbackCoordinator,
        step_max_attempts: int = 2,
    ) -> None:
        self._verifier = verifier
        self._rollback = rollback
        self._step_max_attempts = max(1, step_max_attempts)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _emit(self, run: _Run, callback: ProgressCallback | None, index: int) -> None:
        if callback is None:
            return
        snapshot = build_progress(
            run.run_id, run.pattern, run.records, run.status, index, run.started_at,
            (time.perf_counter() - run.started) * 1000,
        )
        try:
            outcome = callback(snapshot)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Progress callback failed for run %s", run.run_id)

    async def _attempt(self, run: _Run, step: PatternStep, record: StepRecord) -> StepOutcome:
        """Invoke a step, retrying execution-phase failures when the step allows it."""
        max_attempts = self._step_max_attempts if step.retry_on_fail else 1
        attempt = 1
        while True:
            outcome = await self._verifier.execute_with_verification(
                step.tool, record.args, run.ctx, step_order=step.order, attempt=attempt
            )
            run.verifications.append(outcome.verification)
            record.attempts = attempt
            retryable = not outcome.passed and outcome.verification.phase == FailurePhase.EXECUTION
            if not retryable or attempt >= max_attempts:
                return outcome
            attempt += 1
            logger.info("Retrying step %d (%s), attempt %d", step.order, step.tool, attempt)

    async def _unwind(self, run: _Run, steps: list[StepRecord]) -> None:
        if not steps:
            return
        run.rollback = await self._rollback.rollback(steps, run.ctx)
        compensated = set(run.rollback.compensated_orders)
        for record in run.records:
            if record.order in compensated and record.status == StepStatus.COMPLETED:
                record.status = StepStatus.ROLLED_BACK

    def _summary(self, run: _Run) -> ExecutionSummary:
        return ExecutionSummary(
            run_id=run.run_id,
            pattern_id=run.pattern.id,
            status=run.status,
            steps=run.records,
            verifications=run.verifications,
            results=dict(run.ctx.results),
            rollbacks=run.rollback.attempts,
            rollback_failures=run.rollback.failures,
            missing_inputs=missing_inputs(run.pattern, run.ctx.input),
            expected_signals=list(run.pattern.success_metrics),
            emitted_signals=run.signals,
            started_at=run.started_at,
            finished_at=datetime.now(timezone.utc),
            duration_ms=(time.perf_counter() - run.started) * 1000,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        pattern: Pattern,
        input: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
        run_id: str | None = None,
    ) -> ExecutionSummary:
        """
        Execute `pattern` to completion or to a terminal failure.

        Never raises for step failures: the returned summary carries the
        terminal status, every VerificationResult and any rollback failures.
        `cancel` is checked between steps; setting it unwinds completed steps.
        """
        ctx = ExecutionContext(input=dict(input or {}), context=dict(context or {}))
        run = _Run(pattern, ctx, run_id or uuid.uuid4().hex)
        run.status = RunStatus.RUNNING
        logger.info("Run %s: starting pattern %s (%d steps)", run.run_id, pattern.id, len(run.steps))

        gaps = missing_inputs(pattern, run.ctx.input)
        if gaps:
            logger.warning("Run %s: input is missing %s", run.run_id, ", ".join(gaps))

        for index, (step, record) in enumerate(zip(run.steps, run.records)):
            if cancel is not None and cancel.is_set():
                logger.info("Run %s: cancelled before step %d", run.run_id, step.order)
                run.status = RunStatus.CANCELLED
                await self._unwind(run, run.completed)
                break

            scopes = run.ctx.scopes()
            if step.skip_if and evaluate_condition(step.skip_if, scopes):
                logger.info("Run %s: step %d (%s) skipped", run.run_id, step.order, step.tool)
                record.status = StepStatus.SKIPPED
                await self._emit(run, on_progress, index)
                continue

            record.args = resolve_all(step.args, scopes)
            outcome = await self._attempt(run, step, record)

            if outcome.passed:
                record.status = StepStatus.COMPLETED
                record.result = outcome.result
                run.ctx.results[step.key] = outcome.result
                run.completed.append(record)
                if step.signal:
                    run.signals.append(step.signal)
                logger.info("Run %s: step %d (%s) completed", run.run_id, step.order, step.tool)
                await self._emit(run, on_progress, index)
                continue

            record.status = StepStatus.FAILED
            record.phase = outcome.verification.phase
            record.error = _describe(outcome)
            record.recovery_suggestion = outcome.recovery_suggestion

            if step.optional:
                logger.warning(
                    "Run %s: optional step %d (%s) failed at %s; continuing",
                    run.run_id, step.order, step.tool, record.phase.value,
                )
                await self._emit(run, on_progress, index)
                continue

            logger.warning(
                "Run %s: required step %d (%s) failed at %s; rolling back",
                run.run_id, step.order, step.tool, record.phase.value,
            )
            to_undo = list(run.completed)
            if outcome.side_effect_applied:
                # The effect is real even though it did not verify.
                record.result = outcome.result
                to_undo.append(record)
            await self._unwind(run, to_undo)
            touched = any(a.outcome != RollbackOutcome.NOT_REQUIRED for a in run.rollback.attempts)
            run.status = RunStatus.ROLLED_BACK if touched else RunStatus.FAILED
            await self._emit(run, on_progress, index)
            break
        else:
            run.status = RunStatus.COMPLETED

        summary = self._summary(run)
        logger.info(
            "Run %s: %s in %.1f ms (%s)", run.run_id, summary.status.value, summary.duration_ms, summary.outcome
        )
        if run.status in (RunStatus.CANCELLED, RunStatus.COMPLETED):
            await self._emit(run, on_progress, len(run.records) - 1)
        return summary


def _describe(outcome: StepOutcome) -> str:
    verification = outcome.verification
    if verification.error:
        return verification.error
    if verification.failed_conditions:
        first = verification.failed_conditions[0]
        return first.description or first.id
    return f"{verification.phase.value} failed" if verification.phase else "failed"
