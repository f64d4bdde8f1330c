# rollback.py
# Compensating actions for a run that cannot complete.
#
# Steps are unwound most-recent-first. A compensating tool is invoked as a
# plain, unverified tool call; its own failure is recorded and never
# compensated in turn. The coordinator always walks every step: partial
# rollback with a visible failure list beats halting half-way.

import asyncio
import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field

from process_engine.errors import ToolNotFoundError
from process_engine.metrics import MetricsCollector
from process_engine.models import (
    ExecutionContext,
    RollbackAttempt,
    RollbackFailure,
    RollbackOutcome,
    StepRecord,
)
from process_engine.registry import ContractRegistry
from process_engine.templates import resolve_all
from process_engine.tools import ToolInvoker

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """How many times a compensating call is tried before it is reported as failed."""

    max_attempts: int = Field(default=1, ge=1)
    backoff_seconds: float = Field(default=0.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay(self, attempt: int) -> float:
        """Sleep before attempt number `attempt` (1-based); the first attempt never waits."""
        if attempt <= 1:
            return 0.0
        return self.backoff_seconds * self.backoff_multiplier ** (attempt - 2)


class RollbackReport(BaseModel):
    attempts: list[RollbackAttempt] = Field(default_factory=list)
    failures: list[RollbackFailure] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures

    @property
    def compensated_orders(self) -> list[int]:
        return [a.step_order for a in self.attempts if a.outcome == RollbackOutcome.COMPENSATED]


class RollbackCoordinator:
    def __init__(
        self,
        contracts: ContractRegistry,
        tools: ToolInvoker,
        metrics: MetricsCollector | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._contracts = contracts
        self._tools = tools
        self._metrics = metrics
        self._retry = retry or RetryPolicy()

    async def rollback(self, steps: Iterable[StepRecord], ctx: ExecutionContext) -> RollbackReport:
        """
        Undo `steps` in strictly decreasing order.

        Each step produces one RollbackAttempt. Steps with no contract or a
        read-only contract need nothing; steps whose contract declares side
        effects but no rollback tool become manual-intervention gaps.
        """
        report = RollbackReport()
        for step in sorted(steps, key=lambda s: s.order, reverse=True):
            attempt, failure = await self._undo(step, ctx)
            report.attempts.append(attempt)
            if failure is not None:
                report.failures.append(failure)
        if report.failures:
            logger.warning("Rollback incomplete: %d step(s) need manual action", len(report.failures))
        return report

    async def _undo(
        self, step: StepRecord, ctx: ExecutionContext
    ) -> tuple[RollbackAttempt, RollbackFailure | None]:
        contract = self._contracts.get(step.tool)

        if contract is None or not contract.side_effects:
            return RollbackAttempt(
                step_order=step.order, tool_name=step.tool, outcome=RollbackOutcome.NOT_REQUIRED
            ), None

        if not contract.rollback_tool:
            logger.warning(
                "Step %d (%s) has no rollback tool; manual intervention required", step.order, step.tool
            )
            return (
                RollbackAttempt(
                    step_order=step.order, tool_name=step.tool, outcome=RollbackOutcome.MANUAL_INTERVENTION
                ),
                RollbackFailure(step_order=step.order, tool_name=step.tool, reason="not_declared"),
            )

        args = resolve_all(contract.rollback_args, ctx.scopes(result=step.result, args=step.args))
        unresolved = sorted(set(contract.rollback_args) - set(args))
        if unresolved:
            # Calling with partial args would report success while the effect stays.
            error = f"unresolved rollback args: {unresolved}"
            logger.error("Rollback of step %d (%s) not attempted: %s", step.order, step.tool, error)
            self._record(contract.tool_name, contract.process_id, False)
            return (
                RollbackAttempt(
                    step_order=step.order,
                    tool_name=step.tool,
                    outcome=RollbackOutcome.FAILED,
                    rollback_tool=contract.rollback_tool,
                    rollback_args=args,
                    error=error,
                ),
                RollbackFailure(
                    step_order=step.order,
                    tool_name=step.tool,
                    rollback_tool=contract.rollback_tool,
                    reason="failed",
                    error=error,
                ),
            )

        error: str | None = None
        reason = "failed"
        tries = 0

        for tries in range(1, self._retry.max_attempts + 1):
            delay = self._retry.delay(tries)
            if delay:
                await asyncio.sleep(delay)
            try:
                await self._tools.invoke(contract.rollback_tool, args)
            except ToolNotFoundError as exc:
                error, reason = str(exc), "unavailable"
                break
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Rollback %s for step %d failed (attempt %d/%d): %s",
                    contract.rollback_tool, step.order, tries, self._retry.max_attempts, error,
                )
                continue
            logger.info("Compensated step %d (%s) with %s", step.order, step.tool, contract.rollback_tool)
            self._record(contract.tool_name, contract.process_id, True)
            return RollbackAttempt(
                step_order=step.order,
                tool_name=step.tool,
                outcome=RollbackOutcome.COMPENSATED,
                rollback_tool=contract.rollback_tool,
                rollback_args=args,
                attempts=tries,
            ), None

        logger.error("Rollback of step %d (%s) failed: %s", step.order, step.tool, error)
        self._record(contract.tool_name, contract.process_id, False)
        return (
            RollbackAttempt(
                step_order=step.order,
                tool_name=step.tool,
                outcome=RollbackOutcome.FAILED,
                rollback_tool=contract.rollback_tool,
                rollback_args=args,
                attempts=tries,
                error=error,
            ),
            RollbackFailure(
                step_order=step.order,
                tool_name=step.tool,
                rollback_tool=contract.rollback_tool,
                reason=reason,
                error=error,
            ),
        )

    def _record(self, tool_name: str, process_id: str, succeeded: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_rollback(tool_name, process_id, succeeded)
