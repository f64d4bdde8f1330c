# verifier.py
# Runs one tool call inside its contract.
#
#   contract? ──no──▶ invoke unverified ──▶ passed
#      │yes
#   preconditions ──fail──▶ passed=False, tool NOT invoked
#      │
#   invoke ──raises──▶ phase=execution, severity=critical
#      │
#   postconditions ──fail──▶ phase=postcondition (side effect happened)
#      │
#   invariants ──fail──▶ phase=invariant (baseline read before the call)
#      │
#   store assertions ──fail──▶ phase=db_assertion (side effect happened)
#      │
#   passed
#
# Every attempt, whatever its outcome, is recorded with the MetricsCollector.

import logging
import time
from collections.abc import Mapping
from typing import Any

from process_engine.conditions import (
    CustomCheck,
    capture_invariant,
    check_assertion,
    check_condition,
    check_invariant,
)
from process_engine.metrics import MetricsCollector
from process_engine.models import (
    Condition,
    ConditionFailure,
    ExecutionContext,
    FailurePhase,
    Severity,
    StepOutcome,
    ToolContract,
    VerificationResult,
)
from process_engine.registry import ContractRegistry
from process_engine.store import Store
from process_engine.tools import ToolInvoker

logger = logging.getLogger(__name__)

DEFAULT_RECOVERY = "Please check the data and try again."

_SEVERITY = {
    FailurePhase.PRECONDITION: Severity.WARNING,
    FailurePhase.EXECUTION: Severity.CRITICAL,
    FailurePhase.POSTCONDITION: Severity.ERROR,
    FailurePhase.INVARIANT: Severity.ERROR,
    FailurePhase.DB_ASSERTION: Severity.ERROR,
}


class StepVerifier:
    """Wraps tool invocation with pre/postcondition and store-assertion checks."""

    def __init__(
        self,
        contracts: ContractRegistry,
        tools: ToolInvoker,
        metrics: MetricsCollector,
        store: Store | None = None,
        custom_checks: Mapping[str, CustomCheck] | None = None,
    ) -> None:
        self._contracts = contracts
        self._tools = tools
        self._metrics = metrics
        self._store = store
        self._custom_checks = dict(custom_checks or {})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _check_all(
        self, conditions: tuple[Condition, ...], subject: Any, scopes: dict[str, Any]
    ) -> list[ConditionFailure]:
        failures = []
        for condition in conditions:
            failure = await check_condition(
                condition, subject, scopes, self._store, self._custom_checks
            )
            if failure is not None:
                failures.append(failure)
        return failures

    def _finish(
        self,
        *,
        tool_name: str,
        contract: ToolContract | None,
        step_order: int,
        attempt: int,
        started: float,
        checked: int,
        result: Any = None,
        phase: FailurePhase | None = None,
        failures: list[ConditionFailure] | None = None,
        error: str | None = None,
        side_effect_applied: bool = False,
    ) -> StepOutcome:
        passed = phase is None
        verification = VerificationResult(
            step_order=step_order,
            tool_name=tool_name,
            process_id=contract.process_id if contract else "unknown",
            passed=passed,
            phase=phase,
            severity=None if passed else _SEVERITY[phase],
            failed_conditions=failures or [],
            conditions_checked=checked,
            error=error,
            execution_time_ms=(time.perf_counter() - started) * 1000,
            attempt=attempt,
        )
        self._metrics.record(verification)

        suggestion = None
        if not passed and contract is not None:
            first = verification.failed_conditions[0].id if verification.failed_conditions else None
            suggestion = contract.recovery_hints.get(first or "", DEFAULT_RECOVERY)

        return StepOutcome(
            passed=passed,
            result=result,
            verification=verification,
            side_effect_applied=side_effect_applied,
            recovery_suggestion=suggestion,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute_with_verification(
        self,
        tool_name: str,
        args: dict[str, Any],
        ctx: ExecutionContext,
        *,
        step_order: int = 0,
        attempt: int = 1,
    ) -> StepOutcome:
        started = time.perf_counter()
        contract = self._contracts.get(tool_name)
        common = dict(
            tool_name=tool_name, contract=contract, step_order=step_order, attempt=attempt, started=started
        )

        if contract is None:
            logger.debug("No contract for %s, executing unverified", tool_name)
            try:
                result = await self._tools.invoke(tool_name, args)
            except Exception as exc:
                logger.error("Unverified tool %s raised: %s", tool_name, exc)
                return self._finish(
                    **common, checked=0, phase=FailurePhase.EXECUTION,
                    failures=[_execution_failure(exc)], error=str(exc),
                )
            return self._finish(**common, checked=0, result=result, side_effect_applied=True)

        checked = len(contract.preconditions)

        # 1. Preconditions gate the call: nothing is attempted if they fail.
        failures = await self._check_all(contract.preconditions, args, ctx.scopes(args=args))
        if failures:
            logger.warning(
                "Precondition failed for %s: %s", tool_name, ", ".join(f.id for f in failures)
            )
            return self._finish(
                **common, checked=checked, phase=FailurePhase.PRECONDITION, failures=failures
            )

        # Invariant baselines are read while the store is still untouched.
        baselines = [
            await capture_invariant(invariant, ctx.scopes(args=args), self._store)
            for invariant in contract.invariants
        ]

        # 2. The call itself.
        try:
            result = await self._tools.invoke(tool_name, args)
        except Exception as exc:
            logger.error("Tool %s raised during execution: %s", tool_name, exc)
            return self._finish(
                **common, checked=checked, phase=FailurePhase.EXECUTION,
                failures=[_execution_failure(exc)], error=str(exc),
            )

        # 3. Postconditions against the result. From here on the effect is real.
        scopes = ctx.scopes(args=args, result=result)
        checked += len(contract.postconditions)
        failures = await self._check_all(contract.postconditions, result, scopes)
        if failures:
            logger.warning(
                "Postcondition failed for %s: %s", tool_name, ", ".join(f.id for f in failures)
            )
            return self._finish(
                **common, checked=checked, result=result, phase=FailurePhase.POSTCONDITION,
                failures=failures, side_effect_applied=True,
            )

        # 4. Invariants.
        checked += len(contract.invariants)
        failures = []
        for invariant, baseline in zip(contract.invariants, baselines):
            failure = await check_invariant(invariant, baseline, result, self._store)
            if failure is not None:
                failures.append(failure)
        if failures:
            logger.warning(
                "Invariant violated by %s: %s", tool_name, ", ".join(f.id for f in failures)
            )
            return self._finish(
                **common, checked=checked, result=result, phase=FailurePhase.INVARIANT,
                failures=failures, side_effect_applied=True,
            )

        # 5. Store assertions.
        failures = []
        for assertion in contract.db_assertions:
            checked += 1
            failure = await check_assertion(assertion, scopes, self._store)
            if failure is not None:
                failures.append(failure)
        if failures:
            logger.warning(
                "Store assertion failed for %s: %s", tool_name, ", ".join(f.id for f in failures)
            )
            return self._finish(
                **common, checked=checked, result=result, phase=FailurePhase.DB_ASSERTION,
                failures=failures, side_effect_applied=True,
            )

        logger.debug("All %d checks passed for %s", checked, tool_name)
        return self._finish(**common, checked=checked, result=result, side_effect_applied=True)


def _execution_failure(exc: Exception) -> ConditionFailure:
    return ConditionFailure(
        id="execution_error",
        description="Tool execution failed",
        expected="success",
        actual="error",
        details=f"{type(exc).__name__}: {exc}",
    )
