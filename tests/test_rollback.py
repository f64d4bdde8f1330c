import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from process_engine.metrics import MetricsCollector
from process_engine.models import ExecutionContext, RollbackOutcome, StepRecord, StepStatus, ToolContract
from process_engine.registry import ContractRegistry
from process_engine.rollback import RetryPolicy, RollbackCoordinator
from process_engine.tools import ToolRegistry

CONTRACTS = ContractRegistry([
    ToolContract(tool_name="search_customers", process_id="lead_generation", side_effects=False),
    ToolContract(
        tool_name="create_customer",
        process_id="lead_generation",
        rollback_tool="delete_customer",
        rollback_args={"customer_id": "{{result.id}}"},
    ),
    ToolContract(
        tool_name="score_lead",
        process_id="lead_generation",
        rollback_tool="reset_lead_score",
        rollback_args={"customer_id": "{{args.customer_id}}"},
    ),
    ToolContract(tool_name="send_email", process_id="lead_generation"),
])


def _record(order, tool, result=None, args=None):
    return StepRecord(
        order=order, tool=tool, key=tool, status=StepStatus.COMPLETED,
        result=result, args=args or {},
    )


STEPS = [
    _record(1, "search_customers", {"found": False}),
    _record(2, "create_customer", {"id": "c-1"}),
    _record(3, "score_lead", {"lead_score": 60}, {"customer_id": "c-1"}),
]


def _rollback(coordinator, steps):
    return asyncio.run(coordinator.rollback(steps, ExecutionContext()))

# ---------------------------------------------------------------------------
# Ordering and outcomes
# ---------------------------------------------------------------------------

def test_unwinds_in_reverse_order():
    calls = []
    tools = ToolRegistry({
        "delete_customer": lambda args: calls.append(("delete_customer", args)),
        "reset_lead_score": lambda args: calls.append(("reset_lead_score", args)),
    })

    report = _rollback(RollbackCoordinator(CONTRACTS, tools), STEPS)

    assert [a.step_order for a in report.attempts] == [3, 2, 1]
    assert calls == [
        ("reset_lead_score", {"customer_id": "c-1"}),
        ("delete_customer", {"customer_id": "c-1"}),
    ]
    assert report.complete
    assert report.compensated_orders == [3, 2]

def test_read_only_and_uncontracted_steps_need_nothing():
    steps = [_record(1, "search_customers"), _record(2, "check_team_availability")]

    report = _rollback(RollbackCoordinator(CONTRACTS, ToolRegistry()), steps)

    assert [a.outcome for a in report.attempts] == [RollbackOutcome.NOT_REQUIRED] * 2
    assert report.failures == []

def test_missing_rollback_tool_needs_manual_intervention():
    report = _rollback(RollbackCoordinator(CONTRACTS, ToolRegistry()), [_record(4, "send_email")])

    assert report.attempts[0].outcome == RollbackOutcome.MANUAL_INTERVENTION
    [failure] = report.failures
    assert failure.reason == "not_declared"
    assert failure.step_order == 4
    assert not report.complete

def test_failed_compensation_does_not_stop_the_walk():
    reset = MagicMock()
    tools = ToolRegistry({
        "delete_customer": MagicMock(side_effect=ConnectionError("store offline")),
        "reset_lead_score": reset,
    })

    report = _rollback(RollbackCoordinator(CONTRACTS, tools), STEPS[1:])

    reset.assert_called_once()
    outcomes = {a.step_order: a.outcome for a in report.attempts}
    assert outcomes == {3: RollbackOutcome.COMPENSATED, 2: RollbackOutcome.FAILED}
    [failure] = report.failures
    assert failure.reason == "failed"
    assert failure.rollback_tool == "delete_customer"
    assert "store offline" in failure.error

def test_unregistered_rollback_tool_is_unavailable():
    report = _rollback(RollbackCoordinator(CONTRACTS, ToolRegistry()), [STEPS[1]])

    [failure] = report.failures
    assert failure.reason == "unavailable"
    assert report.attempts[0].attempts == 1

def test_unresolved_rollback_args_fail_without_invoking():
    calls = []
    tools = ToolRegistry({"delete_customer": lambda args: calls.append(args)})
    # The result carries no "id", so {{result.id}} cannot resolve
    step = _record(2, "create_customer", {"customer_id": "c-9"})

    report = _rollback(RollbackCoordinator(CONTRACTS, tools), [step])

    assert calls == []
    [attempt] = report.attempts
    assert attempt.outcome == RollbackOutcome.FAILED
    assert attempt.attempts == 0
    [failure] = report.failures
    assert failure.reason == "failed"
    assert failure.rollback_tool == "delete_customer"
    assert "customer_id" in failure.error
    assert not report.complete

def test_rollback_is_idempotent():
    deleted = set()

    def delete_customer(args):
        deleted.add(args["customer_id"])
        return {"deleted": True}

    tools = ToolRegistry({"delete_customer": delete_customer, "reset_lead_score": lambda args: None})
    coordinator = RollbackCoordinator(CONTRACTS, tools)

    first = _rollback(coordinator, STEPS)
    second = _rollback(coordinator, STEPS)

    assert deleted == {"c-1"}
    assert [a.outcome for a in first.attempts] == [a.outcome for a in second.attempts]

# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

def test_retry_policy_delay():
    policy = RetryPolicy(max_attempts=4, backoff_seconds=0.5, backoff_multiplier=2.0)

    assert policy.delay(1) == 0.0
    assert policy.delay(2) == 0.5
    assert policy.delay(3) == 1.0
    assert policy.delay(4) == 2.0

def test_retry_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)

def test_compensation_retried_until_success():
    delete = MagicMock(side_effect=[ConnectionError("blip"), {"deleted": True}])
    tools = ToolRegistry({"delete_customer": delete})
    coordinator = RollbackCoordinator(
        CONTRACTS, tools, retry=RetryPolicy(max_attempts=3, backoff_seconds=0.25)
    )

    with patch("process_engine.rollback.asyncio.sleep", new_callable=AsyncMock) as sleep:
        report = _rollback(coordinator, [STEPS[1]])

    assert report.attempts[0].outcome == RollbackOutcome.COMPENSATED
    assert report.attempts[0].attempts == 2
    assert delete.call_count == 2
    sleep.assert_awaited_once_with(0.25)

def test_compensation_gives_up_after_max_attempts():
    delete = MagicMock(side_effect=ConnectionError("down"))
    coordinator = RollbackCoordinator(
        CONTRACTS, ToolRegistry({"delete_customer": delete}), retry=RetryPolicy(max_attempts=3)
    )

    report = _rollback(coordinator, [STEPS[1]])

    assert delete.call_count == 3
    assert report.attempts[0].outcome == RollbackOutcome.FAILED
    assert report.attempts[0].attempts == 3

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def test_rollback_outcomes_are_counted():
    metrics = MetricsCollector()
    tools = ToolRegistry({
        "delete_customer": MagicMock(side_effect=ConnectionError("down")),
        "reset_lead_score": MagicMock(),
    })

    _rollback(RollbackCoordinator(CONTRACTS, tools, metrics), STEPS)

    by_tool = {r.tool_name: r for r in metrics.query()}
    assert by_tool["score_lead"].rollback_attempts == 1
    assert by_tool["score_lead"].rollback_successes == 1
    assert by_tool["create_customer"].rollback_attempts == 1
    assert by_tool["create_customer"].rollback_successes == 0
    assert "search_customers" not in by_tool
