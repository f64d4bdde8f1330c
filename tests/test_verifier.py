import asyncio
from unittest.mock import MagicMock

import pytest

from process_engine.metrics import MetricsCollector
from process_engine.models import (
    Condition,
    ExecutionContext,
    FailurePhase,
    Invariant,
    Severity,
    StoreAssertion,
    ToolContract,
)
from process_engine.registry import ContractRegistry
from process_engine.store import InMemoryStore
from process_engine.tools import ToolRegistry
from process_engine.verifier import DEFAULT_RECOVERY, StepVerifier

CREATE_CUSTOMER = ToolContract(
    tool_name="create_customer",
    process_id="lead_generation",
    preconditions=[
        Condition(id="name_required", description="Name is required", type="field_not_null", field="name"),
    ],
    postconditions=[
        Condition(id="customer_created", type="entity_exists", field="id"),
        Condition(id="customer_is_lead", type="field_equals", field="status", value="Lead"),
    ],
    db_assertions=[
        StoreAssertion(id="customer_in_store", table="customers", query={"id": "{{result.id}}"},
                       expect={"count": 1}),
    ],
    rollback_tool="delete_customer",
    rollback_args={"customer_id": "{{result.id}}"},
    recovery_hints={"name_required": "Please provide the customer name."},
)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def metrics():
    return MetricsCollector()


def _verifier(handler, store, metrics, contracts=(CREATE_CUSTOMER,)):
    tools = ToolRegistry({"create_customer": handler})
    return StepVerifier(ContractRegistry(contracts), tools, metrics, store)


def _run(verifier, args, tool="create_customer"):
    return asyncio.run(
        verifier.execute_with_verification(tool, args, ExecutionContext(), step_order=1)
    )

# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_all_checks_pass(store, metrics):
    async def create(args):
        return await store.insert("customers", {**args, "status": "Lead"})

    outcome = _run(_verifier(create, store, metrics), {"name": "John"})

    assert outcome.passed is True
    assert outcome.side_effect_applied is True
    assert outcome.result["name"] == "John"
    v = outcome.verification
    assert v.phase is None and v.severity is None
    assert v.process_id == "lead_generation"
    # 1 pre + 2 post + 1 store assertion
    assert v.conditions_checked == 4
    assert outcome.recovery_suggestion is None

# ---------------------------------------------------------------------------
# Failure phases
# ---------------------------------------------------------------------------

def test_precondition_failure_does_not_invoke_tool(store, metrics):
    handler = MagicMock(return_value={"id": "c-1", "status": "Lead"})

    outcome = _run(_verifier(handler, store, metrics), {"email": "john@example.com"})

    handler.assert_not_called()
    assert outcome.passed is False
    assert outcome.side_effect_applied is False
    v = outcome.verification
    assert v.phase == FailurePhase.PRECONDITION
    assert v.severity == Severity.WARNING
    assert [f.id for f in v.failed_conditions] == ["name_required"]
    assert outcome.recovery_suggestion == "Please provide the customer name."

def test_execution_failure(store, metrics):
    handler = MagicMock(side_effect=ConnectionError("backend down"))

    outcome = _run(_verifier(handler, store, metrics), {"name": "John"})

    handler.assert_called_once_with({"name": "John"})
    v = outcome.verification
    assert v.phase == FailurePhase.EXECUTION
    assert v.severity == Severity.CRITICAL
    assert v.error == "backend down"
    assert v.failed_conditions[0].id == "execution_error"
    assert "ConnectionError" in v.failed_conditions[0].details
    assert outcome.side_effect_applied is False
    assert outcome.recovery_suggestion == DEFAULT_RECOVERY

def test_postcondition_failure_marks_side_effect(store, metrics):
    handler = MagicMock(return_value={"id": "c-1", "status": "Customer"})

    outcome = _run(_verifier(handler, store, metrics), {"name": "John"})

    v = outcome.verification
    assert v.phase == FailurePhase.POSTCONDITION
    assert v.severity == Severity.ERROR
    assert [f.id for f in v.failed_conditions] == ["customer_is_lead"]
    assert outcome.side_effect_applied is True
    # The result is kept so the effect can be compensated
    assert outcome.result == {"id": "c-1", "status": "Customer"}

def test_store_assertion_failure(store, metrics):
    # Claims success but never writes the row
    handler = MagicMock(return_value={"id": "c-1", "status": "Lead"})

    outcome = _run(_verifier(handler, store, metrics), {"name": "John"})

    v = outcome.verification
    assert v.phase == FailurePhase.DB_ASSERTION
    assert v.failed_conditions[0].id == "customer_in_store"
    assert outcome.side_effect_applied is True

def test_no_contract_executes_unverified(store, metrics):
    tools = ToolRegistry({"check_team_availability": lambda args: {"members": ["tm-1"]}})
    verifier = StepVerifier(ContractRegistry(), tools, metrics, store)

    outcome = _run(verifier, {}, tool="check_team_availability")

    assert outcome.passed is True
    assert outcome.result == {"members": ["tm-1"]}
    assert outcome.verification.process_id == "unknown"
    assert outcome.verification.conditions_checked == 0

def test_no_contract_tool_failure_is_execution_phase(store, metrics):
    def broken(args):
        raise ValueError("bad input")

    verifier = StepVerifier(ContractRegistry(), ToolRegistry({"broken": broken}), metrics, store)
    outcome = _run(verifier, {}, tool="broken")

    assert outcome.passed is False
    assert outcome.verification.phase == FailurePhase.EXECUTION
    # No contract, no recovery hints
    assert outcome.recovery_suggestion is None

def test_unregistered_tool_is_execution_failure(store, metrics):
    verifier = StepVerifier(ContractRegistry(), ToolRegistry(), metrics, store)
    outcome = _run(verifier, {}, tool="ghost")

    assert outcome.verification.phase == FailurePhase.EXECUTION
    assert "ghost" in outcome.verification.error

# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

RESCHEDULE = ToolContract(
    tool_name="reschedule_job",
    process_id="scheduling",
    postconditions=[Condition(id="job_returned", type="entity_exists", field="id")],
    invariants=[
        Invariant(id="customer_unchanged", description="Customer must not change",
                  table="jobs", key_from="{{args.job_id}}", field="customer_id"),
    ],
    rollback_tool="unschedule_job",
    rollback_args={"job_id": "{{args.job_id}}"},
)


def _reschedule(store, metrics, changes):
    async def reschedule(args):
        return await store.update("jobs", args["job_id"], changes)

    tools = ToolRegistry({"reschedule_job": reschedule})
    verifier = StepVerifier(ContractRegistry([RESCHEDULE]), tools, metrics, store)
    return _run(verifier, {"job_id": "job-1"}, tool="reschedule_job")


@pytest.fixture
def job_store():
    return InMemoryStore({"jobs": [{"id": "job-1", "customer_id": "c-1", "status": "Pending"}]})


def test_invariant_holds_when_guarded_value_is_untouched(job_store, metrics):
    outcome = _reschedule(job_store, metrics, {"status": "Scheduled"})

    assert outcome.passed is True
    # 1 post + 1 invariant
    assert outcome.verification.conditions_checked == 2

def test_invariant_violation_is_its_own_phase(job_store, metrics):
    outcome = _reschedule(job_store, metrics, {"customer_id": "c-2"})

    assert outcome.passed is False
    assert outcome.side_effect_applied is True
    v = outcome.verification
    assert v.phase == FailurePhase.INVARIANT
    assert v.severity == Severity.ERROR
    [failure] = v.failed_conditions
    assert failure.id == "customer_unchanged"
    assert failure.expected == "c-1"
    assert failure.actual == "c-2"
    assert failure.details == "value changed unexpectedly"

    [record] = metrics.query("reschedule_job")
    assert record.invariant_violations == 1

def test_invariant_against_result_uses_value_captured_before_the_call(store, metrics):
    contract = ToolContract(
        tool_name="create_customer",
        process_id="lead_generation",
        invariants=[
            Invariant(id="email_kept", field="email", value_from="{{args.email}}"),
        ],
    )
    handler = MagicMock(return_value={"id": "c-1", "email": "other@example.com"})

    outcome = _run(_verifier(handler, store, metrics, (contract,)), {"email": "john@example.com"})

    assert outcome.verification.phase == FailurePhase.INVARIANT
    assert outcome.verification.failed_conditions[0].expected == "john@example.com"

def test_invariant_with_unresolvable_row_key_fails(job_store, metrics):
    tools = ToolRegistry({"reschedule_job": lambda args: {"id": "job-1"}})
    verifier = StepVerifier(ContractRegistry([RESCHEDULE]), tools, metrics, job_store)

    outcome = _run(verifier, {}, tool="reschedule_job")

    assert outcome.verification.phase == FailurePhase.INVARIANT
    assert "unresolved" in outcome.verification.failed_conditions[0].details

def test_invariant_needs_a_baseline():
    with pytest.raises(ValueError, match="table or a value_from"):
        Invariant(id="nothing", field="customer_id")
    with pytest.raises(ValueError, match="key_from"):
        Invariant(id="no_key", field="customer_id", table="jobs")

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def test_every_attempt_is_recorded(store, metrics):
    handler = MagicMock(side_effect=[ConnectionError("down"), {"id": "c-1", "status": "Customer"}])
    verifier = _verifier(handler, store, metrics)

    _run(verifier, {"name": "John"})
    _run(verifier, {"name": "John"})
    _run(verifier, {})

    [record] = metrics.query("create_customer")
    assert record.total == 3
    assert record.failed == 3
    assert record.failures_by_phase == {
        "precondition": 1,
        "execution": 1,
        "postcondition": 1,
        "invariant": 0,
        "db_assertion": 0,
    }
    assert record.invariant_violations == 0
