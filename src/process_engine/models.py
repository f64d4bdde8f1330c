# models.py
# Data contracts for the process orchestration engine.
# No business logic lives here: pure schema and validation.

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ConditionType(str, Enum):
    FIELD_NOT_NULL = "field_not_null"
    FIELD_EQUALS = "field_equals"
    ENTITY_EXISTS = "entity_exists"
    CUSTOM = "custom"


class FailurePhase(str, Enum):
    PRECONDITION = "precondition"
    EXECUTION = "execution"
    POSTCONDITION = "postcondition"
    INVARIANT = "invariant"
    DB_ASSERTION = "db_assertion"


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


class RollbackOutcome(str, Enum):
    COMPENSATED = "compensated"
    FAILED = "failed"
    MANUAL_INTERVENTION = "manual_intervention"
    NOT_REQUIRED = "not_required"


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class Condition(BaseModel):
    """A single pre- or postcondition declared by a tool contract."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique within the owning contract.")
    description: str = Field(default="")
    type: ConditionType
    field: str | None = Field(default=None, description="Dotted path into the subject.")
    operator: Literal["==", "!=", "in"] = "=="
    value: Any = None
    value_from: str | None = Field(
        default=None,
        description="Template resolved at check time, e.g. '{{input.email}}'.",
    )
    table: str | None = Field(
        default=None, description="entity_exists only: verify the row in this table."
    )
    key: str = Field(default="id", description="entity_exists only: column matched against the field.")
    check: str | None = Field(default=None, description="custom only: name of the registered check.")


class StoreExpectation(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int | None = None
    field: str | None = None
    operator: Literal["==", "!=", ">", "<", ">=", "<=", "not_null"] = "=="
    value: Any = None


class StoreAssertion(BaseModel):
    """Postcondition verified against the store rather than the in-memory result."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    table: str
    query: dict[str, Any] = Field(
        default_factory=dict,
        description="Equality predicate; values may be templates such as '{{result.id}}'.",
    )
    expect: StoreExpectation = Field(default_factory=StoreExpectation)


class Invariant(BaseModel):
    """
    A value the tool call must leave untouched.

    With `table` set, the guarded value is `field` on the store row whose
    `key` column equals `key_from`; it is read before the call and again
    after it. Without a table, `field` is read from the tool result.

    `value_from`, when given, is resolved before the call and is the value
    `field` must hold afterwards. Otherwise the value read before the call
    is the expectation.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    field: str
    table: str | None = None
    key: str = "id"
    key_from: str | None = Field(default=None, description="Template locating the row, e.g. '{{args.job_id}}'.")
    value_from: str | None = None

    @model_validator(mode="after")
    def _has_a_baseline(self) -> "Invariant":
        if self.table is None and self.value_from is None:
            raise ValueError(f"Invariant '{self.id}' needs a table or a value_from to compare against")
        if self.table is not None and self.key_from is None:
            raise ValueError(f"Invariant '{self.id}' reads {self.table} but has no key_from")
        return self


class ToolContract(BaseModel):
    """Verification and compensation rules for one tool. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    process_id: str
    sub_step_id: str | None = None
    description: str = ""
    preconditions: tuple[Condition, ...] = ()
    postconditions: tuple[Condition, ...] = ()
    invariants: tuple[Invariant, ...] = ()
    db_assertions: tuple[StoreAssertion, ...] = ()
    rollback_tool: str | None = None
    rollback_args: dict[str, Any] = Field(default_factory=dict)
    side_effects: bool = Field(
        default=True, description="False for read-only tools that never need compensation."
    )
    recovery_hints: dict[str, str] = Field(
        default_factory=dict, description="Condition id -> user-facing recovery suggestion."
    )

    @model_validator(mode="after")
    def _unique_condition_ids(self) -> "ToolContract":
        ids = [c.id for c in self.preconditions + self.postconditions]
        ids += [i.id for i in self.invariants]
        ids += [a.id for a in self.db_assertions]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"Contract '{self.tool_name}' repeats condition ids: {dupes}")
        return self


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


class PatternStep(BaseModel):
    """One tool invocation inside a pattern."""

    model_config = ConfigDict(frozen=True)

    order: int = Field(..., ge=1, description="1-based position; strictly increasing within a pattern.")
    tool: str
    args: dict[str, Any] = Field(default_factory=dict, description="Template expressions.")
    name: str | None = Field(default=None, description="Result key; defaults to the tool name.")
    description: str = ""
    optional: bool = False
    skip_if: str | None = None
    retry_on_fail: bool = False
    signal: str | None = Field(default=None, description="Success signal emitted on completion.")

    @property
    def key(self) -> str:
        return self.name or self.tool


class Pattern(BaseModel):
    """An ordered list of steps implementing one business process."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    category: Literal["pre-service", "service-delivery", "post-service", "operations"] = "operations"
    steps: tuple[PatternStep, ...] = Field(..., min_length=1)
    preconditions: tuple[str, ...] = ()
    postconditions: tuple[str, ...] = ()
    success_metrics: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _strictly_increasing_order(self) -> "Pattern":
        orders = [s.order for s in self.steps]
        for prev, cur in zip(orders, orders[1:]):
            if cur <= prev:
                raise ValueError(
                    f"Pattern '{self.id}' step order must be strictly increasing, got {orders}"
                )
        keys = [s.key for s in self.steps]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"Pattern '{self.id}' reuses result keys {dupes}; name the steps.")
        return self

    @property
    def tools(self) -> list[str]:
        return [s.tool for s in self.steps]


# ---------------------------------------------------------------------------
# Execution state
# ---------------------------------------------------------------------------


class ExecutionContext(BaseModel):
    """Per-run scope. Owned by exactly one run and discarded afterwards."""

    input: dict[str, Any] = Field(default_factory=dict)
    results: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)

    def scopes(self, **extra: Any) -> dict[str, Any]:
        """Template scopes for this run, optionally extended (e.g. args, result)."""
        return {"input": self.input, "results": self.results, "context": self.context, **extra}


class ConditionFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    expected: Any = None
    actual: Any = None
    details: str | None = None


class VerificationResult(BaseModel):
    """Immutable record of one step attempt."""

    model_config = ConfigDict(frozen=True)

    step_order: int
    tool_name: str
    process_id: str = "unknown"
    passed: bool
    phase: FailurePhase | None = None
    severity: Severity | None = None
    failed_conditions: list[ConditionFailure] = Field(default_factory=list)
    conditions_checked: int = 0
    error: str | None = None
    execution_time_ms: float = 0.0
    timestamp: datetime = Field(default_factory=_utcnow)
    attempt: int = 1


class StepOutcome(BaseModel):
    passed: bool
    result: Any = None
    verification: VerificationResult
    side_effect_applied: bool = Field(
        default=False, description="True when the tool ran, even if verification then failed."
    )
    recovery_suggestion: str | None = None


class StepRecord(BaseModel):
    """Executor's view of one step after the run."""

    order: int
    tool: str
    key: str
    optional: bool = False
    status: StepStatus = StepStatus.PENDING
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    attempts: int = 0
    phase: FailurePhase | None = None
    error: str | None = None
    recovery_suggestion: str | None = None


class RollbackAttempt(BaseModel):
    step_order: int
    tool_name: str
    outcome: RollbackOutcome
    rollback_tool: str | None = None
    rollback_args: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    error: str | None = None


class RollbackFailure(BaseModel):
    """A compensating action that failed or does not exist. Needs a human."""

    step_order: int
    tool_name: str
    rollback_tool: str | None = None
    reason: Literal["failed", "unavailable", "not_declared"]
    error: str | None = None


class ExecutionSummary(BaseModel):
    run_id: str
    pattern_id: str
    status: RunStatus
    steps: list[StepRecord] = Field(default_factory=list)
    verifications: list[VerificationResult] = Field(default_factory=list)
    results: dict[str, Any] = Field(default_factory=dict)
    rollbacks: list[RollbackAttempt] = Field(default_factory=list)
    rollback_failures: list[RollbackFailure] = Field(default_factory=list)
    missing_inputs: list[str] = Field(default_factory=list)
    expected_signals: list[str] = Field(default_factory=list)
    emitted_signals: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None
    duration_ms: float = 0.0

    @property
    def optional_gaps(self) -> list[StepRecord]:
        return [s for s in self.steps if s.optional and s.status == StepStatus.FAILED]

    @property
    def requires_manual_action(self) -> bool:
        return bool(self.rollback_failures)

    @property
    def missing_signals(self) -> list[str]:
        return [m for m in self.expected_signals if m not in self.emitted_signals]

    @property
    def outcome(self) -> str:
        """User-facing classification of the terminal state."""
        if self.status == RunStatus.COMPLETED:
            return "completed_with_gaps" if self.optional_gaps else "completed"
        if self.status == RunStatus.ROLLED_BACK:
            return "rollback_incomplete" if self.requires_manual_action else "rolled_back"
        return self.status.value


class VerificationMetricRecord(BaseModel):
    tool_name: str
    process_id: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    avg_execution_time_ms: float = 0.0
    failures_by_phase: dict[str, int] = Field(
        default_factory=lambda: {p.value: 0 for p in FailurePhase}
    )
    recent_failures: list[VerificationResult] = Field(default_factory=list)
    rollback_attempts: int = 0
    rollback_successes: int = 0

    @property
    def success_rate(self) -> float:
        return self.passed / self.total if self.total else 0.0

    @property
    def invariant_violations(self) -> int:
        return self.failures_by_phase.get(FailurePhase.INVARIANT.value, 0)


# ---------------------------------------------------------------------------
# Progress snapshot (consumed by presentation layers)
# ---------------------------------------------------------------------------


class PlanStepProgress(BaseModel):
    order: int
    tool: str
    description: str = ""
    status: StepStatus
    optional: bool = False
    error: str | None = None


class ProgressSummary(BaseModel):
    total_steps: int
    successful_steps: int
    failed_steps: int
    skipped_steps: int
    rolled_back_steps: int
    duration_ms: float | None = None


class PlanProgressData(BaseModel):
    plan_id: str
    plan_name: str
    steps: list[PlanStepProgress]
    current_step_index: int
    status: Literal["executing", "completed", "failed", "rolled_back", "cancelled"]
    started_at: datetime | None = None
    summary: ProgressSummary | None = None
    recovery_actions: list[str] = Field(default_factory=list)
