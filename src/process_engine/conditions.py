# conditions.py
# Evaluation of contract Conditions, Invariants and StoreAssertions.
#
# Each check returns None when it holds and a ConditionFailure describing
# expected vs. actual when it does not. Checks never raise: an exception
# inside a check (a store query blowing up, a custom check crashing) is
# itself reported as a failure of that check.

import inspect
import logging
import operator as op
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from process_engine.models import Condition, ConditionFailure, ConditionType, Invariant, StoreAssertion
from process_engine.store import Store
from process_engine.templates import UNRESOLVED, lookup, resolve, resolve_all

logger = logging.getLogger(__name__)

CustomCheck = Callable[[Condition, Any, dict[str, Any]], bool | Awaitable[bool]]

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": op.eq,
    "!=": op.ne,
    ">": op.gt,
    "<": op.lt,
    ">=": op.ge,
    "<=": op.le,
}


def _present(value: Any) -> Any:
    return None if value is UNRESOLVED else value


def _fail(check: Condition | Invariant | StoreAssertion, expected: Any, actual: Any, details: str | None = None) -> ConditionFailure:
    return ConditionFailure(
        id=check.id,
        description=check.description,
        expected=expected,
        actual=actual,
        details=details,
    )


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


async def _entity_exists(
    condition: Condition, subject: Any, store: Store | None
) -> ConditionFailure | None:
    value = _present(lookup(subject, condition.field or condition.key))
    if value is None:
        return _fail(condition, "present", None, f"'{condition.field or condition.key}' is missing")
    if condition.table is None:
        return None
    if store is None:
        logger.warning("No store configured; skipping entity check %s on %s", condition.id, condition.table)
        return None
    rows = await store.query(condition.table, {condition.key: value})
    if not rows:
        return _fail(
            condition,
            f"row in {condition.table} with {condition.key}={value!r}",
            "no rows",
        )
    return None


def _field_equals(condition: Condition, subject: Any, scopes: dict[str, Any]) -> ConditionFailure | None:
    actual = _present(lookup(subject, condition.field))
    if condition.value_from:
        expected = resolve(condition.value_from, scopes)
        if expected is UNRESOLVED:
            return _fail(condition, condition.value_from, actual, "expected value unresolved")
    else:
        expected = condition.value

    if actual is None and expected is not None:
        return _fail(condition, f"{condition.operator} {expected!r}", None, f"'{condition.field}' is missing")

    if condition.operator == "in":
        ok = isinstance(expected, (list, tuple, set)) and actual in expected
    else:
        ok = _COMPARATORS[condition.operator](actual, expected)

    if ok:
        return None
    return _fail(condition, f"{condition.operator} {expected!r}", actual)


def _field_not_null(condition: Condition, subject: Any) -> ConditionFailure | None:
    actual = _present(lookup(subject, condition.field))
    if actual is None:
        return _fail(condition, "not null", None)
    if condition.operator == "!=" and condition.value is not None and actual == condition.value:
        return _fail(condition, f"!= {condition.value!r}", actual)
    return None


async def _custom(
    condition: Condition,
    subject: Any,
    scopes: dict[str, Any],
    custom_checks: Mapping[str, CustomCheck],
) -> ConditionFailure | None:
    check = custom_checks.get(condition.check or "")
    if check is None:
        return _fail(condition, "registered custom check", condition.check, "unknown custom check")
    outcome = check(condition, subject, scopes)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return None if outcome else _fail(condition, True, False)


async def check_condition(
    condition: Condition,
    subject: Any,
    scopes: dict[str, Any],
    store: Store | None = None,
    custom_checks: Mapping[str, CustomCheck] | None = None,
) -> ConditionFailure | None:
    """
    Evaluate one condition against `subject`.

    `subject` is the proposed argument dict for preconditions and the tool
    result for postconditions. `scopes` backs `value_from` templates.
    """
    try:
        if condition.type == ConditionType.ENTITY_EXISTS:
            return await _entity_exists(condition, subject, store)
        if condition.type == ConditionType.FIELD_EQUALS:
            return _field_equals(condition, subject, scopes)
        if condition.type == ConditionType.FIELD_NOT_NULL:
            return _field_not_null(condition, subject)
        return await _custom(condition, subject, scopes, custom_checks or {})
    except Exception as exc:
        logger.exception("Condition %s raised during evaluation", condition.id)
        return _fail(condition, "check completes", "error", f"{type(exc).__name__}: {exc}")


# ---------------------------------------------------------------------------
# Store assertions
# ---------------------------------------------------------------------------


async def check_assertion(
    assertion: StoreAssertion, scopes: dict[str, Any], store: Store | None
) -> ConditionFailure | None:
    """Query the store with the resolved predicate and compare to `expect`."""
    if store is None:
        logger.warning("No store configured; skipping store assertion %s", assertion.id)
        return None

    predicate = resolve_all(assertion.query, scopes)
    unresolved = sorted(set(assertion.query) - set(predicate))
    if unresolved:
        return _fail(assertion, "resolvable query", None, f"unresolved predicate fields: {unresolved}")

    try:
        rows = await store.query(assertion.table, predicate)
    except Exception as exc:
        logger.exception("Store assertion %s query failed", assertion.id)
        return _fail(assertion, "query success", "query error", f"{type(exc).__name__}: {exc}")

    expect = assertion.expect
    if expect.count is not None and len(rows) != expect.count:
        return _fail(assertion, f"count = {expect.count}", f"count = {len(rows)}")

    if expect.field is not None:
        if not rows:
            return _fail(assertion, f"{expect.field} {expect.operator} {expect.value!r}", "no rows")
        actual = rows[0].get(expect.field)
        if expect.operator == "not_null":
            ok = actual is not None
        else:
            try:
                ok = _COMPARATORS[expect.operator](actual, expect.value)
            except TypeError:
                ok = False
        if not ok:
            return _fail(assertion, f"{expect.field} {expect.operator} {expect.value!r}", actual)

    return None


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


class InvariantBaseline:
    """Values captured before the call; UNRESOLVED where nothing could be read."""

    def __init__(self) -> None:
        self.expected: Any = UNRESOLVED
        self.key_value: Any = UNRESOLVED
        self.error: str | None = None


async def _guarded_row_value(invariant: Invariant, key_value: Any, store: Store) -> Any:
    rows = await store.query(invariant.table, {invariant.key: key_value})
    return lookup(rows[0], invariant.field) if rows else UNRESOLVED


async def capture_invariant(
    invariant: Invariant, scopes: dict[str, Any], store: Store | None
) -> InvariantBaseline:
    """Read everything the invariant compares against, before the tool runs."""
    baseline = InvariantBaseline()
    try:
        if invariant.value_from:
            baseline.expected = resolve(invariant.value_from, scopes)
        if invariant.table is not None:
            baseline.key_value = resolve(invariant.key_from, scopes)
            if store is not None and baseline.key_value is not UNRESOLVED:
                before = await _guarded_row_value(invariant, baseline.key_value, store)
                if not invariant.value_from:
                    baseline.expected = before
    except Exception as exc:
        logger.exception("Invariant %s could not capture its baseline", invariant.id)
        baseline.error = f"{type(exc).__name__}: {exc}"
    return baseline


async def check_invariant(
    invariant: Invariant, baseline: InvariantBaseline, result: Any, store: Store | None
) -> ConditionFailure | None:
    """Compare the guarded value after the call with the captured baseline."""
    if baseline.error is not None:
        return _fail(invariant, "baseline captured", "error", baseline.error)

    if invariant.table is not None and store is None:
        logger.warning("No store configured; skipping invariant %s on %s", invariant.id, invariant.table)
        return None
    if invariant.table is not None and baseline.key_value is UNRESOLVED:
        return _fail(invariant, f"row in {invariant.table}", None, f"{invariant.key_from} unresolved")
    if baseline.expected is UNRESOLVED:
        return _fail(invariant, invariant.value_from or "value before the call", None, "expected value unresolved")

    try:
        if invariant.table is None:
            after = lookup(result, invariant.field)
        else:
            after = await _guarded_row_value(invariant, baseline.key_value, store)
    except Exception as exc:
        logger.exception("Invariant %s raised during evaluation", invariant.id)
        return _fail(invariant, "check completes", "error", f"{type(exc).__name__}: {exc}")

    if after is UNRESOLVED:
        return _fail(invariant, baseline.expected, None, f"'{invariant.field}' is missing")
    if after != baseline.expected:
        return _fail(invariant, baseline.expected, after, "value changed unexpectedly")
    return None
