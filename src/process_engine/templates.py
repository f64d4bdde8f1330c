# templates.py
# {{scope.path}} expression language used to thread values between steps.
#
# Pure and side-effect free: the resolver never raises on missing data.
# A path that cannot be walked yields UNRESOLVED and the caller decides
# whether that is fatal.
#
# Grammar inside the braces:
#   expr  := "!"? term ("||" term)*
#   term  := scope("." segment)* | quoted literal
#
# Scopes are whatever the caller passes in; the executor supplies input,
# results and context, the rollback coordinator adds result and args.

import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*(.*?)\s*\}\}")
_WHOLE = re.compile(r"^\{\{\s*(.*?)\s*\}\}$", re.DOTALL)
_QUOTED = re.compile(r"""^(['"])(.*)\1$""", re.DOTALL)
# Flags often arrive as text (form fields, query strings).
_FALSE_STRINGS = frozenset({"", "false", "0"})


class _Unresolved:
    """Sentinel for a placeholder whose path does not exist."""

    _instance = None

    def __new__(cls) -> "_Unresolved":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED: Any = _Unresolved()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _walk(root: Any, segments: list[str]) -> Any:
    current = root
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                return UNRESOLVED
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return UNRESOLVED
            current = current[index]
        elif current is not None and not isinstance(current, (str, int, float, bool)) and hasattr(
            current, segment
        ):
            current = getattr(current, segment)
        else:
            return UNRESOLVED
    return current


def _truthy(value: Any) -> bool:
    if value is UNRESOLVED:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def _term(term: str, scopes: dict[str, Any]) -> Any:
    quoted = _QUOTED.match(term)
    if quoted:
        return quoted.group(2)

    scope, _, path = term.partition(".")
    if scope not in scopes:
        return UNRESOLVED
    segments = [s for s in path.split(".") if s] if path else []
    return _walk(scopes[scope], segments)


def _evaluate(body: str, scopes: dict[str, Any]) -> Any:
    negate = body.startswith("!")
    if negate:
        body = body[1:].strip()

    value: Any = UNRESOLVED
    for alternative in body.split("||"):
        candidate = _term(alternative.strip(), scopes)
        if candidate is not UNRESOLVED and candidate is not None and candidate != "":
            value = candidate
            break
        if value is UNRESOLVED:
            value = candidate

    if negate:
        return not _truthy(value)
    return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def is_template(value: Any) -> bool:
    return isinstance(value, str) and _PLACEHOLDER.search(value) is not None


def resolve(expr: Any, scopes: dict[str, Any]) -> Any:
    """
    Resolve a single expression against the given scopes.

    A string that is exactly one placeholder returns the referenced value with
    its type preserved. A string with placeholders embedded in text returns
    the interpolated text, unresolved parts rendering as "". Anything else is
    returned unchanged.
    """
    if not isinstance(expr, str):
        return expr

    whole = _WHOLE.match(expr)
    if whole and "{{" not in whole.group(1):
        return _evaluate(whole.group(1), scopes)

    if not _PLACEHOLDER.search(expr):
        return expr

    def _substitute(match: re.Match) -> str:
        value = _evaluate(match.group(1), scopes)
        return "" if value is UNRESOLVED or value is None else str(value)

    return _PLACEHOLDER.sub(_substitute, expr)


def resolve_all(template: Any, scopes: dict[str, Any]) -> Any:
    """
    Recursively resolve every placeholder inside a nested dict/list/string tree.

    Map entries that resolve to UNRESOLVED are dropped so that a missing
    value reads as an absent argument; list entries become None.
    """
    if isinstance(template, dict):
        resolved: dict[str, Any] = {}
        for key, value in template.items():
            value = resolve_all(value, scopes)
            if value is not UNRESOLVED:
                resolved[key] = value
        return resolved

    if isinstance(template, (list, tuple)):
        return [None if v is UNRESOLVED else v for v in (resolve_all(i, scopes) for i in template)]

    return resolve(template, scopes)


def evaluate_condition(expr: str | None, scopes: dict[str, Any]) -> bool:
    """Evaluate a skip_if style expression to a boolean; unresolved is False."""
    if not expr:
        return False
    return _truthy(resolve(expr, scopes))


def lookup(root: Any, path: str | None) -> Any:
    """Walk a dotted path under an arbitrary object. Empty path returns root."""
    if not path:
        return root
    return _walk(root, [s for s in path.split(".") if s])
