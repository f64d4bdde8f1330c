from process_engine.templates import (
    UNRESOLVED,
    evaluate_condition,
    is_template,
    lookup,
    resolve,
    resolve_all,
)

SCOPES = {
    "input": {"name": "Bob", "count": 3, "empty": ""},
    "results": {
        "create_customer": {"id": "c-1", "tags": ["a", "b"]},
        "search_customers": {"found": False, "id": None},
        "team": {"members": [{"id": "tm-1"}]},
    },
    "context": {"business_id": "biz"},
}

# ---------------------------------------------------------------------------
# Single expressions
# ---------------------------------------------------------------------------

def test_whole_placeholder_preserves_type():
    assert resolve("{{input.count}}", SCOPES) == 3
    assert resolve("{{results.create_customer.tags}}", SCOPES) == ["a", "b"]
    assert resolve("{{results.search_customers.found}}", SCOPES) is False

def test_embedded_placeholder_interpolates():
    assert resolve("Hello {{input.name}}!", SCOPES) == "Hello Bob!"
    assert resolve("Hello {{input.nobody}}!", SCOPES) == "Hello !"

def test_missing_path_is_unresolved():
    assert resolve("{{input.nope}}", SCOPES) is UNRESOLVED
    assert resolve("{{results.create_customer.id.deeper}}", SCOPES) is UNRESOLVED
    # Unknown scope
    assert resolve("{{session.user}}", SCOPES) is UNRESOLVED

def test_unresolved_is_falsy():
    assert not UNRESOLVED
    assert repr(UNRESOLVED) == "UNRESOLVED"

def test_non_string_passes_through():
    assert resolve(5, SCOPES) == 5
    assert resolve(None, SCOPES) is None
    assert resolve("plain text", SCOPES) == "plain text"

def test_fallback_takes_first_present_value():
    expr = "{{results.customer.id || results.create_customer.id}}"
    assert resolve(expr, SCOPES) == "c-1"

def test_fallback_skips_null_and_empty():
    # search_customers.id is None and input.empty is "", both fall through
    expr = "{{results.search_customers.id || input.empty || context.business_id}}"
    assert resolve(expr, SCOPES) == "biz"

def test_fallback_to_quoted_literal():
    assert resolve('{{input.title || "Site Assessment"}}', SCOPES) == "Site Assessment"
    assert resolve("{{input.title || 'Site Assessment'}}", SCOPES) == "Site Assessment"

def test_negation():
    assert resolve("{{!results.request.id}}", SCOPES) is True
    assert resolve("{{!results.create_customer.id}}", SCOPES) is False

def test_list_index_segments():
    assert resolve("{{results.team.members.0.id}}", SCOPES) == "tm-1"
    assert resolve("{{results.team.members.5.id}}", SCOPES) is UNRESOLVED

# ---------------------------------------------------------------------------
# Nested resolution
# ---------------------------------------------------------------------------

def test_resolve_all_drops_unresolved_keys():
    template = {
        "customer_id": "{{results.create_customer.id}}",
        "phone": "{{input.phone}}",
        "template": "welcome",
    }
    assert resolve_all(template, SCOPES) == {"customer_id": "c-1", "template": "welcome"}

def test_resolve_all_nested_structures():
    template = {
        "outer": {"name": "{{input.name}}", "missing": "{{input.nope}}"},
        "items": ["{{input.count}}", "{{input.nope}}", 7],
    }
    assert resolve_all(template, SCOPES) == {
        "outer": {"name": "Bob"},
        "items": [3, None, 7],
    }

def test_resolve_all_keeps_explicit_none():
    assert resolve_all({"id": "{{results.search_customers.id}}"}, SCOPES) == {"id": None}

# ---------------------------------------------------------------------------
# Conditions and helpers
# ---------------------------------------------------------------------------

def test_evaluate_condition():
    assert evaluate_condition(None, SCOPES) is False
    assert evaluate_condition("", SCOPES) is False
    assert evaluate_condition("{{results.search_customers.found}}", SCOPES) is False
    assert evaluate_condition("{{results.create_customer.id}}", SCOPES) is True
    assert evaluate_condition("{{results.nothing.found}}", SCOPES) is False
    assert evaluate_condition("{{!results.nothing.found}}", SCOPES) is True

def test_evaluate_condition_reads_textual_flags():
    scopes = {"input": {"no": "false", "zero": "0", "blank": " ", "upper": "FALSE", "yes": "true"}}

    assert evaluate_condition("{{input.no}}", scopes) is False
    assert evaluate_condition("{{input.zero}}", scopes) is False
    assert evaluate_condition("{{input.blank}}", scopes) is False
    assert evaluate_condition("{{input.upper}}", scopes) is False
    assert evaluate_condition("{{input.yes}}", scopes) is True
    assert evaluate_condition("{{!input.no}}", scopes) is True

def test_is_template():
    assert is_template("{{input.x}}")
    assert is_template("prefix {{ input.x }} suffix")
    assert not is_template("no braces")
    assert not is_template(42)

def test_lookup_walks_dicts_lists_and_attributes():
    class Row:
        status = "Lead"

    assert lookup({"a": {"b": [10, 20]}}, "a.b.1") == 20
    assert lookup({"row": Row()}, "row.status") == "Lead"
    assert lookup({"a": 1}, None) == {"a": 1}
    assert lookup({"a": 1}, "b") is UNRESOLVED
    assert lookup("text", "upper") is UNRESOLVED
