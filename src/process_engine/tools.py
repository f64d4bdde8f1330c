# tools.py
# Tool registry: the engine's only way to cause side effects.
#
# The engine never calls domain functions directly: it asks a ToolInvoker to
# invoke a tool by name. ToolRegistry is the stock invoker, mapping names to
# sync or async handlers that take one argument dict.
#
# The demo handlers at the bottom implement a small field-service domain on
# top of InMemoryStore. They exist for run.py and the test-suite.

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from functools import partial
from typing import Any, Protocol

from process_engine.errors import ToolNotFoundError
from process_engine.store import InMemoryStore

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class ToolInvoker(Protocol):
    async def invoke(self, tool_name: str, args: dict[str, Any]) -> Any:
        ...


class ToolRegistry:
    """Name -> handler mapping implementing ToolInvoker."""

    def __init__(self, handlers: Mapping[str, ToolHandler] | None = None) -> None:
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    async def invoke(self, tool_name: str, args: dict[str, Any]) -> Any:
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise ToolNotFoundError(f"Tool '{tool_name}' is not in the registry.")
        logger.debug("Invoking %s with %s", tool_name, args)
        result = handler(dict(args))
        if inspect.isawaitable(result):
            result = await result
        return result


# ---------------------------------------------------------------------------
# Demo domain tools
# ---------------------------------------------------------------------------


def _require(args: dict[str, Any], *names: str) -> None:
    missing = [n for n in names if args.get(n) in (None, "")]
    if missing:
        raise ValueError(f"Missing required argument(s): {', '.join(missing)}")


async def _tool_search_customers(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    for column in ("email", "phone"):
        if args.get(column):
            rows = await store.query("customers", {column: args[column]})
            if rows:
                return {"found": True, "id": rows[0]["id"], "customer": rows[0]}
    return {"found": False}


async def _tool_create_customer(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "name")
    row = {k: v for k, v in args.items() if v is not None}
    row.setdefault("status", "Lead")
    return await store.insert("customers", row)


async def _tool_delete_customer(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    # Idempotent: deleting an absent row is not an error.
    return {"deleted": await store.delete("customers", args.get("customer_id"))}


async def _tool_score_lead(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "customer_id")
    rows = await store.query("customers", {"id": args["customer_id"]})
    if not rows:
        raise LookupError(f"Customer {args['customer_id']} not found")
    customer = rows[0]
    score = sum(20 for f in ("name", "email", "phone", "address", "lead_source") if customer.get(f))
    await store.update("customers", customer["id"], {"lead_score": score})
    return {"customer_id": customer["id"], "lead_score": score}


async def _tool_reset_lead_score(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    await store.update("customers", args.get("customer_id"), {"lead_score": None})
    return {"customer_id": args.get("customer_id"), "lead_score": None}


async def _tool_create_request(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "customer_id", "title")
    return await store.insert("requests", {**args, "status": "New"})


async def _tool_delete_request(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    return {"deleted": await store.delete("requests", args.get("request_id"))}


async def _tool_check_team_availability(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    members = await store.query("team_members", {"available": True})
    return {
        "members": [m["id"] for m in members],
        "best_match": members[0]["id"] if members else None,
    }


async def _tool_auto_assign_lead(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "request_id")
    members = args.get("available_members") or []
    if not members:
        raise LookupError("No team member available for assignment")
    return await store.update("requests", args["request_id"], {"assigned_to": members[0]})


async def _tool_unassign_lead(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    return await store.update("requests", args.get("request_id"), {"assigned_to": None}) or {}


async def _tool_send_email(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "customer_id")
    return await store.insert(
        "emails", {"customer_id": args["customer_id"], "template": args.get("template"), "status": "sent"}
    )


async def _tool_get_quote(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "quote_id")
    rows = await store.query("quotes", {"id": args["quote_id"]})
    if not rows:
        raise LookupError(f"Quote {args['quote_id']} not found")
    return rows[0]


async def _tool_create_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "customer_id", "title")
    return await store.insert("jobs", {**args, "status": "Pending"})


async def _tool_delete_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    return {"deleted": await store.delete("jobs", args.get("job_id"))}


async def _tool_schedule_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "job_id", "starts_at")
    changes = {"starts_at": args["starts_at"], "ends_at": args.get("ends_at"), "status": "Scheduled"}
    job = await store.update("jobs", args["job_id"], changes)
    if job is None:
        raise LookupError(f"Job {args['job_id']} not found")
    return job


async def _tool_unschedule_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    changes = {"starts_at": None, "ends_at": None, "status": "Pending"}
    return await store.update("jobs", args.get("job_id"), changes) or {}


async def _tool_assign_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "job_id", "user_id")
    job = await store.update("jobs", args["job_id"], {"assigned_to": args["user_id"]})
    if job is None:
        raise LookupError(f"Job {args['job_id']} not found")
    return job


async def _tool_unassign_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    return await store.update("jobs", args.get("job_id"), {"assigned_to": None}) or {}


async def _tool_send_job_confirmation(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "job_id")
    return await store.insert("emails", {"job_id": args["job_id"], "template": "job_confirmation", "status": "sent"})


async def _tool_complete_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "job_id")
    job = await store.update("jobs", args["job_id"], {"status": "Completed"})
    if job is None:
        raise LookupError(f"Job {args['job_id']} not found")
    return job


async def _tool_create_invoice(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "job_id", "customer_id")
    return await store.insert("invoices", {**args, "status": "Draft"})


async def _tool_void_invoice(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    return await store.update("invoices", args.get("invoice_id"), {"status": "Void"}) or {}


async def _tool_send_invoice(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "invoice_id")
    invoice = await store.update("invoices", args["invoice_id"], {"status": "Sent"})
    if invoice is None:
        raise LookupError(f"Invoice {args['invoice_id']} not found")
    return invoice


async def _tool_request_review(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "customer_id")
    return await store.insert("emails", {"customer_id": args["customer_id"], "template": "review_request", "status": "sent"})


async def _tool_create_assessment_job(store: InMemoryStore, args: dict[str, Any]) -> dict[str, Any]:
    _require(args, "customer_id", "address")
    return await store.insert("jobs", {**args, "is_assessment": True, "status": "Scheduled"})


_DEMO_TOOLS: dict[str, Callable[..., Awaitable[Any]]] = {
    "search_customers":       _tool_search_customers,
    "create_customer":        _tool_create_customer,
    "delete_customer":        _tool_delete_customer,
    "score_lead":             _tool_score_lead,
    "reset_lead_score":       _tool_reset_lead_score,
    "create_request":         _tool_create_request,
    "delete_request":         _tool_delete_request,
    "check_team_availability": _tool_check_team_availability,
    "auto_assign_lead":       _tool_auto_assign_lead,
    "unassign_lead":          _tool_unassign_lead,
    "send_email":             _tool_send_email,
    "get_quote":              _tool_get_quote,
    "create_job":             _tool_create_job,
    "delete_job":             _tool_delete_job,
    "schedule_job":           _tool_schedule_job,
    "unschedule_job":         _tool_unschedule_job,
    "assign_job":             _tool_assign_job,
    "unassign_job":           _tool_unassign_job,
    "send_job_confirmation":  _tool_send_job_confirmation,
    "complete_job":           _tool_complete_job,
    "create_invoice":         _tool_create_invoice,
    "void_invoice":           _tool_void_invoice,
    "send_invoice":           _tool_send_invoice,
    "request_review":         _tool_request_review,
    "create_assessment_job":  _tool_create_assessment_job,
}


def build_demo_tools(store: InMemoryStore) -> ToolRegistry:
    """ToolRegistry with every demo handler bound to `store`."""
    return ToolRegistry({name: partial(fn, store) for name, fn in _DEMO_TOOLS.items()})
