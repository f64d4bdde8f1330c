# run.py
# Entry point. Config and wiring only. No logic lives here.
#
# Runs the lead-generation pattern twice against an in-memory store: once
# on the happy path, once with a lead scorer that breaks mid-run so the
# customer created in step 2 is compensated.

import asyncio
import logging
from typing import Any

from process_engine import display
from process_engine.config import configure_logging, load_settings
from process_engine.engine import Engine
from process_engine.processes import load_registries
from process_engine.progress import progress_from_summary
from process_engine.store import InMemoryStore
from process_engine.tools import build_demo_tools

logger = logging.getLogger(__name__)

PATTERN_ID = "complete_lead_generation"

TEAM = [
    {"id": "tm-1", "name": "Alex Rivera", "available": True},
    {"id": "tm-2", "name": "Sam Patel", "available": False},
]

# (title, input, break the scorer?)
RUNS: list[tuple[str, dict[str, Any], bool]] = [
    (
        "HAPPY PATH",
        {
            "name": "John Doe",
            "email": "john@example.com",
            "phone": "555-0100",
            "address": "12 Elm Street",
            "lead_source": "website",
            "request_title": "Lawn care quote",
        },
        False,
    ),
    (
        "SCORER DOWN",
        {
            "name": "Jane Roe",
            "email": "jane@example.com",
            "request_title": "Gutter cleaning",
        },
        True,
    ),
]


def _broken_scorer(args: dict[str, Any]) -> dict[str, Any]:
    raise ConnectionError("lead scoring service unavailable")


async def _run_all() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    contracts, patterns = load_registries()
    store = InMemoryStore({"team_members": TEAM})
    display.banner(len(patterns), len(contracts))

    for title, payload, break_scorer in RUNS:
        tools = build_demo_tools(store)
        if break_scorer:
            tools.register("score_lead", _broken_scorer)
        engine = Engine(contracts, patterns, tools=tools, store=store, settings=settings)
        engine.coverage_report()

        pattern = patterns.get(PATTERN_ID)
        display.run_start(title, pattern, payload)
        summary = await engine.run_pattern(
            pattern, payload, {"business_id": "demo"}, on_progress=display.progress
        )

        display.execution_summary(summary)
        display.rollback_report(summary)
        display.progress_card(progress_from_summary(summary, pattern))
        display.metrics_table(engine.get_metrics())
        display.final_result(summary)

    logger.info("Customers left in store: %d", len(store.rows("customers")))


def main() -> None:
    asyncio.run(_run_all())


if __name__ == "__main__":
    main()
