# engine.py
# The exposed Execution API: run_pattern() and get_metrics().
#
# Engine owns the wiring only. Registries, tools and store are built by the
# caller at startup and injected; nothing here is a module-level singleton.

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from process_engine.conditions import CustomCheck
from process_engine.config import Settings
from process_engine.executor import PatternExecutor, ProgressCallback
from process_engine.metrics import MetricsCollector
from process_engine.models import ExecutionSummary, Pattern, VerificationMetricRecord
from process_engine.registry import ContractRegistry, PatternRegistry
from process_engine.rollback import RetryPolicy, RollbackCoordinator
from process_engine.store import Store
from process_engine.tools import ToolInvoker
from process_engine.verifier import StepVerifier

logger = logging.getLogger(__name__)


class Engine:
    """
    Orchestrates verified pattern runs with compensating rollback.

    Example:
        contracts, patterns = load_registries()
        engine = Engine(contracts, patterns, tools=build_demo_tools(store), store=store)
        summary = await engine.run_pattern("complete_lead_generation", {"name": "John Doe"})
    """

    def __init__(
        self,
        contracts: ContractRegistry,
        patterns: PatternRegistry | None = None,
        *,
        tools: ToolInvoker,
        store: Store | None = None,
        settings: Settings | None = None,
        custom_checks: Mapping[str, CustomCheck] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.contracts = contracts
        self.patterns = patterns or PatternRegistry()
        self.metrics = metrics or MetricsCollector(self.settings.recent_failures)

        verifier = StepVerifier(contracts, tools, self.metrics, store, custom_checks)
        retry = RetryPolicy(
            max_attempts=self.settings.rollback_max_attempts,
            backoff_seconds=self.settings.rollback_backoff_seconds,
            backoff_multiplier=self.settings.rollback_backoff_multiplier,
        )
        rollback = RollbackCoordinator(contracts, tools, self.metrics, retry)
        self._executor = PatternExecutor(verifier, rollback, self.settings.step_max_attempts)

    async def run_pattern(
        self,
        pattern: Pattern | str,
        input: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionSummary:
        """Run a pattern (or a registered pattern id) and return its summary."""
        if isinstance(pattern, str):
            pattern = self.patterns.get(pattern)
        return await self._executor.run(
            pattern, input, context, cancel=cancel, on_progress=on_progress
        )

    def get_metrics(self, tool_name: str | None = None) -> list[VerificationMetricRecord]:
        return self.metrics.query(tool_name)

    def coverage_report(self) -> dict[str, list[str]]:
        """Pattern id -> tools it uses that carry no contract."""
        report = {p.id: self.contracts.uncovered_tools(p) for p in self.patterns}
        for pattern_id, tools in report.items():
            if tools:
                logger.info("Pattern %s runs unverified tools: %s", pattern_id, ", ".join(tools))
        return report
