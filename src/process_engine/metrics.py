# metrics.py
# Aggregates VerificationResults into per-(process, tool) records.
#
# The collector is the only structure shared between concurrent runs, so
# every read and write goes through one lock. Runs may live on different
# threads (one event loop each), hence threading rather than asyncio locks.

import threading
from collections import deque

from process_engine.models import VerificationMetricRecord, VerificationResult

DEFAULT_RECENT_FAILURES = 20


class _Aggregate:
    """Mutable running totals behind one VerificationMetricRecord."""

    def __init__(self, tool_name: str, process_id: str, capacity: int) -> None:
        self.tool_name = tool_name
        self.process_id = process_id
        self.total = 0
        self.passed = 0
        self.failed = 0
        self.avg_ms = 0.0
        self.by_phase: dict[str, int] = {}
        self.recent: deque[VerificationResult] = deque(maxlen=capacity)
        self.rollback_attempts = 0
        self.rollback_successes = 0

    def snapshot(self) -> VerificationMetricRecord:
        record = VerificationMetricRecord(
            tool_name=self.tool_name,
            process_id=self.process_id,
            total=self.total,
            passed=self.passed,
            failed=self.failed,
            avg_execution_time_ms=self.avg_ms,
            recent_failures=list(self.recent),
            rollback_attempts=self.rollback_attempts,
            rollback_successes=self.rollback_successes,
        )
        record.failures_by_phase.update(self.by_phase)
        return record


class MetricsCollector:
    """Thread-safe verification metrics, queried by tool or by process."""

    def __init__(self, recent_failures: int = DEFAULT_RECENT_FAILURES) -> None:
        if recent_failures < 1:
            raise ValueError("recent_failures capacity must be at least 1")
        self._capacity = recent_failures
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], _Aggregate] = {}

    def _aggregate(self, process_id: str, tool_name: str) -> _Aggregate:
        key = (process_id, tool_name)
        agg = self._records.get(key)
        if agg is None:
            agg = _Aggregate(tool_name, process_id, self._capacity)
            self._records[key] = agg
        return agg

    def record(self, result: VerificationResult) -> None:
        with self._lock:
            agg = self._aggregate(result.process_id, result.tool_name)
            agg.total += 1
            # Streaming mean: avoids keeping every sample.
            agg.avg_ms += (result.execution_time_ms - agg.avg_ms) / agg.total
            if result.passed:
                agg.passed += 1
                return
            agg.failed += 1
            if result.phase is not None:
                agg.by_phase[result.phase.value] = agg.by_phase.get(result.phase.value, 0) + 1
            agg.recent.append(result)

    def record_rollback(self, tool_name: str, process_id: str, succeeded: bool) -> None:
        with self._lock:
            agg = self._aggregate(process_id, tool_name)
            agg.rollback_attempts += 1
            if succeeded:
                agg.rollback_successes += 1

    def query(self, tool_name: str | None = None) -> list[VerificationMetricRecord]:
        """All records, or those for one tool. Unknown tools yield an empty list."""
        with self._lock:
            return [
                agg.snapshot()
                for agg in self._records.values()
                if tool_name is None or agg.tool_name == tool_name
            ]

    def query_process(self, process_id: str) -> list[VerificationMetricRecord]:
        with self._lock:
            return [agg.snapshot() for agg in self._records.values() if agg.process_id == process_id]

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
