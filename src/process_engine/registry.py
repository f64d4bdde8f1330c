# registry.py
# Contract and pattern catalogs.
#
# Both registries are plain objects built once at startup and handed to the
# engine. Nothing here is module-level state, and nothing is patched at
# runtime: a second registration under the same name is a configuration bug.

import logging
from collections.abc import Iterable

from process_engine.errors import DuplicatePatternError, DuplicateToolError, UnknownPatternError
from process_engine.models import Pattern, ToolContract

logger = logging.getLogger(__name__)


class ContractRegistry:
    """One ToolContract per tool name, addressable by tool and by process."""

    def __init__(self, contracts: Iterable[ToolContract] = ()) -> None:
        self._contracts: dict[str, ToolContract] = {}
        for contract in contracts:
            self.register(contract)

    def register(self, contract: ToolContract) -> None:
        if contract.tool_name in self._contracts:
            raise DuplicateToolError(
                f"A contract for tool '{contract.tool_name}' is already registered "
                f"(process '{self._contracts[contract.tool_name].process_id}')."
            )
        self._contracts[contract.tool_name] = contract
        logger.debug("Registered contract %s (process=%s)", contract.tool_name, contract.process_id)

    def get(self, tool_name: str) -> ToolContract | None:
        """Unknown tools return None; they are allowed to run unverified."""
        return self._contracts.get(tool_name)

    def list_by_process(self, process_id: str) -> list[ToolContract]:
        return [c for c in self._contracts.values() if c.process_id == process_id]

    def uncovered_tools(self, pattern: Pattern) -> list[str]:
        """Tools a pattern uses that have no contract, in step order."""
        seen: list[str] = []
        for tool in pattern.tools:
            if tool not in self._contracts and tool not in seen:
                seen.append(tool)
        return seen

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._contracts

    def __len__(self) -> int:
        return len(self._contracts)

    def __iter__(self):
        return iter(self._contracts.values())


class PatternRegistry:
    """Pattern definitions by id."""

    def __init__(self, patterns: Iterable[Pattern] = ()) -> None:
        self._patterns: dict[str, Pattern] = {}
        for pattern in patterns:
            self.register(pattern)

    def register(self, pattern: Pattern) -> None:
        if pattern.id in self._patterns:
            raise DuplicatePatternError(f"Pattern '{pattern.id}' is already registered.")
        self._patterns[pattern.id] = pattern

    def get(self, pattern_id: str) -> Pattern:
        try:
            return self._patterns[pattern_id]
        except KeyError:
            raise UnknownPatternError(f"Unknown pattern '{pattern_id}'.") from None

    def list_by_category(self, category: str) -> list[Pattern]:
        return [p for p in self._patterns.values() if p.category == category]

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self):
        return iter(self._patterns.values())
