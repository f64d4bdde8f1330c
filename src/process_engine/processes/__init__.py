# processes/__init__.py
# Built-in field-service catalog: contracts and patterns for the demo domain.

from process_engine.processes import invoicing, lead_generation, quoting, site_assessment
from process_engine.registry import ContractRegistry, PatternRegistry

MODULES = (lead_generation, quoting, invoicing, site_assessment)


def load_registries() -> tuple[ContractRegistry, PatternRegistry]:
    """Fresh registries holding every built-in contract and pattern."""
    contracts = ContractRegistry()
    patterns = PatternRegistry()
    for module in MODULES:
        for contract in module.CONTRACTS:
            contracts.register(contract)
        for pattern in module.PATTERNS:
            patterns.register(pattern)
    return contracts, patterns
