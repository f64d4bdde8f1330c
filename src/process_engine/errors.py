# errors.py
# Configuration-time exceptions. Runtime step failures are never raised out
# of a run; they are classified as FailurePhase values and recorded.


class ProcessEngineError(Exception):
    """Base class for every exception the engine raises."""


class DuplicateToolError(ProcessEngineError):
    """Raised when a second contract is registered for the same tool. Fatal at startup."""


class DuplicatePatternError(ProcessEngineError):
    """Raised when a pattern id is registered twice."""


class UnknownPatternError(ProcessEngineError, KeyError):
    """Raised when a pattern id is not in the pattern registry."""


class ToolNotFoundError(ProcessEngineError):
    """Raised when a tool name has no handler in the tool registry."""
