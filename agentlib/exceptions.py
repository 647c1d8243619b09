"""
Exceptions for the agent graph runtime.

Every error raised at this layer is final for the run: ``retryable`` is
always False so the caller that scheduled the run decides about retries.
"""


class GraphBackendError(Exception):
    """Base exception for all agent graph errors."""
    retryable = False


class ValidationError(GraphBackendError):
    """Raised when a graph snapshot is malformed."""
    pass


class UnreachableEndError(ValidationError):
    """Raised when the entry node has no path to END."""

    def __init__(self, entry_node: str):
        self.entry_node = entry_node
        super().__init__(f"entry node {entry_node!r} must have a path to END")


class ConfigError(GraphBackendError):
    """Raised when a node config or state schema is malformed."""
    pass


class BuildError(GraphBackendError):
    """Raised when a node or edge cannot be built into the graph."""
    pass


class RoutingError(GraphBackendError):
    """Raised when a supervisor cannot produce a legal routing decision."""
    pass


class ExecutionError(GraphBackendError):
    """Raised when a model or tool call fails during a run."""
    pass


class NodeTimeoutError(ExecutionError):
    """Raised when a node exceeds its execution timeout."""

    def __init__(self, node_key: str, timeout_seconds: float):
        self.node_key = node_key
        self.timeout_seconds = timeout_seconds
        super().__init__(f"node {node_key!r} timed out after {timeout_seconds:g}s")


class PersistenceError(GraphBackendError):
    """Raised when a run or step record cannot be written."""
    pass
