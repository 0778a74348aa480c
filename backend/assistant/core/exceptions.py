"""
Exceptions shared across the routing core.

Only StreamError is ever surfaced to the end user; the others are caught
at the service seam and degraded to a safe default.
"""


class RetrievalError(Exception):
    """Embedding provider or similarity index unavailable."""


class PersistenceError(Exception):
    """Checkpoint or conversation write failed."""


class StreamError(Exception):
    """Model stream failed; ``retryable`` marks transient causes."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
