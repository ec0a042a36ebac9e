"""
Exception classes for the governed retrieval core
"""


class GovernedRagError(Exception):
    """Base exception for the governed retrieval core"""
    pass


class ValidationError(GovernedRagError):
    """Malformed input (empty chunk set, blank document id, ...)"""
    pass


class NotFoundError(GovernedRagError):
    """Document session does not exist (or has expired)"""
    pass


class RateLimitExceeded(GovernedRagError):
    """
    Raised by callers when a quota check comes back negative.

    The limiter itself never raises this; it only reports a status.
    """

    def __init__(self, action, status):
        self.action = action
        self.status = status
        super().__init__(
            f"Rate limit exceeded: {status.used(action)}/{status.limit(action)} "
            f"{action.plural} used this week"
        )


class ProviderError(GovernedRagError):
    """Embedding provider failure"""
    pass


class ProviderTimeout(ProviderError):
    """Embedding provider did not answer within the timeout"""
    pass


class StorageError(GovernedRagError):
    """Persistence layer failure"""
    pass
