"""
Exception hierarchy for ctxkb.

Per-file and provider failures are recorded in result objects rather than
raised; these exceptions cover misuse and unrecoverable configuration
problems.
"""


class CtxkbError(Exception):
    """Base exception for ctxkb errors."""

    pass


class NotInitializedError(CtxkbError, RuntimeError):
    """Raised when a store is used before ``initialize()`` was awaited."""

    pass


class ConfigurationError(CtxkbError):
    """Raised when there's a configuration problem."""

    pass


class CheckpointError(CtxkbError):
    """Raised when a checkpoint file cannot be decoded."""

    pass


class ProviderUnavailableError(CtxkbError):
    """Raised when an embedding provider cannot be reached or loaded."""

    pass
