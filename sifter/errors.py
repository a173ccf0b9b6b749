"""
Error types raised inside Sifter backends.

None of these escape to the consumer: each backend catches its own error
at the boundary, logs it, and degrades to an empty (or error-valued)
result so other backends in the same dispatch cycle are unaffected.
"""


class SifterError(Exception):
    """Base class for all Sifter errors."""


class ConfigurationError(SifterError):
    """Unknown or malformed command name / settings entry."""


class BackendExecutionError(SifterError):
    """External process failed to spawn, timed out or exited non-zero."""


class ProviderError(SifterError):
    """A search provider was unreachable, errored or timed out."""

    def __init__(self, bus_name: str, message: str):
        super().__init__(f"{bus_name}: {message}")
        self.bus_name = bus_name


class EvaluationError(SifterError):
    """Calculator expression could not be evaluated."""


class CacheError(SifterError):
    """Persisted application index is missing or corrupt."""
