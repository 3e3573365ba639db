"""Error types for Pegwatch."""


class PegwatchError(Exception):
    """Base class for all Pegwatch errors."""


class ValidationError(PegwatchError):
    """User input rejected by a wizard step."""


class SourceUnavailable(PegwatchError):
    """A price source or notification sink failed or timed out."""


class PersistenceError(PegwatchError):
    """An AlertStore operation failed."""


class ConfigurationError(PegwatchError):
    """Startup configuration is missing or invalid."""


class QuoteNotSupported(SourceUnavailable):
    """A source can never quote this symbol; retrying cannot help."""
