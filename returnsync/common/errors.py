"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for reconciliation failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class AuthError(PipelineError):
    """Raised when no usable credential headers can be obtained."""

    error_code = "AUTH_ERROR"


class NetworkError(PipelineError):
    """Raised for transport-level failures."""

    error_code = "NETWORK_ERROR"


class ProtocolError(PipelineError):
    """Raised when a response cannot be parsed or has an unexpected shape."""

    error_code = "PROTOCOL_ERROR"


class ValidationError(PipelineError):
    """Raised for malformed user input."""

    error_code = "VALIDATION_ERROR"


class EmptyInputError(ValidationError):
    """Raised when user input contains no valid keys."""

    error_code = "EMPTY_INPUT"


class NoDataError(PipelineError):
    """Raised when matching is attempted before a crawl produced an index."""

    error_code = "NO_DATA"


class EnrichmentTimeoutError(PipelineError):
    error_code = "ENRICH_TIMEOUT"


class BlockedError(PipelineError):
    """Raised when an external context for enrichment cannot be opened."""

    error_code = "BLOCKED"
