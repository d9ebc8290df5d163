"""Domain errors and failure typing."""


class EnrichmentError(Exception):
    """Base class for enrichment failures."""

    error_code = "ENRICHMENT_ERROR"


class ConfigError(EnrichmentError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class ValidationError(EnrichmentError):
    """Raised when a resolved location has neither cidade nor estado."""

    error_code = "VALIDATION_ERROR"


class TransportError(EnrichmentError):
    """Raised for provider failures: timeouts, connection errors, non-2xx."""

    error_code = "TRANSPORT_ERROR"


class ExhaustedRetriesError(EnrichmentError):
    """Raised once a point has failed on every allowed attempt."""

    error_code = "EXHAUSTED_RETRIES"


class EnrichmentCancelled(EnrichmentError):
    """Raised when an enrichment run is cancelled or hits its deadline."""

    error_code = "CANCELLED"
