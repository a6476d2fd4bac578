"""Top-level error types for the query pipeline."""


class ConfigurationError(Exception):
    """Raised when a query cannot start: no resolvable models, unknown preset, and so on."""
