class ExtractionError(Exception):
    """Raised when an extraction provider cannot produce a result."""


class ExtractionNetworkError(ExtractionError):
    """Raised when the provider call fails due to network/infrastructure issues."""


class MalformedExtractionError(ExtractionError):
    """Raised when the provider response violates the expected contract."""
