"""Error taxonomy for upstream price resolution."""


class PricingError(Exception):
    """Base exception for pricing errors."""

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.service = service


class UpstreamTimeout(PricingError):
    """Raised when the upstream price source does not answer in time."""


class UpstreamHTTPError(PricingError):
    """Raised when the upstream price source answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        service: str | None = None,
    ):
        super().__init__(message, service=service)
        self.status_code = status_code
        self.body = body


class ParseFailure(PricingError):
    """Raised when no price records can be extracted from an upstream response."""


class CircuitOpenError(PricingError):
    """Raised when a circuit breaker rejects a call without attempting it."""

    def __init__(self, message: str, service: str | None = None, retry_after: float | None = None):
        super().__init__(message, service=service)
        self.retry_after = retry_after


class RateLimitExceeded(PricingError):
    """Raised when the sliding-window rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float, service: str | None = None):
        super().__init__(message, service=service)
        self.retry_after = retry_after


class UpstreamNotConfigured(PricingError):
    """Raised when no API key is configured for the upstream price source."""
