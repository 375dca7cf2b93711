from typing import Optional


class BusTimeError(Exception):
    """Base for failures that are reported to the caller.

    ``category`` is a stable machine-checkable string, ``status_code`` is the
    HTTP status used by the API layer.
    """

    category = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamUnavailable(BusTimeError):
    category = "upstream_unavailable"
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamDataShapeError(BusTimeError):
    category = "upstream_data_shape"
    status_code = 502


class ValidationError(BusTimeError):
    category = "validation"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(BusTimeError):
    category = "not_found"
    status_code = 404


class RateLimited(BusTimeError):
    category = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message)


class ServiceUnavailable(BusTimeError):
    category = "service_unavailable"
    status_code = 503

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)
