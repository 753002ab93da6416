from .rate_limit import RateLimitMiddleware, ThrottleRule
from .request_deadline import RequestDeadlineMiddleware
from .request_logging import RequestLoggingMiddleware

__all__ = [
    "RateLimitMiddleware",
    "RequestDeadlineMiddleware",
    "RequestLoggingMiddleware",
    "ThrottleRule",
]
