from .detector import RateLimitDetector, RateLimitInfo, detect_rate_limit
from .throttle import RequestThrottle, ThrottleDecision, ThrottleRecord

__all__ = [
    "RateLimitDetector",
    "RateLimitInfo",
    "RequestThrottle",
    "ThrottleDecision",
    "ThrottleRecord",
    "detect_rate_limit",
]
