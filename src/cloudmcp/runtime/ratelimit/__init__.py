"""Keyed rate limiters: token bucket and sliding window."""

from .limiter import Bucket, Clock, FakeClock, RateLimiter, SlidingWindow, TokenBucket

__all__ = ["RateLimiter", "TokenBucket", "SlidingWindow", "Bucket", "Clock", "FakeClock"]
