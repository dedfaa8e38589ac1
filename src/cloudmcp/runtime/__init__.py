"""Runtime: middleware chain and plugins, rate limiting, retry, observability."""
