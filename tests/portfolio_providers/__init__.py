"""
Tests for the portfolio provider layer.

- Resilience primitives (rate limiter, retry, circuit breaker)
- Vendor adapters (schema parsing, error mapping)
- Registry and chain directory
"""
