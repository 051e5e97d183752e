"""
Shared utilities for kuberules.

This package aggregates the ambient building blocks used by the adapter,
the synchronizer and the converter:

- config: Scope and connection settings via pydantic-settings
- logging: Structured logging with scope correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types
- retry: Retry decorators and backoff calculation

Do not import from kuberules.app into shared/.
"""
