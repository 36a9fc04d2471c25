"""Core resilience primitives and collaborator interfaces"""
from .errors import ModelCallError, ModelRateLimitError
from .resilience import (
    AdaptiveBackoff,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    call_with_retry,
)

__all__ = [
    "ModelCallError",
    "ModelRateLimitError",
    "AdaptiveBackoff",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "call_with_retry",
]
